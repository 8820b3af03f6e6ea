"""
Monitoring Layer - health checks and alerting.

Public API:
    HealthChecker, HealthStatus, ComponentHealth, AggregateHealth
    AlertManager, AlertRecord
"""
from wager_arena.monitoring.alerting import AlertManager, AlertRecord
from wager_arena.monitoring.health_checker import (
    AggregateHealth,
    ComponentHealth,
    HealthChecker,
    HealthStatus,
)

__all__ = [
    "HealthChecker",
    "HealthStatus",
    "ComponentHealth",
    "AggregateHealth",
    "AlertManager",
    "AlertRecord",
]

"""
Operator alerts over Telegram.

Every alert the arena raises (halted round, payout left for claim, round
stuck past its phase, unhealthy component) goes through one AlertManager,
which suppresses repeats of the same key inside a cooldown window. A round
that stays stuck is seen on every crank tick, so without the cooldown the
operator chat would get one message per tick.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)

TELEGRAM_URL = "https://api.telegram.org/bot{token}/sendMessage"

PRIORITY_MARKERS = {
    "critical": "🚨🚨🚨",
    "high": "⚠️",
    "normal": "",
    "low": "ℹ️",
}


@dataclass
class AlertRecord:
    """Tracks when an alert was last sent."""

    key: str
    last_sent: float  # Unix timestamp
    count: int = 1


def _body(**fields: Any) -> str:
    # "Round: 7" style lines, in argument order
    return "\n".join(f"{name.replace('_', ' ').title()}: {value}" for name, value in fields.items())


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AlertManager:
    """
    Telegram notifier with per-key cooldowns.

    Delivery failures are logged and reported as False, never raised: an
    alert that cannot be sent must not stop the crank. A failed send is not
    recorded, so the next attempt for the same key goes out.

    Usage:
        alerts = AlertManager(telegram_bot_token="...", telegram_chat_id="...")
        alerts.alert_round_halted(42, "seed consumed twice")
    """

    DEFAULT_COOLDOWN = 300

    def __init__(
        self,
        telegram_bot_token: Optional[str] = None,
        telegram_chat_id: Optional[str] = None,
        default_cooldown: int = DEFAULT_COOLDOWN,
        _telegram_api: Optional[Any] = None,  # For testing
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._bot_token = telegram_bot_token
        self._chat_id = telegram_chat_id
        self._default_cooldown = default_cooldown
        self._telegram_api = _telegram_api
        self._clock = clock
        self._sent_alerts: Dict[str, AlertRecord] = {}

    @property
    def configured(self) -> bool:
        return self._telegram_api is not None or bool(self._bot_token and self._chat_id)

    def send_alert(
        self,
        title: str,
        message: str,
        dedup_key: Optional[str] = None,
        cooldown_seconds: Optional[int] = None,
        priority: str = "normal",
    ) -> bool:
        """
        Format and deliver one alert.

        Args:
            title: Short headline, rendered bold
            message: Body text
            dedup_key: Alerts sharing a key are sent at most once per cooldown
            cooldown_seconds: Overrides the default cooldown for this key
            priority: One of PRIORITY_MARKERS

        Returns:
            True if delivered, False if suppressed or delivery failed
        """
        if dedup_key and self._in_cooldown(dedup_key, cooldown_seconds or self._default_cooldown):
            logger.debug(f"Suppressed repeat alert {dedup_key}")
            return False

        marker = PRIORITY_MARKERS.get(priority, "")
        header = f"{marker} *{title}*" if marker else f"*{title}*"
        delivered = self._deliver(f"{header}\n\n{message.strip()}")

        if dedup_key and delivered:
            self._remember(dedup_key)
        return delivered

    # ------------------------------------------------------------------
    # Arena alerts
    # ------------------------------------------------------------------

    def alert_round_halted(self, round_id: int, reason: str) -> bool:
        """Round stopped for manual intervention."""
        return self.send_alert(
            title="🛑 Round Halted",
            message=_body(
                round=round_id,
                reason=reason,
                action_required="investigate, then resume or force-reset the round",
                time=_utc_now(),
            ),
            dedup_key=f"halted_{round_id}",
            cooldown_seconds=3600,
            priority="critical",
        )

    def alert_payout_failed(self, round_id: int, bettor: str, amount: int, error: str) -> bool:
        """Automatic payout failed; the bettor must claim."""
        return self.send_alert(
            title="💸 Payout Left For Claim",
            message=_body(round=round_id, bettor=bettor, amount=amount, error=error),
            dedup_key=f"payout_{round_id}_{bettor}",
            cooldown_seconds=600,
            priority="high",
        )

    def alert_stuck_round(self, round_id: int, phase: str, details: str) -> bool:
        return self.send_alert(
            title="⏳ Round Stuck",
            message=_body(round=round_id, phase=phase, details=details),
            dedup_key=f"stuck_{round_id}_{phase}",
            cooldown_seconds=900,
            priority="high",
        )

    def alert_health_issue(self, component: str, status: str, message: str) -> bool:
        """
        Report a component that is not healthy.

        Args:
            component: ledger, oracle, database or round_progression
            status: "unhealthy" or "degraded" (case-insensitive)
            message: What the health check saw
        """
        unhealthy = status.lower() == "unhealthy"
        return self.send_alert(
            title=f"{'🔴' if unhealthy else '🟡'} Health Issue: {component}",
            message=_body(component=component, status=status, details=message, time=_utc_now()),
            dedup_key=f"health_{component}_{status.lower()}",
            priority="high" if unhealthy else "normal",
        )

    # ------------------------------------------------------------------
    # Cooldown bookkeeping
    # ------------------------------------------------------------------

    def _in_cooldown(self, key: str, cooldown: int) -> bool:
        record = self._sent_alerts.get(key)
        return record is not None and self._clock() - record.last_sent < cooldown

    def _remember(self, key: str) -> None:
        record = self._sent_alerts.get(key)
        if record is None:
            self._sent_alerts[key] = AlertRecord(key=key, last_sent=self._clock())
        else:
            record.last_sent = self._clock()
            record.count += 1

    def get_alert_stats(self) -> Dict[str, int]:
        return {
            "unique_alerts": len(self._sent_alerts),
            "total_sent": sum(r.count for r in self._sent_alerts.values()),
        }

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _deliver(self, text: str) -> bool:
        if self._telegram_api is not None:
            try:
                self._telegram_api.send_message(chat_id=self._chat_id, text=text, parse_mode="Markdown")
            except Exception as e:
                logger.error(f"Telegram API error: {e}")
                return False
            return True

        if not self.configured:
            logger.warning(f"Telegram not configured, alert dropped: {text[:80]}")
            return False

        try:
            response = requests.post(
                TELEGRAM_URL.format(token=self._bot_token),
                json={"chat_id": self._chat_id, "text": text, "parse_mode": "Markdown"},
                timeout=10,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to send Telegram alert: {e}")
            return False

        logger.info(f"Sent Telegram alert: {text[:50]}")
        return True

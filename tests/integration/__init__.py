"""
Integration tests for the arena store.

These tests verify the Postgres store against a real database.
They require a running PostgreSQL database.

Run with:
    pytest tests/integration/ -v -m integration

Skip with:
    pytest -m "not integration"
"""

"""
Tests for alerting and notifications.

Alerts notify operators of halted rounds, failed payouts and health issues.
"""
from wager_arena.monitoring import AlertManager


class TestTelegramAlerts:
    """Tests for Telegram notification sending."""

    def test_sends_alert_message(self, alert_manager, mock_telegram_api):
        result = alert_manager.send_alert(title="Round Finished", message="Round 4 paid 95")

        assert result is True
        mock_telegram_api.send_message.assert_called_once()

    def test_formats_message(self, alert_manager, mock_telegram_api):
        alert_manager.send_alert(title="Test Alert", message="  body  ", priority="critical")

        text = mock_telegram_api.send_message.call_args[1]["text"]
        assert text.startswith("🚨🚨🚨 *Test Alert*")
        assert text.endswith("body")

    def test_handles_api_error_gracefully(self, alert_manager, mock_telegram_api):
        """A broken notifier must never take the crank down."""
        mock_telegram_api.send_message.side_effect = Exception("API error")

        assert alert_manager.send_alert(title="Test", message="Test") is False

    def test_returns_false_without_credentials(self):
        manager = AlertManager(telegram_bot_token=None, telegram_chat_id=None)

        assert manager.send_alert(title="Test", message="Test") is False


class TestAlertDeduplication:
    """Tests for alert deduplication."""

    def test_deduplicates_repeated_alerts(self, alert_manager, mock_telegram_api):
        """A stuck round is reported every tick; only the first gets through."""
        assert alert_manager.alert_stuck_round(7, "waiting", "overdue")
        assert not alert_manager.alert_stuck_round(7, "waiting", "still overdue")

        assert mock_telegram_api.send_message.call_count == 1

    def test_different_keys_not_deduplicated(self, alert_manager, mock_telegram_api):
        alert_manager.alert_round_halted(7, "seed consumed twice")
        alert_manager.alert_round_halted(8, "seed consumed twice")

        assert mock_telegram_api.send_message.call_count == 2

    def test_failed_send_not_recorded(self, alert_manager, mock_telegram_api):
        """An alert that never reached Telegram is retried on the next call."""
        mock_telegram_api.send_message.side_effect = [Exception("down"), {"ok": True}]

        assert not alert_manager.alert_payout_failed(7, "alice", 95, "timeout")
        assert alert_manager.alert_payout_failed(7, "alice", 95, "timeout")

    def test_alert_stats(self, alert_manager):
        alert_manager.alert_round_halted(1, "x")
        alert_manager.alert_round_halted(2, "x")
        alert_manager.alert_round_halted(2, "x")

        assert alert_manager.get_alert_stats() == {"unique_alerts": 2, "total_sent": 2}

    def test_resends_after_cooldown(self, mock_telegram_api):
        clock = iter([1000.0, 1000.0, 1500.0, 2000.0, 2000.0])
        manager = AlertManager(
            telegram_bot_token="test-token",
            telegram_chat_id="test-chat",
            _telegram_api=mock_telegram_api,
            clock=lambda: next(clock),
        )

        assert manager.alert_stuck_round(7, "waiting", "overdue")
        assert not manager.alert_stuck_round(7, "waiting", "overdue")
        assert manager.alert_stuck_round(7, "waiting", "overdue")

        assert manager.get_alert_stats() == {"unique_alerts": 1, "total_sent": 2}


class TestAlertBodies:
    def test_halted_round_names_the_action(self, alert_manager, mock_telegram_api):
        alert_manager.alert_round_halted(42, "seed consumed twice")

        text = mock_telegram_api.send_message.call_args[1]["text"]
        assert "Round: 42" in text
        assert "Reason: seed consumed twice" in text
        assert "Action Required: investigate" in text

    def test_health_status_case_insensitive(self, alert_manager, mock_telegram_api):
        alert_manager.alert_health_issue("ledger", "unhealthy", "unreachable")
        alert_manager.alert_health_issue("ledger", "UNHEALTHY", "unreachable")

        assert mock_telegram_api.send_message.call_count == 1
        assert "🔴" in mock_telegram_api.send_message.call_args[1]["text"]

"""
Tests for admin alert filtering, de-duplication and rate limiting
Telegram delivery is mocked
"""

import pytest
from unittest.mock import AsyncMock, patch

from admin_alerts import AdminAlertConfig, AdminAlertSystem, Alert, AlertCategory, AlertSeverity

@pytest.fixture
def alert_env(monkeypatch):
    monkeypatch.setenv('ADMIN_ALERTS_ENABLED', 'true')
    monkeypatch.setenv('ADMIN_USER_ID', '1001')
    monkeypatch.setenv('ADDITIONAL_ADMIN_USER_IDS', '1002, not-a-number')
    monkeypatch.setenv('TELEGRAM_BOT_TOKEN', 'test_token')
    monkeypatch.setenv('ALERT_MAX_PER_WINDOW', '2')
    monkeypatch.setenv('ALERT_MIN_SEVERITY', 'WARNING')

@pytest.fixture
def alert_system(alert_env):
    system = AdminAlertSystem(AdminAlertConfig())
    system._deliver = AsyncMock(return_value=2)
    return system

class TestAdminAlertConfig:

    def test_parses_admin_ids(self, alert_env):
        config = AdminAlertConfig()

        assert config.admin_user_ids == [1001, 1002]
        assert config.max_alerts_per_window == 2
        assert config.min_severity == AlertSeverity.WARNING

class TestAdminAlertSystem:

    async def test_delivers_alert(self, alert_system):
        sent = await alert_system.send_alert(AlertSeverity.CRITICAL, AlertCategory.PAYMENT_PROCESSING,
                                             'DomainProcessor', 'payment pending without transfer')

        assert sent is True
        alert = alert_system._deliver.await_args.args[0]
        assert alert.category == AlertCategory.PAYMENT_PROCESSING

    async def test_string_severity_and_category(self, alert_system):
        assert await alert_system.send_alert('error', 'data_integrity', 'DomainProcessor', 'hash without id') is True

    async def test_duplicate_alert_suppressed(self, alert_system):
        await alert_system.send_alert(AlertSeverity.ERROR, AlertCategory.DATABASE, 'Store', 'write failed')
        second = await alert_system.send_alert(AlertSeverity.ERROR, AlertCategory.DATABASE, 'Store', 'write failed')

        assert second is False
        assert alert_system._deliver.await_count == 1

    async def test_rate_limit(self, alert_system):
        results = [
            await alert_system.send_alert(AlertSeverity.ERROR, AlertCategory.EXTERNAL_API, 'Njalla', f"failure {i}")
            for i in range(3)
        ]

        assert results == [True, True, False]

    async def test_below_min_severity_is_dropped(self, alert_system):
        assert await alert_system.send_alert(AlertSeverity.INFO, AlertCategory.SYSTEM_HEALTH, 'Main', 'hello') is False
        alert_system._deliver.assert_not_awaited()

    async def test_disabled_alerts_only_log(self, alert_env, monkeypatch):
        monkeypatch.setenv('ADMIN_ALERTS_ENABLED', 'false')
        system = AdminAlertSystem(AdminAlertConfig())
        system._deliver = AsyncMock(return_value=1)

        assert await system.send_alert(AlertSeverity.CRITICAL, AlertCategory.DATA_INTEGRITY, 'X', 'y') is False
        system._deliver.assert_not_awaited()

    async def test_telegram_send_uses_bot(self, alert_env):
        system = AdminAlertSystem(AdminAlertConfig())
        bot = AsyncMock()
        bot.__aenter__.return_value = bot

        with patch('admin_alerts.Bot', return_value=bot):
            sent = await system.send_alert(AlertSeverity.CRITICAL, AlertCategory.PAYMENT_PROCESSING,
                                           'DomainProcessor', 'manual reconciliation required',
                                           {'order_id': 'ord_1'})

        assert sent is True
        assert bot.send_message.await_count == 2
        kwargs = bot.send_message.await_args.kwargs
        assert kwargs['parse_mode'] == 'HTML'
        assert 'ord_1' in kwargs['text']

class TestAlert:

    def test_fingerprint_is_stable(self):
        first = Alert(AlertSeverity.ERROR, AlertCategory.DATABASE, 'Store', 'write failed')
        second = Alert(AlertSeverity.ERROR, AlertCategory.DATABASE, 'Store', 'write failed')

        assert first.fingerprint == second.fingerprint
        assert first.to_dict()['severity'] == 'ERROR'

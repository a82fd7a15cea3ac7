"""
Admin Alert System for the domain fulfillment service

Operator notifications for conditions that need a human: ambiguous registrar
payments, data inconsistencies, payments cancelled after funds were sent.

Features:
- Multiple severity levels (CRITICAL, ERROR, WARNING, INFO)
- Rate limiting to prevent alert spam
- Suppression of duplicate alerts by fingerprint
- Delivery to one or more admin Telegram chats
"""

import os
import logging
import hashlib
import json
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Any, Union
from enum import Enum
from dataclasses import dataclass, asdict

from telegram import Bot
from telegram.error import TelegramError

logger = logging.getLogger(__name__)

# ====================================================================
# ALERT SEVERITY LEVELS AND CONFIGURATION
# ====================================================================

class AlertSeverity(Enum):
    """Alert severity levels"""
    CRITICAL = "CRITICAL"
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"

class AlertCategory(Enum):
    """Alert categories for filtering and organization"""
    DOMAIN_REGISTRATION = "domain_registration"
    PAYMENT_PROCESSING = "payment_processing"
    DATA_INTEGRITY = "data_integrity"
    SYSTEM_HEALTH = "system_health"
    EXTERNAL_API = "external_api"
    DATABASE = "database"

SEVERITY_ORDER = [AlertSeverity.INFO, AlertSeverity.WARNING, AlertSeverity.ERROR, AlertSeverity.CRITICAL]

@dataclass
class Alert:
    """Structured alert data"""
    severity: AlertSeverity
    category: AlertCategory
    component: str
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None
    fingerprint: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)
        if self.fingerprint is None:
            self.fingerprint = self._generate_fingerprint()

    def _generate_fingerprint(self) -> str:
        """Generate a fingerprint for alert deduplication"""
        content = f"{self.severity.value}:{self.category.value}:{self.component}:{self.message}"
        return hashlib.md5(content.encode()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['severity'] = self.severity.value
        data['category'] = self.category.value
        data['timestamp'] = self.timestamp.isoformat() if self.timestamp else None
        return data

class AdminAlertConfig:
    """Configuration for admin alert system"""

    def __init__(self):
        self.rate_limit_window = int(os.getenv('ALERT_RATE_LIMIT_WINDOW', '300'))
        self.max_alerts_per_window = int(os.getenv('ALERT_MAX_PER_WINDOW', '10'))
        self.suppression_window = int(os.getenv('ALERT_SUPPRESSION_WINDOW', '3600'))
        self.admin_user_ids = self._parse_admin_users()
        self.min_severity = AlertSeverity(os.getenv('ALERT_MIN_SEVERITY', 'WARNING').upper())
        self.alerts_enabled = os.getenv('ADMIN_ALERTS_ENABLED', 'true').lower() == 'true'
        self.bot_token = os.getenv('TELEGRAM_BOT_TOKEN', '')

        logger.info(f"✅ Admin Alert Config: enabled={self.alerts_enabled}, "
                    f"admins={len(self.admin_user_ids)}, min_severity={self.min_severity.value}")

    def _parse_admin_users(self) -> List[int]:
        """Parse admin chat IDs from ADMIN_USER_ID and ADDITIONAL_ADMIN_USER_IDS"""
        raw_ids = [os.getenv('ADMIN_USER_ID', '')]
        raw_ids.extend(os.getenv('ADDITIONAL_ADMIN_USER_IDS', '').split(','))

        admin_ids = []
        for raw in raw_ids:
            raw = raw.strip()
            if not raw:
                continue
            try:
                admin_ids.append(int(raw))
            except ValueError:
                logger.warning(f"Invalid admin ID format: {raw}")

        if not admin_ids:
            logger.warning("⚠️ No admin user IDs configured - alerts will be logged only")
        return admin_ids

# ====================================================================
# ADMIN ALERT SYSTEM - MAIN CLASS
# ====================================================================

class AdminAlertSystem:
    """Main admin alert system with rate limiting and deduplication"""

    def __init__(self, config: Optional[AdminAlertConfig] = None):
        self.config = config or AdminAlertConfig()
        self._suppressed_alerts: Dict[str, datetime] = {}
        self._rate_limit_tracker: List[datetime] = []

    def _is_rate_limited(self) -> bool:
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.config.rate_limit_window)
        self._rate_limit_tracker = [ts for ts in self._rate_limit_tracker if ts > cutoff]
        return len(self._rate_limit_tracker) >= self.config.max_alerts_per_window

    def _is_suppressed(self, fingerprint: str) -> bool:
        suppressed_until = self._suppressed_alerts.get(fingerprint)
        if suppressed_until is None:
            return False
        if datetime.now(timezone.utc) > suppressed_until:
            del self._suppressed_alerts[fingerprint]
            return False
        return True

    def _suppress_alert(self, fingerprint: str):
        self._suppressed_alerts[fingerprint] = (
            datetime.now(timezone.utc) + timedelta(seconds=self.config.suppression_window)
        )

    def _format_alert_message(self, alert: Alert) -> str:
        """Format alert for Telegram (HTML parse mode)"""
        severity_icons = {
            AlertSeverity.CRITICAL: "🔴",
            AlertSeverity.ERROR: "🟠",
            AlertSeverity.WARNING: "🟡",
            AlertSeverity.INFO: "🔵"
        }
        icon = severity_icons.get(alert.severity, "⚠️")
        timestamp_str = alert.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC") if alert.timestamp else "Unknown"

        message_parts = [
            f"{icon} <b>ADMIN ALERT - {alert.severity.value}</b>",
            f"📋 <b>Category:</b> {alert.category.value.replace('_', ' ').title()}",
            f"🔧 <b>Component:</b> {alert.component}",
            f"📝 <b>Message:</b> {alert.message}",
            f"🕐 <b>Time:</b> {timestamp_str}",
        ]

        if alert.details:
            message_parts.append("📊 <b>Details:</b>")
            for key, value in alert.details.items():
                if isinstance(value, dict):
                    value = json.dumps(value, indent=2, default=str)
                elif isinstance(value, (list, tuple)):
                    value = ", ".join(str(v) for v in value)
                message_parts.append(f"   • <b>{key}:</b> {value}")

        return "\n".join(message_parts)

    async def _deliver(self, alert: Alert) -> int:
        """Send the alert to every configured admin, returns number of successful sends"""
        if not self.config.bot_token or not self.config.admin_user_ids:
            return 0

        message = self._format_alert_message(alert)
        sent_count = 0
        async with Bot(self.config.bot_token) as bot:
            for admin_id in self.config.admin_user_ids:
                try:
                    await bot.send_message(chat_id=admin_id, text=message, parse_mode='HTML')
                    sent_count += 1
                    logger.info(f"✅ Admin alert sent to {admin_id}: {alert.severity.value} - {alert.component}")
                except TelegramError as e:
                    logger.error(f"❌ Failed to send admin alert to {admin_id}: {e}")
        return sent_count

    async def send_alert(
        self,
        severity: Union[AlertSeverity, str],
        category: Union[AlertCategory, str],
        component: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Send an admin alert with rate limiting and deduplication

        Args:
            severity: Alert severity level
            category: Alert category
            component: Component that generated the alert
            message: Human-readable alert message
            details: Additional structured data

        Returns:
            bool: True if alert was delivered to at least one admin
        """
        if isinstance(severity, str):
            severity = AlertSeverity(severity.upper())
        if isinstance(category, str):
            category = AlertCategory(category.lower())

        # The log line is the durable record even when delivery is off
        log_level = getattr(logging, severity.value, logging.WARNING)
        logger.log(log_level, f"🚨 ADMIN ALERT ({severity.value}): [{component}] {message}")

        if not self.config.alerts_enabled:
            return False

        if SEVERITY_ORDER.index(severity) < SEVERITY_ORDER.index(self.config.min_severity):
            logger.debug(f"Alert below minimum severity ({self.config.min_severity.value}) - skipping: {message}")
            return False

        alert = Alert(
            severity=severity,
            category=category,
            component=component,
            message=message,
            details=details
        )

        if alert.fingerprint and self._is_suppressed(alert.fingerprint):
            logger.debug(f"Alert suppressed (duplicate): {component}: {message}")
            return False

        if self._is_rate_limited():
            logger.warning(f"⚠️ Admin alerts rate limited - dropping: {component}: {message}")
            return False

        try:
            sent_count = await self._deliver(alert)
        except TelegramError as e:
            logger.error(f"❌ Admin alert delivery error: {e}")
            return False

        if sent_count == 0:
            return False

        self._rate_limit_tracker.append(datetime.now(timezone.utc))
        if alert.fingerprint:
            self._suppress_alert(alert.fingerprint)
        return True

# ====================================================================
# GLOBAL ADMIN ALERT INSTANCE
# ====================================================================

_admin_alert_system = None

def get_admin_alert_system() -> AdminAlertSystem:
    """Get or create the global admin alert system instance"""
    global _admin_alert_system
    if _admin_alert_system is None:
        _admin_alert_system = AdminAlertSystem()
    return _admin_alert_system

async def send_critical_alert(component: str, message: str, category: str = "system_health", details: Optional[Dict[str, Any]] = None):
    """Send a critical admin alert"""
    return await get_admin_alert_system().send_alert(AlertSeverity.CRITICAL, category, component, message, details)

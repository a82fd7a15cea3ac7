"""
Health Monitoring and System Status for the fulfillment process
Tracks uptime, recent errors and the outcome of the latest fulfillment tick
"""

import time
import logging
import threading
from typing import Dict, Any, Optional
from datetime import datetime, timezone

import psutil

logger = logging.getLogger(__name__)

class HealthMonitor:
    """Process health monitoring and status tracking"""

    def __init__(self):
        self.start_time = time.time()
        self.error_log = []
        self.last_tick: Optional[Dict[str, Any]] = None
        self.last_tick_at: Optional[float] = None
        self.tick_count = 0
        self._lock = threading.Lock()

    def update_error_count(self, error_message: str):
        """Track errors for health monitoring (one hour window)"""
        with self._lock:
            current_time = time.time()
            self.error_log.append({
                'timestamp': current_time,
                'message': str(error_message)[:200]
            })
            one_hour_ago = current_time - 3600
            self.error_log = [err for err in self.error_log if err['timestamp'] > one_hour_ago]

    def record_tick(self, summary: Dict[str, Any]):
        """Remember the summary of the latest fulfillment tick"""
        with self._lock:
            self.last_tick = dict(summary)
            self.last_tick_at = time.time()
            self.tick_count += 1

    def _overall_status(self, error_count: int) -> str:
        if error_count > 50:
            return 'critical'
        if error_count > 20:
            return 'degraded'
        if error_count > 5:
            return 'warning'
        return 'healthy'

    def get_health_status(self) -> Dict[str, Any]:
        """Snapshot of process health"""
        with self._lock:
            one_hour_ago = time.time() - 3600
            recent_errors = [err for err in self.error_log if err['timestamp'] > one_hour_ago]
            last_error = recent_errors[-1] if recent_errors else None

            try:
                memory_mb = psutil.Process().memory_info().rss / (1024 * 1024)
            except psutil.Error:
                memory_mb = 0

            return {
                'overall': self._overall_status(len(recent_errors)),
                'uptime_seconds': int(time.time() - self.start_time),
                'memory_mb': round(memory_mb, 1),
                'error_count_1h': len(recent_errors),
                'last_error': {
                    'message': last_error['message'][:100],
                    'timestamp': datetime.fromtimestamp(last_error['timestamp'], timezone.utc).isoformat()
                } if last_error else None,
                'tick_count': self.tick_count,
                'last_tick': self.last_tick,
                'last_tick_at': datetime.fromtimestamp(self.last_tick_at, timezone.utc).isoformat()
                if self.last_tick_at else None,
            }

_health_monitor = None

def get_health_monitor() -> HealthMonitor:
    """Get or create global health monitor instance"""
    global _health_monitor
    if _health_monitor is None:
        _health_monitor = HealthMonitor()
        logger.info("✅ Health monitor initialized")
    return _health_monitor

def log_error(error_message: str):
    """Convenience function to log errors to health monitor"""
    get_health_monitor().update_error_count(error_message)

def get_health_status() -> Dict[str, Any]:
    return get_health_monitor().get_health_status()

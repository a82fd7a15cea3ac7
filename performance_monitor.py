"""
Performance monitoring utilities
Timings for registrar, wallet and oracle calls, aggregated per operation
"""

import inspect
import logging
import time
import functools
import threading
from typing import Dict, Any, Callable
from datetime import datetime, timezone

import psutil

logger = logging.getLogger(__name__)

# operation -> {'count', 'failures', 'total_ms', 'max_ms'}
_operation_stats: Dict[str, Dict[str, float]] = {}
_stats_lock = threading.Lock()

def _record(operation_name: str, duration_ms: float, failed: bool):
    # Per-order timers carry the order id; aggregate on the operation prefix
    key = operation_name.split(':', 1)[0]
    with _stats_lock:
        stats = _operation_stats.setdefault(key, {'count': 0, 'failures': 0, 'total_ms': 0.0, 'max_ms': 0.0})
        stats['count'] += 1
        stats['failures'] += 1 if failed else 0
        stats['total_ms'] += duration_ms
        stats['max_ms'] = max(stats['max_ms'], duration_ms)

class OperationTimer:
    """Times a block and records it under operation_name"""

    def __init__(self, operation_name: str):
        self.operation_name = operation_name
        self.start_time = None
        self.end_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.perf_counter()
        _record(self.operation_name, self.duration_ms, exc_type is not None)
        if exc_type is None:
            logger.debug(f"⏱️ {self.operation_name}: {self.duration_ms:.2f}ms")
        else:
            logger.warning(f"⏱️ {self.operation_name}: {self.duration_ms:.2f}ms (failed: {exc_type.__name__})")

    @property
    def duration_ms(self) -> float:
        if self.start_time is not None and self.end_time is not None:
            return (self.end_time - self.start_time) * 1000
        return 0.0

def monitor_performance(operation_name: str):
    """Decorator timing every call of a sync or async function"""
    def decorator(func: Callable):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            with OperationTimer(f"{operation_name}.{func.__name__}"):
                return await func(*args, **kwargs)

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            with OperationTimer(f"{operation_name}.{func.__name__}"):
                return func(*args, **kwargs)

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator

def get_operation_stats() -> Dict[str, Dict[str, float]]:
    """Per-operation call count, failures, average and worst duration"""
    with _stats_lock:
        return {
            name: {
                'count': int(stats['count']),
                'failures': int(stats['failures']),
                'avg_ms': round(stats['total_ms'] / stats['count'], 2) if stats['count'] else 0.0,
                'max_ms': round(stats['max_ms'], 2),
            }
            for name, stats in _operation_stats.items()
        }

def reset_operation_stats():
    with _stats_lock:
        _operation_stats.clear()

def get_performance_stats() -> Dict[str, Any]:
    """Process statistics plus operation timings"""
    stats: Dict[str, Any] = {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'operations': get_operation_stats(),
    }
    try:
        process = psutil.Process()
        stats.update({
            'memory_mb': round(process.memory_info().rss / (1024 * 1024), 1),
            'cpu_percent': process.cpu_percent(),
            'process_id': process.pid,
        })
    except psutil.Error as e:
        logger.warning(f"Failed to get process stats: {e}")
        stats['error'] = str(e)
    return stats

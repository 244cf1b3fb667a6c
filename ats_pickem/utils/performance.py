"""
Timing helpers for the recompute worker

``timer`` wraps worker entry points (queue drains, rebuilds) and keeps a
running per-function summary that the scheduler status reports.
``PerformanceMonitor`` times an arbitrary block.
"""

import functools
import threading
import time

from flask import current_app, has_app_context

from ats_pickem.utils.logging_config import get_logger

logger = get_logger(__name__)

_timings = {}
_timings_lock = threading.Lock()


def _slow_threshold():
    if has_app_context():
        return current_app.config.get("SLOW_FUNCTION_THRESHOLD", 1.0)
    return 1.0


def _record(name, elapsed, failed):
    with _timings_lock:
        entry = _timings.setdefault(
            name, {"calls": 0, "failures": 0, "total_seconds": 0.0, "max_seconds": 0.0}
        )
        entry["calls"] += 1
        entry["failures"] += int(failed)
        entry["total_seconds"] += elapsed
        entry["max_seconds"] = max(entry["max_seconds"], elapsed)


def get_timing_summary():
    """Per-function call counts and durations since process start"""
    with _timings_lock:
        return {
            name: dict(entry, avg_seconds=round(entry["total_seconds"] / entry["calls"], 3))
            for name, entry in _timings.items()
        }


def timer(func):
    """Log slow or failing calls and add them to the timing summary"""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            elapsed = time.time() - start_time
            _record(func.__name__, elapsed, failed=True)
            logger.error(f"{func.__name__} failed after {elapsed:.2f}s: {e}")
            raise

        elapsed = time.time() - start_time
        _record(func.__name__, elapsed, failed=False)

        threshold = _slow_threshold()
        if elapsed > threshold:
            logger.warning(f"Slow {func.__name__}: {elapsed:.2f}s (threshold {threshold}s)")
        return result

    return wrapper


class PerformanceMonitor:
    """Time a block; logs when it runs longer than log_threshold seconds"""

    def __init__(self, operation_name, log_threshold=0.1):
        self.operation_name = operation_name
        self.log_threshold = log_threshold
        self.start_time = None
        self.end_time = None

    @property
    def duration(self):
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.time()
        if self.duration <= self.log_threshold:
            return

        if exc_type:
            logger.error(f"{self.operation_name} failed after {self.duration:.3f}s: {exc_val}")
        else:
            logger.info(f"{self.operation_name} took {self.duration:.3f}s")

"""Performance Logging.

Timing for metric computations and store scans. Calls slower than the
threshold log at WARNING, failures at ERROR, everything else at DEBUG.
The default threshold follows the last ``configure_logging()`` call.
"""

import asyncio
import functools
import logging
import time
from typing import Any, Callable, Optional

from src.logging_config.config import DEFAULT_LOGGING_CONFIG

logger = logging.getLogger(__name__)

_default_threshold_ms = DEFAULT_LOGGING_CONFIG.slow_threshold_ms


def set_default_threshold(threshold_ms: float) -> None:
    global _default_threshold_ms
    _default_threshold_ms = threshold_ms


def _report(
    log: logging.Logger,
    name: str,
    duration_ms: float,
    threshold_ms: Optional[float],
    failed: Optional[BaseException] = None,
) -> None:
    if threshold_ms is None:
        threshold_ms = _default_threshold_ms
    extra = {"duration_ms": round(duration_ms, 2)}
    if failed is not None:
        log.error(
            "%s failed after %.1fms: %s", name, duration_ms, type(failed).__name__,
            extra=extra,
        )
    elif duration_ms >= threshold_ms:
        log.warning("Slow operation: %s took %.1fms", name, duration_ms, extra=extra)
    else:
        log.debug("%s completed in %.1fms", name, duration_ms, extra=extra)


def log_performance(
    threshold_ms: Optional[float] = None,
    logger_name: Optional[str] = None,
) -> Callable:
    """Decorator timing plain and async functions.

    Example:
        @log_performance(threshold_ms=200)
        async def get_ops_metrics(self, window_days):
            ...
    """

    def decorator(func: Callable) -> Callable:
        log = logging.getLogger(logger_name or func.__module__)
        name = func.__qualname__

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                start = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as exc:
                    _report(log, name, (time.perf_counter() - start) * 1000, threshold_ms, exc)
                    raise
                _report(log, name, (time.perf_counter() - start) * 1000, threshold_ms)
                return result
            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                _report(log, name, (time.perf_counter() - start) * 1000, threshold_ms, exc)
                raise
            _report(log, name, (time.perf_counter() - start) * 1000, threshold_ms)
            return result
        return sync_wrapper

    return decorator


class PerformanceTimer:
    """Times a block; ``duration_ms`` is set on exit.

    Example:
        with PerformanceTimer("alert_store.list_page") as timer:
            page = store.list_page(filters, limit, offset)
    """

    def __init__(self, operation_name: str, threshold_ms: Optional[float] = None):
        self.operation_name = operation_name
        self.threshold_ms = threshold_ms
        self.start_time: float = 0
        self.duration_ms: float = 0

    def __enter__(self) -> "PerformanceTimer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        _report(logger, self.operation_name, self.duration_ms, self.threshold_ms, exc_val)

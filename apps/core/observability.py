"""
Observability utilities for ScrapeQueue.

Structured logging and in-process metrics collection shared by the
crawler and the reducer.
"""

import functools
import json
import logging
import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Structured Logging
# =============================================================================

@dataclass
class LogContext:
    """
    Structured log context for consistent logging.
    """
    component: str
    operation: str
    correlation_id: Optional[str] = None
    run_id: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        result = {
            "component": self.component,
            "operation": self.operation,
        }
        if self.correlation_id:
            result["correlation_id"] = self.correlation_id
        if self.run_id is not None:
            result["run_id"] = self.run_id
        if self.extra:
            result.update(self.extra)
        return result


class StructuredLogger:
    """
    Structured logger that outputs JSON-formatted logs.

    Supports contextual logging with correlation IDs and consistent field names.
    """

    def __init__(self, name: str, default_context: Optional[LogContext] = None):
        """
        Initialize structured logger.

        Args:
            name: Logger name (typically module name).
            default_context: Default context to include in all logs.
        """
        self._logger = logging.getLogger(name)
        self._default_context = default_context
        self._context_stack: List[LogContext] = []

    @property
    def name(self) -> str:
        return self._logger.name

    def _format_message(
        self,
        message: str,
        context: Optional[LogContext] = None,
        **kwargs
    ) -> str:
        """Format message with structured context."""
        log_data = {
            "message": message,
            "timestamp": _utcnow().isoformat(),
        }

        if self._default_context:
            log_data.update(self._default_context.to_dict())

        # Stacked context, most recent wins
        for ctx in self._context_stack:
            log_data.update(ctx.to_dict())

        if context:
            log_data.update(context.to_dict())

        log_data.update(kwargs)

        return json.dumps(log_data, default=str)

    @contextmanager
    def context(self, ctx: LogContext):
        """
        Context manager for temporary logging context.

        Args:
            ctx: LogContext to use within the block.
        """
        self._context_stack.append(ctx)
        try:
            yield
        finally:
            self._context_stack.pop()

    def log(self, level: int, message: str, context: Optional[LogContext] = None, **kwargs):
        """Log at an arbitrary numeric level."""
        if not self._logger.isEnabledFor(level):
            return
        kwargs.setdefault("level", logging.getLevelName(level))
        self._logger.log(level, self._format_message(message, context, **kwargs))

    def debug(self, message: str, context: Optional[LogContext] = None, **kwargs):
        """Log debug message."""
        self.log(logging.DEBUG, message, context, **kwargs)

    def info(self, message: str, context: Optional[LogContext] = None, **kwargs):
        """Log info message."""
        self.log(logging.INFO, message, context, **kwargs)

    def warning(self, message: str, context: Optional[LogContext] = None, **kwargs):
        """Log warning message."""
        self.log(logging.WARNING, message, context, **kwargs)

    def error(self, message: str, context: Optional[LogContext] = None, exc_info: bool = False, **kwargs):
        """Log error message."""
        if exc_info:
            kwargs["traceback"] = traceback.format_exc()
        self.log(logging.ERROR, message, context, **kwargs)

    def exception(self, message: str, context: Optional[LogContext] = None, **kwargs):
        """Log exception with traceback."""
        self.error(message, context, exc_info=True, **kwargs)


def get_logger(name: str, component: Optional[str] = None) -> StructuredLogger:
    """
    Get a structured logger.

    Args:
        name: Logger name.
        component: Default component name for context.

    Returns:
        StructuredLogger instance.
    """
    default_ctx = None
    if component:
        default_ctx = LogContext(component=component, operation="")
    return StructuredLogger(name, default_ctx)


# =============================================================================
# Metrics Collection
# =============================================================================

class MetricType(Enum):
    """Types of metrics."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class Metric:
    """A single metric data point."""
    name: str
    type: MetricType
    value: float
    timestamp: datetime = field(default_factory=_utcnow)
    tags: Dict[str, str] = field(default_factory=dict)


class MetricsCollector:
    """
    Collect and aggregate metrics.

    Thread-safe singleton for application-wide metrics. Crawl workers run
    on a thread pool, so every mutation goes through the class lock.
    """

    _instance = None
    _lock = Lock()

    # Data points kept per metric name
    MAX_POINTS = 1000

    def __new__(cls):
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._metrics = {}
                cls._instance._counters = {}
                cls._instance._gauges = {}
                cls._instance._histograms = {}
        return cls._instance

    def _make_key(self, name: str, tags: Optional[Dict[str, str]] = None) -> str:
        """Create a unique key for a metric with tags."""
        if not tags:
            return name
        tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
        return f"{name}[{tag_str}]"

    def increment(self, name: str, value: float = 1.0, tags: Optional[Dict[str, str]] = None) -> None:
        """
        Increment a counter metric.

        Args:
            name: Metric name.
            value: Value to increment by.
            tags: Optional tags for the metric.
        """
        key = self._make_key(name, tags)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value
            self._record(Metric(name, MetricType.COUNTER, self._counters[key], tags=tags or {}))

    def gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        """Set a gauge metric."""
        key = self._make_key(name, tags)
        with self._lock:
            self._gauges[key] = value
            self._record(Metric(name, MetricType.GAUGE, value, tags=tags or {}))

    def histogram(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        """Record a histogram value."""
        key = self._make_key(name, tags)
        with self._lock:
            values = self._histograms.setdefault(key, [])
            values.append(value)
            del values[:-self.MAX_POINTS]
            self._record(Metric(name, MetricType.HISTOGRAM, value, tags=tags or {}))

    @contextmanager
    def timer(self, name: str, tags: Optional[Dict[str, str]] = None):
        """
        Context manager to time an operation.

        Yields:
            None. Duration is recorded on exit.
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            self.histogram(f"{name}_duration_ms", duration_ms, tags)
            self.increment(f"{name}_count", tags=tags)

    def _record(self, metric: Metric) -> None:
        points = self._metrics.setdefault(metric.name, [])
        points.append(metric)
        del points[:-self.MAX_POINTS]

    def get_counter(self, name: str, tags: Optional[Dict[str, str]] = None) -> float:
        """Get current counter value."""
        return self._counters.get(self._make_key(name, tags), 0)

    def get_gauge(self, name: str, tags: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Get current gauge value."""
        return self._gauges.get(self._make_key(name, tags))

    def get_histogram_stats(self, name: str, tags: Optional[Dict[str, str]] = None) -> Dict[str, float]:
        """Get histogram statistics."""
        values = self._histograms.get(self._make_key(name, tags), [])

        if not values:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p50": 0, "p95": 0}

        sorted_values = sorted(values)
        count = len(sorted_values)

        return {
            "count": count,
            "min": sorted_values[0],
            "max": sorted_values[-1],
            "avg": sum(sorted_values) / count,
            "p50": sorted_values[int(count * 0.50)],
            "p95": sorted_values[int(count * 0.95)] if count > 1 else sorted_values[0],
        }

    def get_all_metrics(self) -> Dict[str, Any]:
        """Get all current metric values."""
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
            histogram_keys = list(self._histograms.keys())
        return {
            "counters": counters,
            "gauges": gauges,
            "histograms": {key: self._stats_for_key(key) for key in histogram_keys},
            "timestamp": _utcnow().isoformat(),
        }

    def _stats_for_key(self, key: str) -> Dict[str, float]:
        name, _, raw_tags = key.partition("[")
        tags = None
        if raw_tags:
            tags = dict(pair.split("=", 1) for pair in raw_tags.rstrip("]").split(","))
        return self.get_histogram_stats(name, tags)

    def clear(self) -> None:
        """Clear all metrics (useful for testing)."""
        with self._lock:
            self._metrics.clear()
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()


# Global metrics instance
metrics = MetricsCollector()


# =============================================================================
# Performance Monitoring Decorators
# =============================================================================

def timed(metric_name: Optional[str] = None, tags: Optional[Dict[str, str]] = None):
    """
    Decorator to time function execution.

    Args:
        metric_name: Metric name (default: function name).
        tags: Optional metric tags.
    """
    def decorator(func: Callable) -> Callable:
        name = metric_name or f"{func.__module__}.{func.__name__}"

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with metrics.timer(name, tags):
                return func(*args, **kwargs)

        return wrapper
    return decorator


def counted(metric_name: Optional[str] = None, tags: Optional[Dict[str, str]] = None):
    """Decorator to count function calls."""
    def decorator(func: Callable) -> Callable:
        name = metric_name or f"{func.__module__}.{func.__name__}_calls"

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            metrics.increment(name, tags=tags)
            return func(*args, **kwargs)

        return wrapper
    return decorator


# =============================================================================
# Convenience Functions
# =============================================================================

def record_page_metrics(
    status: str,
    latency_ms: float,
    links_queued: int = 0,
):
    """Record metrics for one finalized queue item."""
    metrics.increment("crawler.pages", tags={"status": status})
    metrics.histogram("crawler.fetch_latency_ms", latency_ms)
    if links_queued:
        metrics.increment("crawler.links_queued", links_queued)


def record_reduction_metrics(mode: str, input_length: int, output_length: int):
    """Record metrics for one reducer invocation."""
    metrics.increment("reducer.runs", tags={"mode": mode})
    metrics.histogram("reducer.input_length", input_length, tags={"mode": mode})
    metrics.histogram("reducer.output_length", output_length, tags={"mode": mode})

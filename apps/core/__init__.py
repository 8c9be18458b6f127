"""
Core app for ScrapeQueue.

Provides shared base models, observability and error handling.
"""

# Key exports for external use
from .observability import (
    # Logging
    StructuredLogger,
    LogContext,
    get_logger,

    # Metrics
    MetricsCollector,
    MetricType,
    Metric,
    metrics,

    # Decorators
    timed,
    counted,

    # Convenience functions
    record_page_metrics,
    record_reduction_metrics,
)

__all__ = [
    # Logging
    'StructuredLogger',
    'LogContext',
    'get_logger',

    # Metrics
    'MetricsCollector',
    'MetricType',
    'Metric',
    'metrics',

    # Decorators
    'timed',
    'counted',

    # Convenience functions
    'record_page_metrics',
    'record_reduction_metrics',
]

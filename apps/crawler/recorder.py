"""
Per-run log sink.

Every entry is written twice: to the structured application log and to
the crawler_logs table, so dashboards can follow a run without access to
process logs.
"""

import logging
from typing import Any, Dict, Optional

from apps.core.observability import LogContext, get_logger

from .models import LogEntry

LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'error': logging.ERROR,
}


class RunRecorder:
    """
    Logger bound to one crawl run.

    Usage:
        recorder = RunRecorder(run.id)
        recorder.log('info', 'Starting crawler process', {'max_pages': 10})
    """

    def __init__(self, run_id: int):
        self.run_id = run_id
        self._logger = get_logger(__name__, component='crawler')
        self._context = LogContext(component='crawler', operation='run', run_id=run_id)

    def log(self, level: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Record one observation for the run.

        Args:
            level: One of debug, info, warn, error
            message: Human-readable message
            metadata: JSON-serializable structured payload
        """
        if level not in LEVELS:
            raise ValueError(f"Unknown log level: {level}")

        self._logger.log(LEVELS[level], message, self._context, metadata=metadata or {})

        LogEntry.objects.create(
            run_id=self.run_id,
            level=level,
            message=message,
            metadata=metadata or None,
        )

    def debug(self, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log('debug', message, metadata)

    def info(self, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log('info', message, metadata)

    def warn(self, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log('warn', message, metadata)

    def error(self, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log('error', message, metadata)

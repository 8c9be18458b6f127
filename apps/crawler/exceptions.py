"""Crawler exceptions and fetch error classification."""

import json
from typing import Any, Dict, Optional, Tuple

from apps.core.exceptions import ErrorCode


class FetchError(Exception):
    """
    Raised by a PageFetcher when a page could not be retrieved.

    Carries the upstream HTTP status and raw response body, when there was
    one, so the failed queue item can record them.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_body = response_body

    def error_response(self) -> Optional[Any]:
        """Response body parsed as JSON, else wrapped as {'body': raw}."""
        if self.response_body is None:
            return None
        try:
            return json.loads(self.response_body)
        except (TypeError, ValueError):
            return {'body': self.response_body}


class CrawlFailed(Exception):
    """Raised when a run is aborted because its failure budget ran out."""

    def __init__(self, run_id: int, failed_count: int):
        super().__init__(f"Too many failed requests ({failed_count}) for run {run_id}")
        self.run_id = run_id
        self.failed_count = failed_count


def classify_error(exc: Exception) -> Tuple[str, str]:
    """
    Classify an exception into a normalized error code.

    Returns tuple of (error_code, error_message).
    """
    exc_type = type(exc).__name__
    exc_msg = str(exc)
    lowered = exc_msg.lower()

    status_code = getattr(exc, 'status_code', None)
    if status_code:
        if status_code == 403:
            return ErrorCode.HTTP_FORBIDDEN.value, exc_msg
        if status_code == 404:
            return ErrorCode.HTTP_NOT_FOUND.value, exc_msg
        if status_code == 429:
            return ErrorCode.RATE_LIMITED.value, exc_msg
        if status_code >= 500:
            return ErrorCode.HTTP_SERVER_ERROR.value, exc_msg
        if status_code >= 400:
            return ErrorCode.HTTP_CLIENT_ERROR.value, exc_msg

    # Network errors
    if exc_type in ('ConnectTimeout', 'ReadTimeout', 'Timeout') or 'timed out' in lowered:
        return ErrorCode.NETWORK_TIMEOUT.value, exc_msg
    if 'ssl' in lowered or 'certificate' in lowered:
        return ErrorCode.SSL_ERROR.value, exc_msg
    if 'dns' in lowered or 'name resolution' in lowered:
        return ErrorCode.DNS_ERROR.value, exc_msg
    if exc_type in ('ConnectionError', 'ConnectionRefusedError', 'ConnectionResetError'):
        return ErrorCode.NETWORK_REFUSED.value, exc_msg

    # Parsing errors
    if exc_type in ('JSONDecodeError', 'ParserRejectedMarkup'):
        return ErrorCode.PARSE_ERROR.value, exc_msg

    return ErrorCode.UNKNOWN_ERROR.value, exc_msg


def build_error_payload(exc: Exception, latency_ms: Optional[int] = None) -> Dict[str, Any]:
    """Structured error detail stored on a failed queue item."""
    error_code, message = classify_error(exc)
    payload = {
        'message': message or type(exc).__name__,
        'error_code': error_code,
        'status_code': getattr(exc, 'status_code', None),
        'error_response': exc.error_response() if isinstance(exc, FetchError) else None,
    }
    if latency_ms is not None:
        payload['latency_ms'] = latency_ms
    return payload

"""
Programmatic entry points for crawl runs.

start_crawl / resume / pause / get_results are what the REST API, the
management command and the Celery tasks call. All input validation, and
resolving the page fetcher for inline runs, happens before any row is
written. scrape_page is the one-shot fetch with no run behind it.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, Optional, Union
from urllib.parse import urlsplit

from django.conf import settings as django_settings
from django.db import transaction

from apps.core.exceptions import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    ServiceUnavailableError,
    UpstreamError,
    ValidationError,
)
from apps.core.observability import counted, timed

from .exceptions import FetchError, build_error_payload
from .interfaces import PageFetcher, ScrapeSettings
from .models import CrawlRun, LogEntry, QueueItem
from .queue import QueueStore
from .recorder import RunRecorder
from .scheduler import CrawlScheduler
from .serializers import (
    CrawlRunSerializer,
    LogEntrySerializer,
    QueueItemSerializer,
    QueueItemWithHtmlSerializer,
)
from .state_machine import RunState, TransitionError, transition_run
from .urlfilter import normalize_url

logger = logging.getLogger(__name__)


def _validate_url(url: str, field: str) -> None:
    try:
        parts = urlsplit(url or '')
        host = parts.hostname
    except (TypeError, ValueError):
        host = None
        parts = None
    if parts is None or parts.scheme.lower() not in ('http', 'https') or not host:
        raise ValidationError(
            f"URL must be an absolute http(s) URL: {url!r}",
            code=ErrorCode.INVALID_URL,
            field=field,
        )


def _coerce_settings(settings: Union[ScrapeSettings, Dict[str, Any], None]) -> ScrapeSettings:
    if isinstance(settings, ScrapeSettings):
        return settings
    if settings is not None and not isinstance(settings, dict):
        raise ValidationError("settings must be an object", field='settings')
    return ScrapeSettings.from_dict(settings)


def _validate_settings(scrape_settings: ScrapeSettings) -> None:
    problems = scrape_settings.validate()
    if problems:
        raise ValidationError(
            "Invalid fetch settings",
            code=ErrorCode.INVALID_VALUE,
            field='settings',
            details={'errors': problems},
        )


def _validate_start(
    seed_url: str,
    max_depth: int,
    max_pages: int,
    concurrency: int,
    include_patterns: Iterable[str],
    exclude_patterns: Iterable[str],
    scrape_settings: ScrapeSettings,
) -> None:
    _validate_url(seed_url, 'start_url')

    if not isinstance(max_depth, int) or max_depth < 0:
        raise ValidationError("max_depth must be a non-negative integer", field='max_depth')
    if not isinstance(max_pages, int) or max_pages < 1:
        raise ValidationError("max_pages must be at least 1", field='max_pages')

    limit = getattr(django_settings, 'CRAWLER_MAX_CONCURRENCY', 5)
    if not isinstance(concurrency, int) or not 1 <= concurrency <= limit:
        raise ValidationError(f"concurrency must be between 1 and {limit}", field='concurrency')

    for name, patterns in (('include_patterns', include_patterns), ('exclude_patterns', exclude_patterns)):
        if any(not isinstance(p, str) for p in patterns):
            raise ValidationError(f"{name} must be a list of strings", field=name)

    _validate_settings(scrape_settings)


def _load_run(run_id: int) -> CrawlRun:
    try:
        return CrawlRun.objects.get(id=run_id)
    except CrawlRun.DoesNotExist:
        raise NotFoundError(f"Crawl run {run_id} not found")


def _default_fetcher() -> PageFetcher:
    from .fetchers import get_default_fetcher
    try:
        return get_default_fetcher()
    except ValueError as e:
        raise ServiceUnavailableError(f"Page fetcher is not configured: {e}")


@timed('crawler.execute_run')
def execute_run(run_id: int, fetcher: Optional[PageFetcher] = None) -> Dict[str, int]:
    """
    Run the scheduler for an already-running run until it stops.

    A run whose fetcher or scheduler cannot be built is canceled with the
    error as the reason before the error propagates.

    Args:
        run_id: CrawlRun primary key
        fetcher: PageFetcher to use; the configured ScrapeNinja fetcher
            when omitted

    Returns:
        Final queue stats.
    """
    run = _load_run(run_id)
    owns_fetcher = fetcher is None
    try:
        if owns_fetcher:
            fetcher = _default_fetcher()
        scheduler = CrawlScheduler(run, fetcher)
    except Exception as exc:
        reason = str(exc) or type(exc).__name__
        RunRecorder(run_id).error(f'Crawler process could not start: {reason}', {
            'exception_type': type(exc).__name__,
        })
        QueueStore().cancel_remaining(run_id, reason)
        if owns_fetcher and fetcher is not None:
            fetcher.close()
        raise

    try:
        return scheduler.run()
    finally:
        if owns_fetcher:
            fetcher.close()


@counted('crawler.runs_started')
def start_crawl(
    seed_url: str,
    max_depth: int = 1,
    max_pages: int = 10,
    concurrency: int = 1,
    include_patterns: Optional[Iterable[str]] = None,
    exclude_patterns: Optional[Iterable[str]] = None,
    crawl_external: bool = False,
    settings: Union[ScrapeSettings, Dict[str, Any], None] = None,
    fetcher: Optional[PageFetcher] = None,
    background: bool = False,
) -> int:
    """
    Create a run, seed its queue and crawl it.

    Args:
        seed_url: Absolute http(s) URL to start from
        max_depth: Links are followed only from pages with depth < max_depth
        max_pages: Completed pages after which the run stops
        concurrency: Parallel workers (1..CRAWLER_MAX_CONCURRENCY)
        include_patterns: Glob patterns a URL must match (empty = all)
        exclude_patterns: Glob patterns that always reject a URL
        crawl_external: Follow links to other hosts
        settings: Fetch settings (ScrapeSettings or its dict form)
        fetcher: PageFetcher override, mainly for tests
        background: Hand the crawl to a Celery worker instead of running inline

    Returns:
        The new run's id.

    Raises:
        ValidationError: Invalid arguments; nothing was written.
        ServiceUnavailableError: No fetcher configured for an inline run;
            nothing was written.
        CrawlFailed: Inline run aborted by its failure budget.
    """
    include_patterns = list(include_patterns or [])
    exclude_patterns = list(exclude_patterns or [])
    scrape_settings = _coerce_settings(settings)

    _validate_start(
        seed_url, max_depth, max_pages, concurrency,
        include_patterns, exclude_patterns, scrape_settings,
    )

    owned_fetcher = None
    if not background and fetcher is None:
        owned_fetcher = fetcher = _default_fetcher()

    try:
        queue = QueueStore()
        with transaction.atomic():
            run = CrawlRun.objects.create(
                start_url=normalize_url(seed_url),
                status=RunState.PENDING.value,
                max_depth=max_depth,
                max_pages=max_pages,
                concurrency=concurrency,
                include_patterns=include_patterns,
                exclude_patterns=exclude_patterns,
                crawl_external=crawl_external,
                settings=scrape_settings.to_dict(),
            )
            queue.enqueue_seed(run, seed_url)
            transition_run(run.id, RunState.RUNNING.value)
            RunRecorder(run.id).info(f'Crawler run "{run.id}" created', {
                'start_url': run.start_url,
                'background': background,
            })
            if background:
                from .tasks import run_crawl
                run_id = run.id
                transaction.on_commit(lambda: run_crawl.delay(run_id))

        logger.info(f"Started crawl run {run.id} for {run.start_url}")

        if not background:
            execute_run(run.id, fetcher)
    finally:
        if owned_fetcher is not None:
            owned_fetcher.close()

    return run.id


def pause(run_id: int) -> None:
    """
    Ask a running crawl to stop claiming work.

    In-flight fetches finish normally; the queue is left for resume().
    """
    _load_run(run_id)
    try:
        transition_run(run_id, RunState.PAUSED.value)
    except TransitionError as e:
        raise ConflictError(
            f"Run {run_id} cannot be paused from status {e.current}",
            code=ErrorCode.INVALID_TRANSITION,
        )
    RunRecorder(run_id).info(f'Crawler run "{run_id}" pause requested')


def resume(
    run_id: int,
    fetcher: Optional[PageFetcher] = None,
    background: bool = False,
) -> Dict[str, int]:
    """
    Continue a paused (or crashed, still running) run.

    Items left in ``processing`` longer than CRAWLER_STALE_PROCESSING_SECONDS
    are returned to ``pending`` before workers start.

    Returns:
        Final queue stats when run inline, current stats when dispatched.
    """
    run = _load_run(run_id)
    if run.status not in (RunState.PAUSED.value, RunState.RUNNING.value):
        raise ConflictError(
            f"Run {run_id} cannot be resumed from status {run.status}",
            code=ErrorCode.INVALID_TRANSITION,
        )

    owned_fetcher = None
    if not background and fetcher is None:
        owned_fetcher = fetcher = _default_fetcher()

    try:
        return _resume(run, fetcher, background)
    finally:
        if owned_fetcher is not None:
            owned_fetcher.close()


def _resume(run: CrawlRun, fetcher: Optional[PageFetcher], background: bool) -> Dict[str, int]:
    run_id = run.id
    if run.status == RunState.PAUSED.value:
        try:
            transition_run(run_id, RunState.RUNNING.value)
        except TransitionError as e:
            raise ConflictError(
                f"Run {run_id} cannot be resumed from status {e.current}",
                code=ErrorCode.INVALID_TRANSITION,
            )

    queue = QueueStore()
    stale_after = getattr(django_settings, 'CRAWLER_STALE_PROCESSING_SECONDS', 900)
    released = queue.reap_stale(run_id, older_than=timedelta(seconds=stale_after))
    RunRecorder(run_id).info(f'Crawler run "{run_id}" resumed', {
        'released_stale_items': released,
    })

    if background:
        from .tasks import run_crawl
        run_crawl.delay(run_id)
        return queue.stats(run_id)

    return execute_run(run_id, fetcher)


def get_status(run_id: int) -> Dict[str, Any]:
    """Run status plus queue counts."""
    run = _load_run(run_id)
    return {
        'id': run.id,
        'status': run.status,
        'stats': QueueStore().stats(run_id),
    }


def get_results(run_id: int, include_html: bool = False) -> Dict[str, Any]:
    """
    Everything recorded for a run.

    Returns:
        {run, stats, pages, logs}; page HTML only when include_html is set.
    """
    run = _load_run(run_id)
    counts = QueueStore().stats(run_id)

    pages = QueueItem.objects.filter(run_id=run_id).order_by('id')
    if not include_html:
        pages = pages.defer('response_html')
    page_serializer = QueueItemWithHtmlSerializer if include_html else QueueItemSerializer

    run_data = CrawlRunSerializer(run).data
    return {
        'run': run_data,
        'stats': {
            'total_pages': counts['total'],
            'pending_pages': counts['pending'],
            'processing_pages': counts['processing'],
            'completed_pages': counts['completed'],
            'failed_pages': counts['failed'],
            'canceled_pages': counts['canceled'],
            'duration_seconds': run_data['duration_seconds'] or 0,
        },
        'pages': page_serializer(pages, many=True).data,
        'logs': LogEntrySerializer(LogEntry.objects.filter(run_id=run_id).order_by('id'), many=True).data,
    }


@counted('crawler.pages_scraped')
def scrape_page(
    url: str,
    settings: Union[ScrapeSettings, Dict[str, Any], None] = None,
    fetcher: Optional[PageFetcher] = None,
) -> Dict[str, Any]:
    """
    Fetch a single page through the scraping backend, outside any run.

    Args:
        url: Absolute http(s) URL
        settings: Fetch settings (ScrapeSettings or its dict form)
        fetcher: PageFetcher override; the configured ScrapeNinja fetcher
            when omitted

    Returns:
        {url, statusCode, finalUrl, body, latencyMs}

    Raises:
        ValidationError: Bad URL or settings.
        ServiceUnavailableError: No fetcher configured.
        UpstreamError: The backend failed or returned an error status.
    """
    _validate_url(url, 'url')
    scrape_settings = _coerce_settings(settings)
    _validate_settings(scrape_settings)

    owns_fetcher = fetcher is None
    if owns_fetcher:
        fetcher = _default_fetcher()

    try:
        result = fetcher.fetch(url, scrape_settings)
    except FetchError as e:
        error = build_error_payload(e)
        raise UpstreamError(
            error['message'],
            code=ErrorCode(error['error_code']),
            details={
                'status_code': error['status_code'],
                'error_response': error['error_response'],
            },
        )
    finally:
        if owns_fetcher:
            fetcher.close()

    return {
        'url': url,
        'statusCode': result.status_code,
        'finalUrl': result.final_url,
        'body': result.body,
        'latencyMs': result.latency_ms,
    }

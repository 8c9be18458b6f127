"""
Crawl scheduler: drains a run's queue with a bounded pool of workers.

Workers share nothing but a stop event and a lock-protected page counter.
Which worker gets which URL is decided entirely by QueueStore.claim_next().

Termination paths:
- queue exhausted: run completed (or failed if nothing completed)
- page limit reached: remaining items canceled, run completed
- failure budget exceeded: run failed, remaining items canceled, CrawlFailed raised
- pause requested: workers stop claiming, queue left for resume
- unexpected exception: remaining items canceled, exception re-raised

_finalize() runs on every path.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Optional

from bs4 import BeautifulSoup
from django.conf import settings as django_settings
from django.db import connection

from apps.core.observability import record_page_metrics

from .exceptions import CrawlFailed, build_error_payload
from .interfaces import PageFetcher, ScrapeSettings
from .links import BS4LinkExtractor, extract_title
from .models import CrawlRun, QueueItem
from .queue import QueueStore
from .recorder import RunRecorder
from .state_machine import RunState, transition_run


class CrawlScheduler:
    """
    Runs one crawl to completion, pause or failure.

    Usage:
        scheduler = CrawlScheduler(run, fetcher)
        stats = scheduler.run()
    """

    def __init__(
        self,
        run: CrawlRun,
        fetcher: PageFetcher,
        queue: Optional[QueueStore] = None,
        recorder: Optional[RunRecorder] = None,
        poll_delay: Optional[float] = None,
        failure_threshold: Optional[int] = None,
        ignored_sample_size: Optional[int] = None,
    ):
        self.run_obj = run
        self.run_id = run.id
        self.fetcher = fetcher
        self.queue = queue or QueueStore()
        self.recorder = recorder or RunRecorder(run.id)
        self.poll_delay = (
            poll_delay if poll_delay is not None
            else getattr(django_settings, 'CRAWLER_POLL_DELAY', 1.0)
        )
        self.failure_threshold = (
            failure_threshold if failure_threshold is not None
            else getattr(django_settings, 'CRAWLER_FAILURE_THRESHOLD', 10)
        )
        self.ignored_sample_size = (
            ignored_sample_size if ignored_sample_size is not None
            else getattr(django_settings, 'CRAWLER_IGNORED_SAMPLE_SIZE', 20)
        )

        self.scrape_settings = ScrapeSettings.from_dict(run.settings)
        self.extractor = BS4LinkExtractor(
            include_patterns=run.include_patterns,
            exclude_patterns=run.exclude_patterns,
            crawl_external=run.crawl_external,
        )
        self.concurrency = max(1, run.concurrency)

        self._stop = threading.Event()
        self._lock = threading.Lock()
        # Pages completed before this invocation count toward max_pages
        self._processed_pages = self.queue.stats(run.id)['completed']
        self._budget_exhausted = False

    # -------------------------------------------------------------------------
    # Orchestration
    # -------------------------------------------------------------------------

    def run(self) -> Dict[str, int]:
        """
        Drain the queue until a termination condition is met.

        Returns:
            Final queue stats for the run.

        Raises:
            CrawlFailed: The failure budget was exceeded.
            Exception: Any orchestration error, after remaining items are canceled.
        """
        run = self.run_obj
        self.recorder.info(f'Starting crawler process for run "{self.run_id}"', {
            'max_depth': run.max_depth,
            'max_pages': run.max_pages,
            'concurrency': self.concurrency,
            'processed_pages': self._processed_pages,
        })

        try:
            if self._processed_pages >= run.max_pages:
                self._stop_at_page_limit(self._processed_pages)
            else:
                self._run_workers()
        except CrawlFailed:
            raise
        except Exception as exc:
            self._stop.set()
            reason = str(exc) or type(exc).__name__
            self.recorder.error(f'Crawler process aborted: {reason}', {
                'exception_type': type(exc).__name__,
            })
            self.queue.cancel_remaining(self.run_id, reason)
            raise
        finally:
            self._finalize()

        return self.queue.stats(self.run_id)

    def _run_workers(self) -> None:
        if self.concurrency == 1:
            self._worker(0)
            return

        first_error = None
        with ThreadPoolExecutor(
            max_workers=self.concurrency,
            thread_name_prefix=f'crawl-{self.run_id}',
        ) as pool:
            futures = [pool.submit(self._threaded_worker, i) for i in range(self.concurrency)]
            for future in as_completed(futures):
                try:
                    future.result()
                except Exception as exc:
                    self._stop.set()
                    if first_error is None:
                        first_error = exc

        if first_error is not None:
            raise first_error

    def _threaded_worker(self, worker_id: int) -> None:
        try:
            self._worker(worker_id)
        finally:
            # Worker threads own their DB connection
            connection.close()

    def _still_running(self, worker_id: int) -> bool:
        status = self._current_status()
        if status == RunState.RUNNING.value:
            return True
        self.recorder.info(
            f'Crawler run "{self.run_id}" is no longer active (status: {status})',
            {'worker': worker_id},
        )
        self._stop.set()
        return False

    def _worker(self, worker_id: int) -> None:
        while not self._stop.is_set():
            if not self._still_running(worker_id):
                return

            item = self.queue.claim_next(self.run_id)
            if item is None:
                stats = self.queue.stats(self.run_id)
                if stats['pending'] == 0 and stats['processing'] == 0:
                    self.recorder.info(f'No more URLs to process for run "{self.run_id}"', {
                        'worker': worker_id,
                        'queue_stats': stats,
                    })
                    self._stop.set()
                    return
                self._stop.wait(self.poll_delay)
                continue

            # A pause may land between the check above and the claim
            if not self._still_running(worker_id):
                self.queue.release(item)
                return

            self.recorder.debug(f'Selected URL "{item.url}" for processing', {
                'worker': worker_id,
                'queue_id': item.id,
                'depth': item.depth,
            })
            self._process(item)

    def _current_status(self) -> Optional[str]:
        return CrawlRun.objects.filter(id=self.run_id).values_list('status', flat=True).first()

    # -------------------------------------------------------------------------
    # Per-item processing
    # -------------------------------------------------------------------------

    def _process(self, item: QueueItem) -> None:
        started = time.monotonic()
        try:
            result = self.fetcher.fetch(item.url, self.scrape_settings)
            latency_ms = int((time.monotonic() - started) * 1000)
            self._handle_success(item, result, latency_ms)
        except CrawlFailed:
            raise
        except Exception as exc:
            latency_ms = int((time.monotonic() - started) * 1000)
            self._handle_failure(item, exc, latency_ms)

    def _handle_success(self, item: QueueItem, result, latency_ms: int) -> None:
        body = result.body or ''
        soup = BeautifulSoup(body, 'html.parser')
        links = self.extractor.extract(body, item.url, result.final_url, soup=soup)

        if item.depth == 0 and links.ignored:
            self.recorder.debug(f'Ignored {len(links.ignored)} links on page "{item.url}"', {
                'sample': links.ignored_sample(self.ignored_sample_size),
            })

        processed_pages = self._reserve_page()
        if processed_pages is None:
            # Every page slot is taken; the page-limit cancel picks this item up
            self.recorder.debug(f'Page limit reached, dropping "{item.url}"', {'queue_id': item.id})
            return

        # Children are enqueued before the parent completes so that an idle
        # worker never sees an empty queue while links are still pending.
        links_queued = 0
        if item.depth < self.run_obj.max_depth and links.included and not self._stop.is_set():
            links_queued = self.queue.enqueue_links(
                self.run_id, item.url, links.included, item.depth + 1,
            )

        recorded = self.queue.record_success(
            item,
            html=result.body,
            status_code=result.status_code,
            final_url=result.final_url,
            title=extract_title(soup),
        )
        if not recorded:
            self._release_page()
            return

        limit_hit = processed_pages == self.run_obj.max_pages
        record_page_metrics('completed', latency_ms, links_queued)

        self.recorder.info(f'Successfully processed page "{item.url}"', {
            'url': item.url,
            'status': 'completed',
            'parent_url': item.parent_url,
            'depth': item.depth,
            'links_found': len(links.discovered),
            'links_queued': links_queued,
            'run_id': self.run_id,
            'processed_pages': processed_pages,
            'max_pages': self.run_obj.max_pages,
            'latency_ms': latency_ms,
            'queue_stats': self.queue.stats(self.run_id),
        })

        if limit_hit:
            self._stop_at_page_limit(processed_pages)

    def _stop_at_page_limit(self, processed_pages: int) -> None:
        self._stop.set()
        max_pages = self.run_obj.max_pages
        self.recorder.info(f'Reached maximum pages ({max_pages}), stopping crawler', {
            'processed_pages': processed_pages,
            'max_pages': max_pages,
        })
        self.queue.cancel_remaining(
            self.run_id,
            f'Reached maximum pages limit ({max_pages})',
            final_status=RunState.COMPLETED.value,
        )

    def _reserve_page(self) -> Optional[int]:
        """Take one of the run's max_pages slots; None once all are taken."""
        with self._lock:
            if self._processed_pages >= self.run_obj.max_pages:
                return None
            self._processed_pages += 1
            return self._processed_pages

    def _release_page(self) -> None:
        with self._lock:
            self._processed_pages -= 1

    def _handle_failure(self, item: QueueItem, exc: Exception, latency_ms: int) -> None:
        error = build_error_payload(exc, latency_ms)
        if not self.queue.record_failure(item, error):
            return

        record_page_metrics('failed', latency_ms)
        stats = self.queue.stats(self.run_id)

        self.recorder.error(f'Failed to process page "{item.url}"', {
            'url': item.url,
            'status': 'failed',
            'parent_url': item.parent_url,
            'depth': item.depth,
            'error': error['message'],
            'error_code': error['error_code'],
            'error_response': error['error_response'],
            'status_code': error['status_code'],
            'run_id': self.run_id,
            'processed_pages': self._processed_pages,
            'max_pages': self.run_obj.max_pages,
            'latency_ms': latency_ms,
            'queue_stats': stats,
        })

        failed_count = stats['failed']
        if failed_count <= self.failure_threshold:
            return

        with self._lock:
            if self._budget_exhausted:
                return
            self._budget_exhausted = True

        self._stop.set()
        self.recorder.warn(
            f'Too many failed requests ({failed_count}) for run "{self.run_id}", stopping crawler',
            {'failed_count': failed_count, 'threshold': self.failure_threshold},
        )
        transition_run(self.run_id, RunState.FAILED.value, strict=False)
        self.queue.cancel_remaining(self.run_id, 'Too many failed requests')
        raise CrawlFailed(self.run_id, failed_count)

    # -------------------------------------------------------------------------
    # Finalization
    # -------------------------------------------------------------------------

    def _finalize(self) -> None:
        status = self._current_status()

        if status == RunState.PAUSED.value:
            self.recorder.info(f'Crawler run "{self.run_id}" paused', {
                'queue_stats': self.queue.stats(self.run_id),
            })
            return

        if self.queue.has_active_items(self.run_id):
            self.queue.cancel_remaining(self.run_id, 'Crawler run ended')
        elif status and not RunState.from_string(status).is_terminal:
            completed = self.queue.stats(self.run_id)['completed']
            target = RunState.COMPLETED if completed >= 1 else RunState.FAILED
            transition_run(self.run_id, target.value, strict=False)

        self.recorder.info('Crawler process completed', {
            'status': self._current_status(),
            'processed_pages': self._processed_pages,
            'queue_stats': self.queue.stats(self.run_id),
        })

"""
Tests for CrawlScheduler.

Tests cover:
- Full crawls bounded by depth and page limit
- Failure budget
- Pause and resume
- Orchestration errors
- Run log entries
"""

import threading
from unittest.mock import patch

import pytest

from apps.crawler import services
from apps.crawler.exceptions import CrawlFailed
from apps.crawler.models import CrawlRun, LogEntry, QueueItem
from apps.crawler.queue import QueueStore
from apps.crawler.scheduler import CrawlScheduler

from conftest import FakeFetcher, page


pytestmark = pytest.mark.django_db

SEED = 'https://example.com'


def _status(run):
    return CrawlRun.objects.get(id=run.id).status


def _items(run):
    return {item.url: item for item in QueueItem.objects.filter(run=run)}


# ============================================================================
# Full Crawls
# ============================================================================

class TestCrawl:

    def test_depth_one_crawl(self, make_run):
        fetcher = FakeFetcher({
            SEED: page('/a', '/b', title='Home'),
            'https://example.com/a': page('/c'),
        })
        run = make_run(max_depth=1)

        stats = CrawlScheduler(run, fetcher).run()

        assert _status(run) == 'completed'
        assert stats['completed'] == 2
        assert stats['failed'] == 1
        items = _items(run)
        assert set(items) == {SEED, 'https://example.com/a', 'https://example.com/b'}
        assert items[SEED].page_title == 'Home'
        assert items['https://example.com/a'].parent_url == SEED
        assert items['https://example.com/b'].error['status_code'] == 404

    def test_depth_limit_is_respected(self, make_run):
        fetcher = FakeFetcher({
            SEED: page('/a'),
            'https://example.com/a': page('/c'),
            'https://example.com/c': page('/d'),
        })
        run = make_run(max_depth=2)

        CrawlScheduler(run, fetcher).run()

        items = _items(run)
        assert 'https://example.com/d' not in items
        assert max(item.depth for item in items.values()) == 2
        assert all(item.status == 'completed' for item in items.values())

    def test_depth_zero_fetches_only_seed(self, make_run):
        fetcher = FakeFetcher({SEED: page('/a', '/b')})
        run = make_run(max_depth=0)

        CrawlScheduler(run, fetcher).run()

        assert fetcher.calls == [SEED]
        assert list(_items(run)) == [SEED]
        assert _status(run) == 'completed'

    def test_each_url_fetched_once(self, make_run):
        fetcher = FakeFetcher({
            SEED: page('/a', '/a#x', '/A', SEED),
            'https://example.com/a': page('/', '/a'),
            'https://example.com/A': page(),
        })
        run = make_run(max_depth=3)

        CrawlScheduler(run, fetcher).run()

        assert sorted(fetcher.calls) == sorted(set(fetcher.calls))
        assert len(fetcher.calls) == 3

    def test_exclude_patterns_filter_links(self, make_run):
        fetcher = FakeFetcher({
            SEED: page('/report.pdf', '/page.html'),
            'https://example.com/page.html': page(),
        })
        run = make_run(exclude_patterns=['**.pdf'])

        CrawlScheduler(run, fetcher).run()

        assert 'https://example.com/report.pdf' not in _items(run)

    def test_seed_failure_fails_run(self, make_run):
        run = make_run()

        stats = CrawlScheduler(run, FakeFetcher()).run()

        assert stats['failed'] == 1
        assert _status(run) == 'failed'


# ============================================================================
# Page Limit
# ============================================================================

class TestPageLimit:

    def test_limit_cancels_remaining_and_completes(self, make_run):
        links = [f'/p{i}' for i in range(5)]
        fetcher = FakeFetcher({SEED: page(*links)})
        run = make_run(max_pages=1)

        stats = CrawlScheduler(run, fetcher).run()

        assert fetcher.calls == [SEED]
        assert stats['completed'] == 1
        assert stats['canceled'] == 5
        assert _status(run) == 'completed'
        canceled = QueueItem.objects.filter(run=run, status='canceled').first()
        assert canceled.error == {'message': 'Reached maximum pages limit (1)'}

    def test_limit_counts_pages_from_earlier_invocations(self, make_run, queue):
        run = make_run(max_pages=2)
        queue.enqueue_links(run.id, SEED, ['https://example.com/a', 'https://example.com/b'], 1)
        queue.record_success(queue.claim_next(run.id), page(), 200, SEED)

        fetcher = FakeFetcher({
            'https://example.com/a': page(),
            'https://example.com/b': page(),
        })
        stats = CrawlScheduler(run, fetcher).run()

        assert len(fetcher.calls) == 1
        assert stats['completed'] == 2
        assert stats['canceled'] == 1

    def test_limit_already_reached_completes_without_fetching(self, make_run, queue):
        run = make_run(max_pages=1)
        queue.enqueue_links(run.id, SEED, ['https://example.com/a'], 1)
        queue.record_success(queue.claim_next(run.id), page(), 200, SEED)
        fetcher = FakeFetcher()

        stats = CrawlScheduler(run, fetcher).run()

        assert fetcher.calls == []
        assert stats['completed'] == 1
        assert stats['canceled'] == 1
        assert _status(run) == 'completed'


# ============================================================================
# Failure Budget
# ============================================================================

class TestFailureBudget:

    def test_too_many_failures_fail_the_run(self, make_run, queue):
        run = make_run(max_pages=100)
        queue.enqueue_links(run.id, SEED, [f'https://example.com/{i}' for i in range(15)], 1)

        with pytest.raises(CrawlFailed) as exc_info:
            CrawlScheduler(run, FakeFetcher(fail_all=True)).run()

        assert exc_info.value.failed_count == 11
        assert _status(run) == 'failed'
        stats = queue.stats(run.id)
        assert stats['failed'] == 11
        assert stats['canceled'] == 5
        assert stats['pending'] == 0
        canceled = QueueItem.objects.filter(run=run, status='canceled').first()
        assert canceled.error == {'message': 'Too many failed requests'}

    def test_failure_payload(self, make_run):
        run = make_run()

        CrawlScheduler(run, FakeFetcher(fail_all=True)).run()

        error = QueueItem.objects.get(run=run).error
        assert error['message'] == 'Request failed with status code 500'
        assert error['status_code'] == 500
        assert error['error_code'] == 'HTTP_SERVER_ERROR'
        assert error['error_response'] == {'message': 'upstream error'}

    def test_failures_under_threshold_keep_going(self, make_run):
        links = [f'/missing{i}' for i in range(5)]
        run = make_run(max_pages=100)

        CrawlScheduler(run, FakeFetcher({SEED: page(*links)})).run()

        assert _status(run) == 'completed'
        assert QueueStore().stats(run.id)['failed'] == 5


# ============================================================================
# Pause / Resume
# ============================================================================

class TestPauseResume:

    def test_pause_stops_claiming_and_resume_finishes(self, make_run):
        pages = {
            SEED: page('/a', '/b'),
            'https://example.com/a': page(),
            'https://example.com/b': page(),
        }
        run = make_run()

        def pause_on_seed(url):
            if url == SEED:
                services.pause(run.id)

        first = FakeFetcher(pages, on_fetch=pause_on_seed)
        CrawlScheduler(run, first).run()

        assert _status(run) == 'paused'
        assert first.calls == [SEED]
        assert QueueStore().stats(run.id)['pending'] == 2

        stats = services.resume(run.id, fetcher=FakeFetcher(pages))

        assert _status(run) == 'completed'
        assert stats['completed'] == 3
        assert stats['pending'] == 0

    def test_paused_run_is_not_crawled(self, make_run):
        run = make_run(status='paused')
        fetcher = FakeFetcher({SEED: page()})

        CrawlScheduler(run, fetcher).run()

        assert fetcher.calls == []
        assert _status(run) == 'paused'

    def test_pause_after_claim_returns_item_to_queue(self, make_run):
        run = make_run()
        claim_next = QueueStore.claim_next

        def claim_then_pause(store, run_id):
            item = claim_next(store, run_id)
            services.pause(run_id)
            return item

        fetcher = FakeFetcher({SEED: page()})
        with patch.object(QueueStore, 'claim_next', claim_then_pause):
            CrawlScheduler(run, fetcher).run()

        assert fetcher.calls == []
        assert _status(run) == 'paused'
        assert QueueItem.objects.get(run=run).status == 'pending'


# ============================================================================
# Orchestration Errors
# ============================================================================

class TestOrchestrationErrors:

    def test_unexpected_error_cancels_run(self, make_run):
        run = make_run()

        with patch.object(QueueStore, 'claim_next', side_effect=RuntimeError('database went away')):
            with pytest.raises(RuntimeError):
                CrawlScheduler(run, FakeFetcher()).run()

        assert _status(run) == 'canceled'
        item = QueueItem.objects.get(run=run)
        assert item.status == 'canceled'
        assert item.error == {'message': 'database went away'}

    def test_error_while_handling_page_fails_item(self, make_run):
        run = make_run()

        with patch('apps.crawler.scheduler.BS4LinkExtractor.extract', side_effect=ValueError('bad markup')):
            CrawlScheduler(run, FakeFetcher({SEED: page()})).run()

        item = QueueItem.objects.get(run=run)
        assert item.status == 'failed'
        assert item.error['message'] == 'bad markup'


# ============================================================================
# Run Log
# ============================================================================

class TestRunLog:

    def test_lifecycle_entries_are_persisted(self, make_run):
        run = make_run()

        CrawlScheduler(run, FakeFetcher({SEED: page()})).run()

        messages = list(LogEntry.objects.filter(run=run).values_list('message', flat=True))
        assert messages[0] == f'Starting crawler process for run "{run.id}"'
        assert f'Successfully processed page "{SEED}"' in messages
        assert messages[-1] == 'Crawler process completed'

    def test_page_entry_metadata(self, make_run):
        run = make_run()

        CrawlScheduler(run, FakeFetcher({SEED: page('/a')})).run()

        entry = LogEntry.objects.get(run=run, message=f'Successfully processed page "{SEED}"')
        assert entry.level == 'info'
        assert entry.metadata['depth'] == 0
        assert entry.metadata['links_queued'] == 1
        assert entry.metadata['queue_stats']['total'] == 2

    def test_failure_entry_is_error_level(self, make_run):
        run = make_run()

        CrawlScheduler(run, FakeFetcher()).run()

        entry = LogEntry.objects.get(run=run, message=f'Failed to process page "{SEED}"')
        assert entry.level == 'error'
        assert entry.metadata['status_code'] == 404


# ============================================================================
# Concurrency
# ============================================================================

@pytest.mark.django_db(transaction=True)
class TestConcurrentWorkers:

    def test_parallel_workers_visit_each_page_once(self, make_run):
        links = [f'/p{i}' for i in range(6)]
        pages = {SEED: page(*links)}
        pages.update({f'https://example.com/p{i}': page() for i in range(6)})
        fetcher = FakeFetcher(pages)
        run = make_run(concurrency=3, max_pages=100)

        CrawlScheduler(run, fetcher).run()

        assert sorted(fetcher.calls) == sorted(set(fetcher.calls))
        stats = QueueStore().stats(run.id)
        assert stats['pending'] == 0
        assert stats['processing'] == 0
        assert stats['completed'] + stats['failed'] == 7

    def test_page_limit_holds_with_parallel_workers(self, make_run):
        links = [f'/p{i}' for i in range(6)]
        pages = {SEED: page(*links)}
        pages.update({f'https://example.com/p{i}': page() for i in range(6)})
        barrier = threading.Barrier(3, timeout=5)

        def finish_together(url):
            if url == SEED:
                return
            try:
                barrier.wait()
            except threading.BrokenBarrierError:
                pass

        run = make_run(concurrency=3, max_pages=2)

        CrawlScheduler(run, FakeFetcher(pages, on_fetch=finish_together)).run()

        stats = QueueStore().stats(run.id)
        assert stats['completed'] == 2
        assert stats['pending'] == 0
        assert stats['processing'] == 0
        assert _status(run) == 'completed'

"""
Tests for the crawl service layer.

Tests cover:
- Input validation before any row is written
- Inline start and background dispatch
- Pause / resume conflicts
- Fetcher configuration errors
- One-shot scrapes
- Status and results payloads
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
import requests
from django.test import override_settings
from django.utils import timezone

from apps.core.exceptions import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    ServiceUnavailableError,
    UpstreamError,
    ValidationError,
)
from apps.crawler import services
from apps.crawler.fetchers import ScrapeNinjaFetcher
from apps.crawler.models import CrawlRun, LogEntry, QueueItem

from conftest import FakeFetcher, page


pytestmark = pytest.mark.django_db

SEED = 'https://example.com'


# ============================================================================
# Validation
# ============================================================================

class TestStartValidation:

    @pytest.mark.parametrize('kwargs,field', [
        ({'seed_url': 'ftp://example.com'}, 'start_url'),
        ({'seed_url': 'example.com'}, 'start_url'),
        ({'seed_url': 'http://[bad'}, 'start_url'),
        ({'max_depth': -1}, 'max_depth'),
        ({'max_pages': 0}, 'max_pages'),
        ({'concurrency': 0}, 'concurrency'),
        ({'concurrency': 6}, 'concurrency'),
        ({'include_patterns': [3]}, 'include_patterns'),
        ({'settings': {'engine': 'curl'}}, 'settings'),
        ({'settings': {'geo': '_custom'}}, 'settings'),
        ({'settings': {'retry_num': 'three'}}, 'settings'),
        ({'settings': {'headers': 'X-Test: 1'}}, 'settings'),
        ({'settings': ['scrape-js']}, 'settings'),
    ])
    def test_invalid_input_writes_nothing(self, kwargs, field):
        args = {'seed_url': SEED, 'fetcher': FakeFetcher()}
        args.update(kwargs)

        with pytest.raises(ValidationError) as exc_info:
            services.start_crawl(**args)

        assert exc_info.value.field == field
        assert CrawlRun.objects.count() == 0
        assert QueueItem.objects.count() == 0

    def test_bad_seed_uses_invalid_url_code(self):
        with pytest.raises(ValidationError) as exc_info:
            services.start_crawl('javascript:alert(1)', fetcher=FakeFetcher())
        assert exc_info.value.error_code == ErrorCode.INVALID_URL

    def test_wrongly_typed_settings_are_listed(self):
        with pytest.raises(ValidationError) as exc_info:
            services.start_crawl(
                SEED,
                settings={'retry_num': 'three', 'block_images': 'yes', 'status_not_expected': [True]},
                fetcher=FakeFetcher(),
            )

        errors = exc_info.value.error_details['errors']
        assert "retry_num must be an integer (got 'three')" in errors
        assert 'block_images must be a boolean' in errors
        assert 'status_not_expected must be a list of integers' in errors


# ============================================================================
# Start
# ============================================================================

class TestStartCrawl:

    def test_inline_crawl(self):
        fetcher = FakeFetcher({SEED: page('/a'), 'https://example.com/a': page()})

        run_id = services.start_crawl('HTTPS://Example.com/#intro', fetcher=fetcher)

        run = CrawlRun.objects.get(id=run_id)
        assert run.start_url == SEED
        assert run.status == 'completed'
        assert run.completed_at is not None
        assert fetcher.calls == [SEED, 'https://example.com/a']

    def test_run_configuration_is_persisted(self):
        run_id = services.start_crawl(
            SEED,
            max_depth=0,
            max_pages=3,
            include_patterns=['example.com/**'],
            exclude_patterns=['**.pdf'],
            settings={'engine': 'scrape-js', 'unknown': 'dropped'},
            fetcher=FakeFetcher({SEED: page()}),
        )

        run = CrawlRun.objects.get(id=run_id)
        assert run.max_pages == 3
        assert run.include_patterns == ['example.com/**']
        assert run.exclude_patterns == ['**.pdf']
        assert run.settings['engine'] == 'scrape-js'
        assert 'unknown' not in run.settings

    def test_creation_is_logged(self):
        run_id = services.start_crawl(SEED, fetcher=FakeFetcher({SEED: page()}))
        first = LogEntry.objects.filter(run_id=run_id).first()
        assert first.message == f'Crawler run "{run_id}" created'

    def test_background_dispatches_task_after_commit(self, django_capture_on_commit_callbacks):
        with patch('apps.crawler.tasks.run_crawl.delay') as delay:
            with django_capture_on_commit_callbacks(execute=True):
                run_id = services.start_crawl(SEED, background=True)

        delay.assert_called_once_with(run_id)
        run = CrawlRun.objects.get(id=run_id)
        assert run.status == 'running'
        assert QueueItem.objects.get(run=run).status == 'pending'


# ============================================================================
# Pause / Resume
# ============================================================================

class TestPauseResume:

    def test_pause_running_run(self, make_run):
        run = make_run()

        services.pause(run.id)

        run.refresh_from_db()
        assert run.status == 'paused'
        assert LogEntry.objects.filter(run=run, message__contains='pause requested').exists()

    def test_pause_terminal_run_conflicts(self, make_run):
        run = make_run(status='completed')

        with pytest.raises(ConflictError) as exc_info:
            services.pause(run.id)

        assert exc_info.value.error_code == ErrorCode.INVALID_TRANSITION

    def test_pause_unknown_run(self):
        with pytest.raises(NotFoundError):
            services.pause(424242)

    @pytest.mark.parametrize('status', ['completed', 'failed', 'canceled', 'pending'])
    def test_resume_requires_paused_or_running(self, make_run, status):
        run = make_run(status=status)

        with pytest.raises(ConflictError):
            services.resume(run.id, fetcher=FakeFetcher())

    def test_resume_releases_stale_claims(self, make_run, queue):
        run = make_run(status='paused')
        item = queue.claim_next(run.id)
        QueueItem.objects.filter(id=item.id).update(updated_at=timezone.now() - timedelta(hours=1))

        stats = services.resume(run.id, fetcher=FakeFetcher({SEED: page()}))

        assert stats['completed'] == 1
        entry = LogEntry.objects.get(run=run, message=f'Crawler run "{run.id}" resumed')
        assert entry.metadata == {'released_stale_items': 1}

    def test_resume_running_run_after_crash(self, make_run):
        run = make_run(status='running')

        services.resume(run.id, fetcher=FakeFetcher({SEED: page()}))

        run.refresh_from_db()
        assert run.status == 'completed'

    def test_resume_in_background(self, make_run):
        run = make_run(status='paused')

        with patch('apps.crawler.tasks.run_crawl.delay') as delay:
            stats = services.resume(run.id, background=True)

        delay.assert_called_once_with(run.id)
        assert stats['pending'] == 1


# ============================================================================
# Fetcher Configuration
# ============================================================================

class TestMissingFetcherConfiguration:

    @pytest.fixture(autouse=True)
    def no_api_key(self, settings):
        settings.SCRAPENINJA_API_KEY = ''

    def test_inline_start_writes_nothing(self):
        with pytest.raises(ServiceUnavailableError):
            services.start_crawl(SEED)

        assert CrawlRun.objects.count() == 0
        assert QueueItem.objects.count() == 0

    def test_worker_cancels_the_run(self, make_run):
        run = make_run()

        with pytest.raises(ServiceUnavailableError):
            services.execute_run(run.id)

        run.refresh_from_db()
        assert run.status == 'canceled'
        assert run.completed_at is not None
        item = QueueItem.objects.get(run=run)
        assert item.status == 'canceled'
        assert 'No ScrapeNinja API key configured' in item.error['message']
        assert LogEntry.objects.filter(
            run=run, level='error', message__startswith='Crawler process could not start',
        ).exists()

    def test_inline_resume_leaves_run_paused(self, make_run):
        run = make_run(status='paused')

        with pytest.raises(ServiceUnavailableError):
            services.resume(run.id)

        assert CrawlRun.objects.get(id=run.id).status == 'paused'


class TestSchedulerSetupError:

    def test_setup_error_cancels_the_run(self, make_run):
        run = make_run()

        with patch('apps.crawler.services.CrawlScheduler', side_effect=RuntimeError('bad run settings')):
            with pytest.raises(RuntimeError):
                services.execute_run(run.id, FakeFetcher())

        assert CrawlRun.objects.get(id=run.id).status == 'canceled'
        assert QueueItem.objects.get(run=run).error == {'message': 'bad run settings'}


# ============================================================================
# One-shot Scrape
# ============================================================================

def _scrapeninja(status_code=200, json_data=None, text=''):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.json.return_value = json_data
    session = MagicMock(spec=requests.Session)
    session.post.return_value = response
    return ScrapeNinjaFetcher(api_key='secret-key', session=session), session


class TestScrapePage:

    def test_returns_status_final_url_and_body(self):
        fetcher, session = _scrapeninja(json_data={
            'info': {'statusCode': 200, 'finalUrl': 'https://example.com/home'},
            'body': '<html><body>Home</body></html>',
        })

        result = services.scrape_page(SEED, settings={'engine': 'scrape-js'}, fetcher=fetcher)

        assert result['url'] == SEED
        assert result['statusCode'] == 200
        assert result['finalUrl'] == 'https://example.com/home'
        assert result['body'] == '<html><body>Home</body></html>'
        assert session.post.call_args.args[0].endswith('/scrape-js')
        assert CrawlRun.objects.count() == 0

    def test_backend_error_is_upstream_error(self):
        fetcher, _ = _scrapeninja(status_code=403, text='{"message": "invalid key"}')

        with pytest.raises(UpstreamError) as exc_info:
            services.scrape_page(SEED, fetcher=fetcher)

        assert exc_info.value.status_code == 502
        assert exc_info.value.error_code == ErrorCode.HTTP_FORBIDDEN
        assert exc_info.value.error_details['status_code'] == 403
        assert exc_info.value.error_details['error_response'] == {'message': 'invalid key'}

    def test_invalid_url(self):
        with pytest.raises(ValidationError) as exc_info:
            services.scrape_page('ftp://example.com', fetcher=FakeFetcher())
        assert exc_info.value.field == 'url'

    def test_invalid_settings(self):
        with pytest.raises(ValidationError) as exc_info:
            services.scrape_page(SEED, settings={'timeout': 0}, fetcher=FakeFetcher())
        assert exc_info.value.field == 'settings'

    @override_settings(SCRAPENINJA_API_KEY='')
    def test_missing_api_key(self):
        with pytest.raises(ServiceUnavailableError):
            services.scrape_page(SEED)


# ============================================================================
# Status / Results
# ============================================================================

class TestResults:

    def _crawl(self):
        fetcher = FakeFetcher({SEED: page('/a', '/b'), 'https://example.com/a': page()})
        return services.start_crawl(SEED, fetcher=fetcher)

    def test_status(self):
        run_id = self._crawl()

        status = services.get_status(run_id)

        assert status['id'] == run_id
        assert status['status'] == 'completed'
        assert status['stats']['total'] == 3

    def test_results_shape(self):
        run_id = self._crawl()

        results = services.get_results(run_id)

        assert results['run']['id'] == run_id
        assert results['stats']['total_pages'] == 3
        assert results['stats']['completed_pages'] == 2
        assert results['stats']['failed_pages'] == 1
        assert results['stats']['duration_seconds'] >= 0
        assert [p['url'] for p in results['pages']][0] == SEED
        assert 'response_html' not in results['pages'][0]
        assert results['logs'][0]['message'] == f'Crawler run "{run_id}" created'

    def test_results_with_html(self):
        run_id = self._crawl()

        results = services.get_results(run_id, include_html=True)

        assert results['pages'][0]['response_html'].startswith('<html>')

    def test_unknown_run(self):
        with pytest.raises(NotFoundError):
            services.get_results(424242)

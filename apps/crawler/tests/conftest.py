"""
Shared fixtures for crawler tests.
"""

import threading

import pytest

from apps.crawler.exceptions import FetchError
from apps.crawler.interfaces import FetchResult, PageFetcher
from apps.crawler.models import CrawlRun
from apps.crawler.queue import QueueStore


class FakeFetcher(PageFetcher):
    """
    In-memory PageFetcher.

    ``pages`` maps URL to HTML body; any other URL fails with a 404
    FetchError. Every requested URL is recorded in ``calls``.
    """

    def __init__(self, pages=None, fail_all=False, on_fetch=None):
        self.pages = pages or {}
        self.fail_all = fail_all
        self.on_fetch = on_fetch
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, url, settings):
        with self._lock:
            self.calls.append(url)
        if self.on_fetch:
            self.on_fetch(url)
        if self.fail_all:
            raise FetchError(
                'Request failed with status code 500',
                status_code=500,
                response_body='{"message": "upstream error"}',
            )
        if url not in self.pages:
            raise FetchError('Request failed with status code 404', status_code=404, response_body='Not Found')
        return FetchResult(url=url, status_code=200, final_url=url, body=self.pages[url])


def page(*hrefs, title='Test page'):
    """Minimal HTML document linking to ``hrefs``."""
    links = ''.join(f'<a href="{href}">link</a>' for href in hrefs)
    return f'<html><head><title>{title}</title></head><body>{links}</body></html>'


@pytest.fixture
def queue():
    return QueueStore()


@pytest.fixture
def make_run(db):
    """Factory for running CrawlRun rows with a seeded queue."""

    def _make_run(start_url='https://example.com', status='running', seed=True, **kwargs):
        defaults = {
            'max_depth': 1,
            'max_pages': 10,
            'concurrency': 1,
            'include_patterns': [],
            'exclude_patterns': [],
            'crawl_external': False,
            'settings': {},
        }
        defaults.update(kwargs)
        run = CrawlRun.objects.create(start_url=start_url, status=status, **defaults)
        if seed:
            QueueStore().enqueue_seed(run, start_url)
        return run

    return _make_run

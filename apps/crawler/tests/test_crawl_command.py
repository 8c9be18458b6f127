"""
Tests for the crawl management command.
"""

import json
from io import StringIO
from unittest.mock import patch

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from apps.crawler.models import CrawlRun

from conftest import FakeFetcher, page


pytestmark = pytest.mark.django_db

SEED = 'https://example.com'


@pytest.fixture
def fake_fetcher():
    fetcher = FakeFetcher({SEED: page('/a'), 'https://example.com/a': page('/b.pdf')})
    with patch('apps.crawler.fetchers.get_default_fetcher', return_value=fetcher):
        yield fetcher


def _call(*args):
    out = StringIO()
    call_command('crawl', *args, stdout=out)
    return out.getvalue()


class TestCrawlCommand:

    def test_start_runs_inline(self, fake_fetcher):
        output = _call('start', SEED, '--max-depth', '2', '--exclude', '**.pdf', '--header', 'X-Test: 1')

        run = CrawlRun.objects.get()
        assert f'Run ID: {run.id}' in output
        assert 'Status: completed' in output
        assert 'Pages: 2 total, 2 completed' in output
        assert run.exclude_patterns == ['**.pdf']
        assert run.settings['headers'] == ['X-Test: 1']
        assert fake_fetcher.calls == [SEED, 'https://example.com/a']

    def test_start_rejects_invalid_seed(self, fake_fetcher):
        with pytest.raises(CommandError):
            _call('start', 'ftp://example.com')
        assert CrawlRun.objects.count() == 0

    def test_status(self, make_run):
        run = make_run()
        output = _call('status', str(run.id))
        assert 'Status: running' in output
        assert '1 pending' in output

    def test_pause_and_resume(self, make_run, fake_fetcher):
        run = make_run(max_depth=0)

        assert 'Pause requested' in _call('pause', str(run.id))
        output = _call('resume', str(run.id))

        assert 'Status: completed' in output

    def test_results_json_file(self, make_run, fake_fetcher, tmp_path):
        run = make_run(max_depth=0)
        _call('resume', str(run.id))
        target = tmp_path / 'results.json'

        _call('results', str(run.id), '--include-html', '--output-json', str(target))

        data = json.loads(target.read_text())
        assert data['stats']['completed_pages'] == 1
        assert data['pages'][0]['response_html'].startswith('<html>')

    def test_unknown_run(self):
        with pytest.raises(CommandError):
            _call('status', '999999')

    def test_scrape_single_page(self, fake_fetcher, tmp_path):
        target = tmp_path / 'page.json'

        output = _call('scrape', SEED, '--engine', 'scrape-js', '--output-json', str(target))

        assert f'Status code: 200, final URL: {SEED}' in output
        data = json.loads(target.read_text())
        assert data['body'].startswith('<html>')
        assert fake_fetcher.calls == [SEED]
        assert CrawlRun.objects.count() == 0

    def test_scrape_failure(self, fake_fetcher):
        with pytest.raises(CommandError, match='status code 404'):
            _call('scrape', 'https://example.com/missing')

"""
Tests for the crawl run REST API.
"""

from unittest.mock import patch

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from apps.crawler import services
from apps.crawler.models import CrawlRun

from conftest import FakeFetcher, page


pytestmark = pytest.mark.django_db

SEED = 'https://example.com'
RUNS_URL = '/api/crawler/runs/'
SCRAPE_URL = '/api/crawler/scrape/'


@pytest.fixture
def user():
    return get_user_model().objects.create_user(username='operator', password='secret')


@pytest.fixture
def client(user):
    api_client = APIClient()
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def finished_run():
    fetcher = FakeFetcher({SEED: page('/a'), 'https://example.com/a': page()})
    return services.start_crawl(SEED, fetcher=fetcher)


class TestAuthentication:

    def test_anonymous_is_rejected(self):
        response = APIClient().get(RUNS_URL)
        assert response.status_code in (401, 403)
        assert 'error' in response.data


class TestStartRun:

    def test_start_dispatches_background_crawl(self, client, django_capture_on_commit_callbacks):
        with patch('apps.crawler.tasks.run_crawl.delay') as delay:
            with django_capture_on_commit_callbacks(execute=True):
                response = client.post(RUNS_URL, {
                    'start_url': 'https://example.com/',
                    'max_depth': 2,
                    'max_pages': 5,
                    'exclude_patterns': ['**.pdf'],
                    'settings': {'engine': 'scrape-js', 'geo': 'de'},
                }, format='json')

        assert response.status_code == 201
        assert response.data['message'] == 'Crawl run started'
        assert response.data['status'] == 'running'
        assert response.data['start_url'] == SEED
        delay.assert_called_once_with(response.data['id'])

        run = CrawlRun.objects.get(id=response.data['id'])
        assert run.settings['engine'] == 'scrape-js'
        assert run.settings['geo'] == 'de'
        assert run.exclude_patterns == ['**.pdf']

    def test_invalid_payload(self, client):
        response = client.post(RUNS_URL, {'start_url': 'not a url', 'concurrency': 9}, format='json')

        assert response.status_code == 400
        assert response.data['error']['code'] == 'VALIDATION_ERROR'
        assert 'start_url' in response.data['error']['details']
        assert 'concurrency' in response.data['error']['details']
        assert CrawlRun.objects.count() == 0


class TestInspectRun:

    def test_list_filters_by_status(self, client, finished_run):
        CrawlRun.objects.create(start_url='https://other.com', status='paused')

        response = client.get(RUNS_URL, {'status': 'completed'})

        assert response.status_code == 200
        assert [r['id'] for r in response.data['results']] == [finished_run]

    def test_retrieve_results(self, client, finished_run):
        response = client.get(f'{RUNS_URL}{finished_run}/')

        assert response.status_code == 200
        assert response.data['stats']['completed_pages'] == 2
        assert 'response_html' not in response.data['pages'][0]

    def test_retrieve_results_with_html(self, client, finished_run):
        response = client.get(f'{RUNS_URL}{finished_run}/', {'include_html': 'true'})
        assert 'response_html' in response.data['pages'][0]

    def test_status(self, client, finished_run):
        response = client.get(f'{RUNS_URL}{finished_run}/status/')

        assert response.status_code == 200
        assert response.data['status'] == 'completed'
        assert response.data['stats']['total'] == 2

    def test_unknown_run(self, client):
        response = client.get(f'{RUNS_URL}987654/status/')

        assert response.status_code == 404
        assert response.data['error']['code'] == 'NOT_FOUND'

    @pytest.mark.parametrize('path', ['abc/', 'abc/status/'])
    def test_non_numeric_id_is_not_found(self, client, path):
        response = client.get(f'{RUNS_URL}{path}')

        assert response.status_code == 404
        assert response.data['error']['code'] == 'NOT_FOUND'


class TestControlRun:

    def test_pause_and_resume(self, client, make_run):
        run = make_run()

        response = client.post(f'{RUNS_URL}{run.id}/pause/')
        assert response.status_code == 200
        assert response.data['status'] == 'paused'

        with patch('apps.crawler.tasks.run_crawl.delay') as delay:
            response = client.post(f'{RUNS_URL}{run.id}/resume/')

        assert response.status_code == 202
        assert response.data['status'] == 'running'
        delay.assert_called_once_with(run.id)

    def test_pause_finished_run_conflicts(self, client, finished_run):
        response = client.post(f'{RUNS_URL}{finished_run}/pause/')

        assert response.status_code == 409
        assert response.data['error']['code'] == 'INVALID_TRANSITION'

    def test_pause_non_numeric_id(self, client):
        response = client.post(f'{RUNS_URL}abc/pause/')
        assert response.status_code == 404


class TestScrape:

    def test_scrape_single_page(self, client):
        fetcher = FakeFetcher({SEED: page(title='Home')})

        with patch('apps.crawler.fetchers.get_default_fetcher', return_value=fetcher):
            response = client.post(SCRAPE_URL, {
                'url': SEED,
                'settings': {'engine': 'scrape-js'},
            }, format='json')

        assert response.status_code == 200
        assert response.data['statusCode'] == 200
        assert response.data['finalUrl'] == SEED
        assert '<title>Home</title>' in response.data['body']
        assert fetcher.calls == [SEED]
        assert CrawlRun.objects.count() == 0

    def test_backend_failure_is_bad_gateway(self, client):
        with patch('apps.crawler.fetchers.get_default_fetcher', return_value=FakeFetcher()):
            response = client.post(SCRAPE_URL, {'url': SEED}, format='json')

        assert response.status_code == 502
        assert response.data['error']['code'] == 'HTTP_NOT_FOUND'
        assert response.data['error']['details']['status_code'] == 404

    def test_invalid_request(self, client):
        response = client.post(SCRAPE_URL, {'url': 'not a url'}, format='json')

        assert response.status_code == 400
        assert 'url' in response.data['error']['details']

    def test_requires_authentication(self):
        response = APIClient().post(SCRAPE_URL, {'url': SEED}, format='json')
        assert response.status_code in (401, 403)

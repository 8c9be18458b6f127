"""
Tests for ScrapeNinjaFetcher.

The HTTP session is mocked; no request leaves the process.
"""

from unittest.mock import MagicMock

import pytest
import requests
from django.test import override_settings

from apps.crawler.exceptions import FetchError
from apps.crawler.fetchers import ScrapeNinjaFetcher, get_default_fetcher
from apps.crawler.interfaces import ScrapeSettings


def _response(status_code=200, json_data=None, text=''):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def fetcher(session):
    return ScrapeNinjaFetcher(api_key='secret-key', session=session)


class TestConstruction:

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            ScrapeNinjaFetcher(api_key='')

    def test_rejects_unknown_marketplace(self):
        with pytest.raises(ValueError):
            ScrapeNinjaFetcher(api_key='k', marketplace='ebay')

    def test_endpoints(self):
        assert ScrapeNinjaFetcher('k').endpoint('scrape') == 'https://scrapeninja.p.rapidapi.com/scrape'
        apiroad = ScrapeNinjaFetcher('k', marketplace='apiroad')
        assert apiroad.endpoint('scrape-js') == 'https://scrapeninja.apiroad.net/scrape-js'

    @override_settings(SCRAPENINJA_API_KEY='from-settings', SCRAPENINJA_MARKETPLACE='apiroad',
                       SCRAPENINJA_REQUEST_TIMEOUT_MARGIN=5)
    def test_default_fetcher_reads_settings(self):
        fetcher = get_default_fetcher()
        assert fetcher.api_key == 'from-settings'
        assert fetcher.marketplace == 'apiroad'
        assert fetcher.timeout_margin == 5


class TestPayload:

    def test_http_engine_payload(self):
        settings = ScrapeSettings(headers=['Accept-Language: en'], follow_redirects=False)

        body = ScrapeNinjaFetcher.build_payload('https://example.com', settings)

        assert body == {
            'url': 'https://example.com',
            'headers': ['Accept-Language: en'],
            'retryNum': 1,
            'textNotExpected': [],
            'timeout': 10,
            'geo': 'us',
            'followRedirects': 0,
        }

    def test_js_engine_payload(self):
        settings = ScrapeSettings(
            engine='scrape-js',
            wait_for_selector='#app',
            block_images=True,
            post_wait_time=3,
            viewport={'width': 1280, 'height': 800},
        )

        body = ScrapeNinjaFetcher.build_payload('https://example.com', settings)

        assert body['timeout'] == 16
        assert body['waitForSelector'] == '#app'
        assert body['blockImages'] is True
        assert body['blockMedia'] is False
        assert body['postWaitTime'] == 3
        assert body['viewport'] == {'width': 1280, 'height': 800}
        assert 'followRedirects' not in body

    def test_custom_proxy_replaces_geo(self):
        settings = ScrapeSettings(geo='_custom', proxy='http://user:pw@proxy:3128')

        body = ScrapeNinjaFetcher.build_payload('https://example.com', settings)

        assert body['proxy'] == 'http://user:pw@proxy:3128'
        assert 'geo' not in body

    def test_status_not_expected_only_when_set(self):
        assert 'statusNotExpected' not in ScrapeNinjaFetcher.build_payload('https://e.com', ScrapeSettings())
        body = ScrapeNinjaFetcher.build_payload('https://e.com', ScrapeSettings(status_not_expected=[403, 503]))
        assert body['statusNotExpected'] == [403, 503]


class TestFetch:

    def test_success(self, fetcher, session):
        session.post.return_value = _response(json_data={
            'info': {'statusCode': 200, 'finalUrl': 'https://example.com/home'},
            'body': '<html>ok</html>',
        })

        result = fetcher.fetch('https://example.com', ScrapeSettings())

        assert result.status_code == 200
        assert result.final_url == 'https://example.com/home'
        assert result.body == '<html>ok</html>'

    def test_request_headers_and_timeout(self, fetcher, session):
        session.post.return_value = _response(json_data={'info': {'statusCode': 200}, 'body': ''})

        fetcher.fetch('https://example.com', ScrapeSettings(retry_num=2))

        args, kwargs = session.post.call_args
        assert args[0] == 'https://scrapeninja.p.rapidapi.com/scrape'
        assert kwargs['headers']['X-RapidAPI-Key'] == 'secret-key'
        assert kwargs['headers']['X-RapidAPI-Host'] == 'scrapeninja.p.rapidapi.com'
        assert kwargs['timeout'] == 10 * 3 + ScrapeNinjaFetcher.REQUEST_TIMEOUT_MARGIN

    def test_apiroad_key_header(self, session):
        session.post.return_value = _response(json_data={'info': {'statusCode': 200}, 'body': ''})
        fetcher = ScrapeNinjaFetcher('road-key', marketplace='apiroad', session=session)

        fetcher.fetch('https://example.com', ScrapeSettings())

        headers = session.post.call_args.kwargs['headers']
        assert headers['X-Apiroad-Key'] == 'road-key'
        assert 'X-RapidAPI-Key' not in headers

    def test_missing_final_url_falls_back_to_request_url(self, fetcher, session):
        session.post.return_value = _response(json_data={'info': {'statusCode': 200}, 'body': 'x'})
        assert fetcher.fetch('https://example.com', ScrapeSettings()).final_url == 'https://example.com'

    def test_forbidden_explains_api_key(self, fetcher, session):
        session.post.return_value = _response(status_code=403, text='{"message": "denied"}')

        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch('https://example.com', ScrapeSettings())

        assert 'API key is invalid or has expired' in str(exc_info.value)
        assert 'RapidAPI' in str(exc_info.value)
        assert exc_info.value.status_code == 403
        assert exc_info.value.error_response() == {'message': 'denied'}

    def test_upstream_error_status(self, fetcher, session):
        session.post.return_value = _response(status_code=500, text='Internal Server Error')

        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch('https://example.com', ScrapeSettings())

        assert str(exc_info.value) == 'Request failed with status code 500'
        assert exc_info.value.error_response() == {'body': 'Internal Server Error'}

    def test_timeout(self, fetcher, session):
        session.post.side_effect = requests.ReadTimeout('read timed out')

        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch('https://example.com', ScrapeSettings())

        assert 'timed out' in str(exc_info.value)
        assert exc_info.value.status_code is None

    def test_connection_error(self, fetcher, session):
        session.post.side_effect = requests.ConnectionError('connection refused')

        with pytest.raises(FetchError):
            fetcher.fetch('https://example.com', ScrapeSettings())

    def test_invalid_json(self, fetcher, session):
        session.post.return_value = _response(json_data=ValueError('Expecting value'), text='<html>')

        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch('https://example.com', ScrapeSettings())

        assert 'Unexpected ScrapeNinja response' in str(exc_info.value)

    def test_close_closes_session(self, fetcher, session):
        with fetcher:
            pass
        session.close.assert_called_once()

"""
ScrapeNinja fetcher implementation using the requests library.

Pages are not fetched directly: each URL is POSTed to the ScrapeNinja API
through one of its marketplaces, which performs the request (optionally in
a real browser) and returns status, final URL and body.
"""

import logging
import time
from typing import Any, Dict, Optional

import requests
from django.conf import settings as django_settings
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..exceptions import FetchError
from ..interfaces import FetchResult, PageFetcher, ScrapeEngine, ScrapeSettings

logger = logging.getLogger(__name__)


class ScrapeNinjaFetcher(PageFetcher):
    """
    PageFetcher backed by the ScrapeNinja scraping API.

    Features:
    - RapidAPI or APIRoad marketplace endpoints
    - Plain HTTP (``scrape``) and real-browser (``scrape-js``) engines
    - Transport-level retries for gateway errors; content-level retries
      (``retry_num``, "not expected" triggers) are left to ScrapeNinja
    """

    MARKETPLACES = {
        'rapidapi': {
            'name': 'RapidAPI',
            'base_url': 'https://scrapeninja.p.rapidapi.com',
        },
        'apiroad': {
            'name': 'APIRoad',
            'base_url': 'https://scrapeninja.apiroad.net',
        },
    }
    RAPIDAPI_HOST = 'scrapeninja.p.rapidapi.com'
    DEFAULT_MAX_RETRIES = 2
    # Added on top of the per-attempt scrape timeout for the API round trip
    REQUEST_TIMEOUT_MARGIN = 20

    def __init__(
        self,
        api_key: str,
        marketplace: str = 'rapidapi',
        max_retries: int = DEFAULT_MAX_RETRIES,
        session: Optional[requests.Session] = None,
        timeout_margin: int = REQUEST_TIMEOUT_MARGIN,
    ):
        if not api_key:
            raise ValueError("No ScrapeNinja API key configured")
        if marketplace not in self.MARKETPLACES:
            raise ValueError(f"Unknown ScrapeNinja marketplace: {marketplace}")

        self.api_key = api_key
        self.marketplace = marketplace
        self.max_retries = max_retries
        self.timeout_margin = timeout_margin
        self.session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry configuration."""
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,
            status_forcelist=[502, 503, 504],
            allowed_methods=["POST"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("https://", adapter)

        return session

    @property
    def marketplace_name(self) -> str:
        return self.MARKETPLACES[self.marketplace]['name']

    def endpoint(self, engine: str) -> str:
        return f"{self.MARKETPLACES[self.marketplace]['base_url']}/{engine}"

    def _auth_headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.marketplace == 'rapidapi':
            headers['X-RapidAPI-Key'] = self.api_key
            headers['X-RapidAPI-Host'] = self.RAPIDAPI_HOST
        else:
            headers['X-Apiroad-Key'] = self.api_key
        return headers

    @staticmethod
    def build_payload(url: str, settings: ScrapeSettings) -> Dict[str, Any]:
        """Request body for one scrape, per engine."""
        is_js = settings.engine == ScrapeEngine.JS.value
        body: Dict[str, Any] = {
            'url': url,
            'headers': list(settings.headers),
            'retryNum': settings.retry_num,
            'textNotExpected': list(settings.text_not_expected),
            'timeout': settings.timeout_js if is_js else settings.timeout,
        }

        if settings.status_not_expected:
            body['statusNotExpected'] = list(settings.status_not_expected)

        if settings.geo != ScrapeSettings.CUSTOM_PROXY_GEO:
            body['geo'] = settings.geo
        elif settings.proxy:
            body['proxy'] = settings.proxy

        if is_js:
            body['waitForSelector'] = settings.wait_for_selector
            body['blockImages'] = settings.block_images
            body['blockMedia'] = settings.block_media
            if settings.post_wait_time > 0:
                body['postWaitTime'] = settings.post_wait_time
            if settings.viewport:
                body['viewport'] = settings.viewport
        else:
            body['followRedirects'] = 1 if settings.follow_redirects else 0

        return body

    def fetch(self, url: str, settings: ScrapeSettings) -> FetchResult:
        """
        Scrape one page through ScrapeNinja.

        Raises:
            FetchError: The API call failed or returned a non-2xx status.
        """
        endpoint = self.endpoint(settings.engine)
        payload = self.build_payload(url, settings)
        scrape_timeout = payload['timeout']
        timeout = scrape_timeout * (settings.retry_num + 1) + self.timeout_margin

        # Only the marketplace name is logged, never the key
        logger.debug(f"Sending request to {endpoint} for {url} (marketplace={self.marketplace})")

        start_time = time.time()
        try:
            response = self.session.post(
                endpoint,
                json=payload,
                headers=self._auth_headers(),
                timeout=timeout,
            )
        except requests.Timeout as e:
            raise FetchError(f"Request to ScrapeNinja timed out: {e}") from e
        except requests.RequestException as e:
            raise FetchError(str(e)) from e

        latency_ms = int((time.time() - start_time) * 1000)

        if response.status_code == 403:
            raise FetchError(
                f"{self.marketplace_name} returned 403 Forbidden - "
                "This usually means your API key is invalid or has expired",
                status_code=403,
                response_body=response.text,
            )

        if response.status_code >= 400:
            raise FetchError(
                f"Request failed with status code {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )

        try:
            data = response.json()
            info = data.get('info') or {}
            return FetchResult(
                url=url,
                status_code=info.get('statusCode'),
                final_url=info.get('finalUrl') or url,
                body=data.get('body') or '',
                latency_ms=latency_ms,
            )
        except (ValueError, AttributeError) as e:
            raise FetchError(
                f"Unexpected ScrapeNinja response: {e}",
                status_code=response.status_code,
                response_body=response.text,
            ) from e

    def close(self) -> None:
        self.session.close()


def get_default_fetcher() -> ScrapeNinjaFetcher:
    """Fetcher configured from Django settings."""
    return ScrapeNinjaFetcher(
        api_key=getattr(django_settings, 'SCRAPENINJA_API_KEY', ''),
        marketplace=getattr(django_settings, 'SCRAPENINJA_MARKETPLACE', 'rapidapi'),
        max_retries=getattr(django_settings, 'SCRAPENINJA_MAX_RETRIES', ScrapeNinjaFetcher.DEFAULT_MAX_RETRIES),
        timeout_margin=getattr(
            django_settings, 'SCRAPENINJA_REQUEST_TIMEOUT_MARGIN', ScrapeNinjaFetcher.REQUEST_TIMEOUT_MARGIN,
        ),
    )

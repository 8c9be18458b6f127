"""
Fetch port for the crawler.

The scheduler only depends on ``PageFetcher``; concrete adapters live in
``apps.crawler.fetchers`` and tests substitute fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional


class ScrapeEngine(str, Enum):
    """Supported scraping backends."""
    HTTP = "scrape"
    JS = "scrape-js"


@dataclass
class ScrapeSettings:
    """
    Per-run fetch configuration, persisted on CrawlRun.settings.

    ``geo='_custom'`` means route through ``proxy`` instead of a geo pool.
    ``text_not_expected`` / ``status_not_expected`` trigger the backend's
    own retries; the crawler never sees them.
    """
    engine: str = ScrapeEngine.HTTP.value
    headers: List[str] = field(default_factory=list)
    retry_num: int = 1
    geo: str = "us"
    proxy: str = ""
    text_not_expected: List[str] = field(default_factory=list)
    status_not_expected: List[int] = field(default_factory=list)
    follow_redirects: bool = True
    timeout: int = 10
    timeout_js: int = 16
    wait_for_selector: str = ""
    block_images: bool = False
    block_media: bool = False
    post_wait_time: int = 0
    viewport: Optional[Dict[str, Any]] = None

    CUSTOM_PROXY_GEO = "_custom"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScrapeSettings":
        """
        Build settings from stored JSON, ignoring unknown keys.

        Values are not type-checked here; call validate().
        """
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def _type_problems(self) -> List[str]:
        problems = []
        for name in ('retry_num', 'timeout', 'timeout_js', 'post_wait_time'):
            value = getattr(self, name)
            # bool is an int subclass
            if isinstance(value, bool) or not isinstance(value, int):
                problems.append(f"{name} must be an integer (got {value!r})")
        for name in ('follow_redirects', 'block_images', 'block_media'):
            if not isinstance(getattr(self, name), bool):
                problems.append(f"{name} must be a boolean")
        for name in ('engine', 'geo', 'proxy', 'wait_for_selector'):
            if not isinstance(getattr(self, name), str):
                problems.append(f"{name} must be a string")
        for name in ('headers', 'text_not_expected'):
            value = getattr(self, name)
            if not isinstance(value, list) or any(not isinstance(v, str) for v in value):
                problems.append(f"{name} must be a list of strings")
        codes = self.status_not_expected
        if not isinstance(codes, list) or any(isinstance(c, bool) or not isinstance(c, int) for c in codes):
            problems.append("status_not_expected must be a list of integers")
        if self.viewport is not None and not isinstance(self.viewport, dict):
            problems.append("viewport must be an object")
        return problems

    def validate(self) -> List[str]:
        """Return a list of problems; empty when the settings are usable."""
        problems = self._type_problems()
        if problems:
            return problems

        if self.engine not in {e.value for e in ScrapeEngine}:
            problems.append(f"engine must be one of 'scrape', 'scrape-js' (got {self.engine!r})")
        if self.retry_num < 0:
            problems.append("retry_num must be >= 0")
        if self.timeout <= 0 or self.timeout_js <= 0:
            problems.append("timeouts must be positive")
        if not 0 <= self.post_wait_time <= 12:
            problems.append("post_wait_time must be between 0 and 12 seconds")
        if self.geo == self.CUSTOM_PROXY_GEO and not self.proxy:
            problems.append("proxy is required when geo is '_custom'")
        for header in self.headers:
            if ':' not in header:
                problems.append(f"header {header!r} must look like 'Name: value'")
        return problems


@dataclass
class FetchResult:
    """Result of a successful fetch."""
    url: str
    status_code: int
    final_url: Optional[str]
    body: str
    latency_ms: int = 0


class PageFetcher(ABC):
    """
    Abstract base class for page fetchers.

    ``fetch`` either returns a FetchResult or raises
    ``apps.crawler.exceptions.FetchError``. Implementations must be safe to
    call from several worker threads at once.
    """

    @abstractmethod
    def fetch(self, url: str, settings: ScrapeSettings) -> FetchResult:
        """
        Fetch one page.

        Args:
            url: The URL to fetch
            settings: Run-level fetch configuration

        Returns:
            FetchResult with status code, final URL and body
        """

    def close(self) -> None:
        """Clean up resources (override if needed)."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

"""
BeautifulSoup-based link extraction for crawl pages.

Turns a fetched page into the candidate links the scheduler may enqueue.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Set
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from .urlfilter import hostname_of, normalize_url, should_process

logger = logging.getLogger(__name__)


@dataclass
class ExtractedLinks:
    """
    Links found on one page.

    ``included`` and ``ignored`` are disjoint and together make up
    ``discovered``.
    """
    discovered: Set[str] = field(default_factory=set)
    included: Set[str] = field(default_factory=set)
    ignored: Set[str] = field(default_factory=set)

    def ignored_sample(self, size: int) -> list:
        return sorted(self.ignored)[:size]


class BS4LinkExtractor:
    """
    Link extractor using BeautifulSoup.

    - Skips empty, ``javascript:`` and bare ``#`` hrefs
    - Resolves relative hrefs against the page's final URL
    - Drops non-http(s) schemes
    - Drops external hosts unless ``crawl_external`` is set
    - Normalizes, then applies include/exclude patterns
    """

    ALLOWED_SCHEMES = ('http', 'https')

    def __init__(
        self,
        include_patterns: Optional[Iterable[str]] = None,
        exclude_patterns: Optional[Iterable[str]] = None,
        crawl_external: bool = False,
    ):
        self.include_patterns = list(include_patterns or [])
        self.exclude_patterns = list(exclude_patterns or [])
        self.crawl_external = crawl_external

    def extract(
        self,
        html: str,
        page_url: str,
        final_url: Optional[str] = None,
        soup: Optional[BeautifulSoup] = None,
    ) -> ExtractedLinks:
        """
        Extract candidate links from a fetched page.

        Args:
            html: Page body
            page_url: URL the page was requested as; its host decides
                which links count as internal
            final_url: URL after redirects, used as the base for relative links
            soup: Already-parsed document, to avoid parsing twice

        Returns:
            ExtractedLinks with discovered, included and ignored sets
        """
        result = ExtractedLinks()
        if not html and soup is None:
            return result

        soup = soup if soup is not None else BeautifulSoup(html, 'html.parser')
        base_url = final_url or page_url
        page_host = hostname_of(page_url)

        for anchor in soup.find_all('a', href=True):
            href = anchor['href'].strip()

            if not href or href == '#' or href.lower().startswith('javascript:'):
                continue

            try:
                absolute = urljoin(base_url, href)
                parts = urlsplit(absolute)
                host = parts.hostname
            except ValueError as e:
                logger.debug(f"Invalid URL {href!r} (base: {base_url}): {e}")
                continue

            if parts.scheme.lower() not in self.ALLOWED_SCHEMES or not host:
                continue

            normalized = normalize_url(absolute)
            result.discovered.add(normalized)

            if host != page_host and not self.crawl_external:
                result.ignored.add(normalized)
                continue

            if should_process(normalized, self.include_patterns, self.exclude_patterns):
                result.included.add(normalized)
            else:
                result.ignored.add(normalized)

        return result


def extract_title(soup: BeautifulSoup, max_length: int = 250) -> Optional[str]:
    """Text of the document's <title>, whitespace-collapsed and truncated."""
    if soup.title is None:
        return None
    title = ' '.join(soup.title.get_text().split())
    return title[:max_length] or None

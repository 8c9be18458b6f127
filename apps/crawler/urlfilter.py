"""
URL normalization and include/exclude filtering for crawl runs.

Normalization is deliberately conservative: it only touches the parts of a
URL that never change the resource (host case, fragment, default port and a
bare root path). Query strings and path casing are left alone.
"""

import logging
import re
from functools import lru_cache
from typing import Iterable, Optional, Pattern
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)

SCHEME_RE = re.compile(r'^https?://', re.IGNORECASE)


# =============================================================================
# URL Normalization
# =============================================================================

class URLNormalizer:
    """
    Normalize URLs to canonical form for queue deduplication.

    Handles:
    - Lowercasing scheme and host
    - Removing default ports (80 for http, 443 for https)
    - Removing fragments
    - Removing a path that is only "/"

    Malformed input is returned unchanged. normalize() is idempotent.
    """

    DEFAULT_PORTS = {
        'http': 80,
        'https': 443,
    }

    def normalize(self, url: str) -> str:
        """
        Normalize a URL to its canonical form.

        Args:
            url: URL to normalize

        Returns:
            Normalized URL string, or the input when it cannot be parsed
        """
        if not url:
            return url

        try:
            parsed = urlsplit(url)
            if not parsed.scheme or not parsed.netloc:
                return url

            scheme = parsed.scheme.lower()
            host = parsed.hostname or ''
            port = parsed.port
        except ValueError as e:
            logger.debug(f"Leaving unparseable URL as-is {url!r}: {e}")
            return url

        if ':' in host:
            host = f'[{host}]'

        netloc = host
        if port is not None and self.DEFAULT_PORTS.get(scheme) != port:
            netloc = f'{host}:{port}'

        userinfo, at, _ = parsed.netloc.rpartition('@')
        if at:
            netloc = f'{userinfo}@{netloc}'

        path = '' if parsed.path == '/' else parsed.path

        return urlunsplit((scheme, netloc, path, parsed.query, ''))


# Default normalizer instance
default_normalizer = URLNormalizer()


def normalize_url(url: str) -> str:
    """Convenience function to normalize a URL using default settings."""
    return default_normalizer.normalize(url)


def hostname_of(url: str) -> Optional[str]:
    """Lowercased hostname of a URL, or None if it has none."""
    try:
        return urlsplit(url).hostname
    except ValueError:
        return None


# =============================================================================
# Glob Pattern Filtering
# =============================================================================

def strip_scheme(value: str) -> str:
    return SCHEME_RE.sub('', value, count=1)


@lru_cache(maxsize=512)
def compile_glob(pattern: str) -> Pattern:
    """
    Translate a shell-style glob into a compiled regex.

    ``**`` matches across ``/``; ``*`` and ``?`` stay within one path
    segment. ``[...]`` classes (``!`` negates) and ``{a,b}`` alternation
    are supported. Everything else matches literally.
    """
    regex = []
    i, n = 0, len(pattern)
    brace_depth = 0

    while i < n:
        c = pattern[i]
        if c == '*':
            if pattern[i:i + 2] == '**':
                regex.append('.*')
                i += 2
                # "**/" also matches zero segments
                if pattern[i:i + 1] == '/':
                    regex[-1] = '(?:.*/)?'
                    i += 1
                continue
            regex.append('[^/]*')
        elif c == '?':
            regex.append('[^/]')
        elif c == '[':
            end = pattern.find(']', i + 2 if pattern[i + 1:i + 2] in ('!', ']') else i + 1)
            if end == -1:
                regex.append(re.escape(c))
            else:
                body = pattern[i + 1:end]
                if body.startswith('!'):
                    body = '^' + body[1:]
                regex.append('[' + body.replace('\\', '\\\\') + ']')
                i = end
        elif c == '{':
            brace_depth += 1
            regex.append('(?:')
        elif c == ',' and brace_depth:
            regex.append('|')
        elif c == '}' and brace_depth:
            brace_depth -= 1
            regex.append(')')
        else:
            regex.append(re.escape(c))
        i += 1

    if brace_depth:
        # Unbalanced braces: treat the whole pattern literally
        return re.compile(re.escape(pattern))

    return re.compile(''.join(regex))


def matches_glob(value: str, pattern: str) -> bool:
    return compile_glob(pattern).fullmatch(value) is not None


def should_process(
    url: str,
    include_patterns: Iterable[str] = (),
    exclude_patterns: Iterable[str] = (),
) -> bool:
    """
    Decide whether a URL passes a run's include/exclude filters.

    The scheme is stripped from both the URL and each pattern before
    matching. An empty include list includes everything. Exclusion always
    wins over inclusion.
    """
    include_patterns = [p for p in include_patterns if p]
    target = strip_scheme(url)

    included = not include_patterns
    for pattern in include_patterns:
        if matches_glob(target, strip_scheme(pattern)):
            included = True
            break

    for pattern in exclude_patterns:
        if pattern and matches_glob(target, strip_scheme(pattern)):
            return False

    return included

"""
Page fetcher implementations.
"""

from .scrapeninja_fetcher import ScrapeNinjaFetcher, get_default_fetcher

__all__ = [
    'ScrapeNinjaFetcher',
    'get_default_fetcher',
]

"""Remote content fetching: URL validation and the HTTP fetcher."""

from .http import FetchOptions, HttpContentFetcher
from .validation import UrlValidator

__all__ = ["FetchOptions", "HttpContentFetcher", "UrlValidator"]

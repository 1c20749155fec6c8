"""Network-facing helpers: markup URL harvesting, HTTP fetching, rendering."""

from .fetch import (
    ASSET_POLICY,
    HTML_POLICY,
    SIZE_CHECK_POLICY,
    FetchedResource,
    FetchPolicy,
    HttpFetcher,
    assert_allowed_url,
)
from .html import extract_urls, to_abs_url
from .render import PlaywrightRenderer, RenderResult

__all__ = [
    "ASSET_POLICY",
    "HTML_POLICY",
    "SIZE_CHECK_POLICY",
    "FetchedResource",
    "FetchPolicy",
    "HttpFetcher",
    "assert_allowed_url",
    "extract_urls",
    "to_abs_url",
    "PlaywrightRenderer",
    "RenderResult",
]

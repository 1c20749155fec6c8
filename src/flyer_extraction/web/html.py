"""URL harvesting from scraped markup (no network I/O).

Tags and attributes are read through BeautifulSoup; CSS ``url()`` values and
bare URLs inside scripts are swept with regexes over the raw text.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Union
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from ..logging import get_logger

LOG = get_logger("web-html")

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")

_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&nbsp;", " "),
    ("&amp;", "&"),
)

Markup = Union[str, BeautifulSoup]

_URL_ATTRS = ("href", "src", "data-src", "data-original")
_META_IMAGE_KEYS = {"og:image", "twitter:image"}
_LINK_IMAGE_RELS = {"image_src", "preload"}
_CSS_URL_RE = re.compile(r"""url\(\s*['"]?([^'")]+)['"]?\s*\)""", re.IGNORECASE)
_RAW_URL_RE = re.compile(r"""https?://[^\s"'<>\\]+""", re.IGNORECASE)


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")


def decode_html_entities(value: str) -> str:
    out = value
    for entity, char in _ENTITIES:
        out = out.replace(entity, char)
    return out


def decode_loose(value: str) -> str:
    """Decode HTML entities plus JS-escaped ``\\u0026`` and ``\\/``."""
    out = decode_html_entities(value)
    return out.replace("\\u0026", "&").replace("\\/", "/")


def strip_tags(value: str) -> str:
    """Visible text of a markup fragment."""
    if "<" not in (value or ""):
        return decode_html_entities(value or "").strip()
    return parse_html(value).get_text().strip()


def uniq(values: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for v in values:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


def is_http_url(value: str) -> bool:
    try:
        parts = urlsplit(value)
        _ = parts.port  # raises ValueError on a malformed port
    except ValueError:
        return False
    return parts.scheme in {"http", "https"} and bool(parts.hostname)


def to_abs_url(raw: str, base_url: str) -> Optional[str]:
    """Resolve ``raw`` against ``base_url``; None when the result is unusable."""
    s = decode_loose((raw or "").strip())
    if not s or s.startswith(("data:", "blob:", "javascript:", "mailto:")):
        return None
    try:
        absolute = urljoin(base_url, s.replace(" ", "%20"))
    except ValueError:
        return None
    return absolute if is_http_url(absolute) else None


def _absolute(values: Iterable[str], base_url: str) -> List[str]:
    out: List[str] = []
    for raw in values:
        abs_url = to_abs_url(raw, base_url)
        if abs_url:
            out.append(abs_url)
    return out


def _soup(html: Markup) -> BeautifulSoup:
    return html if isinstance(html, BeautifulSoup) else parse_html(html)


def extract_attr_urls(html: Markup, base_url: str) -> List[str]:
    """href/src/data-src/data-original values of every tag, in document order."""
    values = []
    for tag in _soup(html).find_all(True):
        for attr in _URL_ATTRS:
            value = tag.get(attr)
            if isinstance(value, str):
                values.append(value)
    return _absolute(values, base_url)


def extract_meta_images(html: Markup, base_url: str) -> List[str]:
    values = []
    for tag in _soup(html).find_all("meta"):
        key = (tag.get("property") or tag.get("name") or "").strip().lower()
        if key in _META_IMAGE_KEYS and tag.get("content"):
            values.append(tag["content"])
    return _absolute(values, base_url)


def extract_link_images(html: Markup, base_url: str) -> List[str]:
    values = []
    for tag in _soup(html).find_all("link", href=True):
        rels = {r.lower() for r in tag.get("rel") or []}
        if rels & _LINK_IMAGE_RELS:
            values.append(tag["href"])
    return _absolute(values, base_url)


def extract_css_urls(html: str, base_url: str) -> List[str]:
    return _absolute((m.group(1) for m in _CSS_URL_RE.finditer(html or "")), base_url)


def extract_raw_urls(html: str) -> List[str]:
    """Sweep the whole document, scripts included, for http(s) tokens.

    The document is loosely decoded first so JSON-escaped URLs such as
    ``https:\\/\\/cdn.example\\/a.jpg`` are recovered.
    """
    out: List[str] = []
    for m in _RAW_URL_RE.finditer(decode_loose(html or "")):
        candidate = m.group(0).rstrip(".,;)")
        if is_http_url(candidate):
            out.append(candidate)
    return out


def extract_urls(html: str, base_url: str) -> List[str]:
    """Return de-duplicated absolute URLs found by all four strategies.

    Order: meta/link images, attributes, CSS ``url()``, raw sweep.
    """
    soup = parse_html(html)
    urls = uniq(
        [
            *extract_meta_images(soup, base_url),
            *extract_link_images(soup, base_url),
            *extract_attr_urls(soup, base_url),
            *extract_css_urls(html, base_url),
            *extract_raw_urls(html),
        ]
    )
    LOG.debug("Extracted %d unique URL(s) from %d chars of markup", len(urls), len(html or ""))
    return urls


def url_path_lower(url: str) -> str:
    try:
        return urlsplit(url).path.lower()
    except ValueError:
        return url.lower().split("?", 1)[0]


def looks_like_image_url(url: str) -> bool:
    return url_path_lower(url).endswith(IMAGE_EXTENSIONS)


def looks_like_pdf_url(url: str) -> bool:
    return url_path_lower(url).endswith(".pdf")


def is_image_or_pdf_url(url: str) -> bool:
    return looks_like_image_url(url) or looks_like_pdf_url(url)

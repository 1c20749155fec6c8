"""HTTP fetching with explicit per-call policy, allowlists, and cancellation."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional
from urllib.parse import urljoin, urlsplit

import requests

from ..errors import FetchError, PipelineCancelled, UrlNotAllowedError
from ..logging import get_logger

LOG = get_logger("web-fetch")

BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)

_CHUNK = 64 * 1024
_REDIRECT_CODES = (301, 302, 303, 307, 308)
MAX_REDIRECTS = 5


@dataclass(frozen=True)
class FetchPolicy:
    """Timeout, size cap, and caching headers for one request."""

    timeout_sec: float = 30.0
    max_bytes: int = 40 * 1024 * 1024
    no_store: bool = True
    user_agent: str = BROWSER_UA
    accept: str = "*/*"
    accept_language: Optional[str] = None
    referer: Optional[str] = None

    def headers(self) -> Dict[str, str]:
        h = {"User-Agent": self.user_agent, "Accept": self.accept}
        if self.accept_language:
            h["Accept-Language"] = self.accept_language
        if self.no_store:
            h["Cache-Control"] = "no-store"
            h["Pragma"] = "no-cache"
        if self.referer:
            h["Referer"] = self.referer
        return h

    def with_referer(self, referer: Optional[str]) -> "FetchPolicy":
        return replace(self, referer=referer)


HTML_POLICY = FetchPolicy(
    max_bytes=10 * 1024 * 1024,
    accept="text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    accept_language="ja,en-US;q=0.9,en;q=0.8",
)
ASSET_POLICY = FetchPolicy(max_bytes=40 * 1024 * 1024)
SIZE_CHECK_POLICY = FetchPolicy(timeout_sec=15.0, max_bytes=0)


@dataclass(frozen=True)
class FetchedResource:
    url: str
    content: bytes
    content_type: str
    status_code: int = 200

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def is_html(self) -> bool:
        if "text/html" in self.content_type.lower():
            return True
        head = self.content[:64].decode("utf-8", errors="ignore").lstrip().lower()
        return head.startswith("<!doctype") or head.startswith("<html") or head.startswith("<")

    def is_pdf(self) -> bool:
        return is_pdf_by_type_or_url(self.content_type, self.url)


def is_pdf_by_type_or_url(content_type: str, url: str) -> bool:
    if "application/pdf" in (content_type or "").lower():
        return True
    try:
        return urlsplit(url).path.lower().endswith(".pdf")
    except ValueError:
        return url.lower().endswith(".pdf")


def assert_allowed_url(url: str, allowed_hosts: Iterable[str]) -> str:
    """Raise UrlNotAllowedError unless url is http(s) on an allowed host."""
    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError:
        raise UrlNotAllowedError(f"Invalid url: {url}", url=url)
    if parts.scheme not in {"http", "https"}:
        raise UrlNotAllowedError(f"Only http/https allowed: {url}", url=url)
    allowed = set(allowed_hosts)
    if not host or host not in allowed:
        raise UrlNotAllowedError(f"URL host not allowed: {host}", url=url)
    return url


def is_allowed_url(url: str, allowed_hosts: Iterable[str]) -> bool:
    try:
        assert_allowed_url(url, allowed_hosts)
    except UrlNotAllowedError:
        return False
    return True


def _parse_total_from_content_range(value: Optional[str]) -> int:
    if not value:
        return 0
    m = re.search(r"/(\d+)$", value.strip())
    return int(m.group(1)) if m else 0


def _parse_int(value: Optional[str]) -> int:
    try:
        return int(value) if value else 0
    except ValueError:
        return 0


class HttpFetcher:
    """Thin requests wrapper; every call takes an explicit FetchPolicy.

    ``cancel`` is checked before each request and between body chunks; a set
    event aborts with PipelineCancelled.
    """

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.s = session or requests.Session()
        self.cancel = cancel

    def check_cancelled(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise PipelineCancelled("cancelled by caller")

    def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        timeout: float,
        allowed: Optional[List[str]],
        *,
        stream: bool = False,
    ) -> requests.Response:
        """Issue one request and follow redirects hop by hop.

        Each hop is checked against ``allowed`` before it goes on the wire.
        """
        current = url
        for _ in range(MAX_REDIRECTS + 1):
            if allowed is not None:
                assert_allowed_url(current, allowed)
            self.check_cancelled()
            if method == "HEAD":
                r = self.s.head(current, headers=headers, timeout=timeout, allow_redirects=False)
            else:
                r = self.s.get(current, headers=headers, timeout=timeout, stream=stream, allow_redirects=False)
            location = r.headers.get("location") if r.status_code in _REDIRECT_CODES else None
            if not location:
                return r
            r.close()
            target = urljoin(current, location)
            LOG.debug(f"{method} {current} -> {r.status_code} {target}")
            current = target
        raise FetchError(f"too many redirects (>{MAX_REDIRECTS})", url=url)

    def fetch(
        self,
        url: str,
        policy: FetchPolicy = ASSET_POLICY,
        *,
        allowed_hosts: Optional[Iterable[str]] = None,
    ) -> FetchedResource:
        allowed = list(allowed_hosts) if allowed_hosts is not None else None
        LOG.debug(f"GET {url} (timeout={policy.timeout_sec}s, max_bytes={policy.max_bytes})")
        try:
            r = self._send("GET", url, policy.headers(), policy.timeout_sec, allowed, stream=True)
        except requests.RequestException as exc:
            raise FetchError(f"fetch failed: {exc}", url=url) from exc
        try:
            if r.status_code >= 400:
                raise FetchError(f"fetch failed: {r.status_code} {r.reason}", url=url, status_code=r.status_code)
            chunks = []
            total = 0
            for chunk in r.iter_content(chunk_size=_CHUNK):
                self.check_cancelled()
                if not chunk:
                    continue
                total += len(chunk)
                if policy.max_bytes and total > policy.max_bytes:
                    raise FetchError(f"too large: >{policy.max_bytes} bytes", url=url)
                chunks.append(chunk)
            return FetchedResource(
                url=url,
                content=b"".join(chunks),
                content_type=r.headers.get("content-type", ""),
                status_code=r.status_code,
            )
        except requests.RequestException as exc:
            raise FetchError(f"fetch failed while reading body: {exc}", url=url) from exc
        finally:
            r.close()

    def fetch_text(
        self,
        url: str,
        policy: FetchPolicy = HTML_POLICY,
        *,
        allowed_hosts: Optional[Iterable[str]] = None,
    ) -> str:
        return self.fetch(url, policy, allowed_hosts=allowed_hosts).text

    def content_length(
        self,
        url: str,
        *,
        referer: Optional[str] = None,
        allowed_hosts: Optional[Iterable[str]] = None,
        policy: FetchPolicy = SIZE_CHECK_POLICY,
    ) -> int:
        """Best-effort byte size via HEAD, then a 1-byte ranged GET.

        Returns 0 ("unknown") when neither request yields a size. A redirect
        off ``allowed_hosts`` raises UrlNotAllowedError.
        """
        allowed = list(allowed_hosts) if allowed_hosts is not None else None
        headers = policy.with_referer(referer).headers()
        try:
            r = self._send("HEAD", url, headers, policy.timeout_sec, allowed)
            try:
                size = _parse_int(r.headers.get("content-length"))
                if not size:
                    size = _parse_total_from_content_range(r.headers.get("content-range"))
            finally:
                r.close()
            if size:
                return size
        except requests.RequestException as exc:
            LOG.debug(f"HEAD failed for {url}: {exc}")

        try:
            ranged = dict(headers, Range="bytes=0-0")
            r = self._send("GET", url, ranged, policy.timeout_sec, allowed, stream=True)
            try:
                size = _parse_total_from_content_range(r.headers.get("content-range"))
                if not size:
                    size = _parse_int(r.headers.get("content-length"))
            finally:
                r.close()
            return size
        except requests.RequestException as exc:
            LOG.debug(f"Ranged GET failed for {url}: {exc}")
        return 0

    def close(self) -> None:
        self.s.close()

"""Resolve flyer viewer pages into direct image/PDF asset URLs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..domain.models import Candidate, CandidateKind, CandidateSource, Outcome, StoreId
from ..errors import FetchError, PipelineCancelled, RequestValidationError, UrlNotAllowedError
from ..logging import get_logger
from ..stores.base import StoreStrategy
from ..web.fetch import HTML_POLICY, HttpFetcher, is_allowed_url
from ..web.html import extract_urls, looks_like_image_url, looks_like_pdf_url, uniq
from ..web.render import PlaywrightRenderer
from ..web.scoring import looks_bad, looks_like_thumb

LOG = get_logger("resolve")

MIN_ASSET_BYTES = 180_000
MAX_SIZE_CHECKS = 50
MAX_IMAGES = 10
MAX_PDFS = 3
INLINE_PICK = 3


@dataclass(frozen=True)
class ResolveResult:
    store_id: StoreId
    target_page: str
    candidates: Tuple[Candidate, ...] = ()
    warnings: Tuple[str, ...] = ()
    meta: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "storeId": self.store_id.value,
            "targetPage": self.target_page,
            "candidates": [c.as_dict() for c in self.candidates],
            "warnings": list(self.warnings),
            "meta": dict(self.meta),
        }


def scrape_asset_urls(html: str, base_url: str) -> Tuple[List[str], List[str]]:
    """(images, pdfs) found in markup, with decorative images removed."""
    images: List[str] = []
    pdfs: List[str] = []
    for u in extract_urls(html, base_url):
        if looks_like_pdf_url(u):
            if not looks_bad(u):
                pdfs.append(u)
        elif looks_like_image_url(u) and not looks_bad(u):
            images.append(u)
    return images, pdfs


class PageResolver:
    """Static-HTML resolution with an optional headless-browser escalation.

    Images are ranked by the store's scoring rules, size-checked, and those
    known to be at most ``min_bytes`` are dropped; unknown sizes are kept.
    """

    def __init__(
        self,
        fetcher: HttpFetcher,
        renderer: Optional[PlaywrightRenderer] = None,
        *,
        min_bytes: int = MIN_ASSET_BYTES,
        max_size_checks: int = MAX_SIZE_CHECKS,
        max_images: int = MAX_IMAGES,
        max_pdfs: int = MAX_PDFS,
    ) -> None:
        self.fetcher = fetcher
        self.renderer = renderer
        self.min_bytes = min_bytes
        self.max_size_checks = max_size_checks
        self.max_images = max_images
        self.max_pdfs = max_pdfs

    def resolve(self, store: StoreStrategy, pages: Sequence[str]) -> ResolveResult:
        pages = [p for p in pages if isinstance(p, str) and p.strip()]
        if not pages:
            raise RequestValidationError("pages/pageUrl is required")
        target = store.pick_target_page(pages)
        allowed = store.allowlist()
        warnings: List[str] = []

        try:
            html = self.fetcher.fetch_text(target, HTML_POLICY, allowed_hosts=allowed)
        except PipelineCancelled:
            raise
        except (FetchError, UrlNotAllowedError) as exc:
            LOG.warning(f"Resolve page fetch failed for {target}: {exc}")
            return ResolveResult(
                store_id=store.store_id,
                target_page=target,
                warnings=(f"fetch html failed: {exc}",),
                meta={"foundImages": 0, "checked": 0, "picked": 0},
            )

        images, pdfs = scrape_asset_urls(html, target)
        images = store.scoring.rank(images)
        off_list = [u for u in images if not is_allowed_url(u, allowed)]
        if off_list:
            warnings.append(f"Skipped {len(off_list)} image URL(s) outside the store allowlist")
        sized_pool = [u for u in images if u not in off_list]

        checked = min(len(sized_pool), self.max_size_checks)
        picked: List[str] = []
        for url in sized_pool[:checked]:
            try:
                size = self.fetcher.content_length(url, referer=target, allowed_hosts=allowed)
            except UrlNotAllowedError as exc:
                LOG.warning(f"Dropped {url}: {exc}")
                warnings.append(f"Skipped image URL redirecting outside the store allowlist: {url}")
                continue
            LOG.debug(f"Size of {url}: {size} bytes")
            if size == 0 or size > self.min_bytes:
                picked.append(url)
        picked = picked[: self.max_images]

        source = CandidateSource.RESOLVE
        if self.renderer is not None and (store.render_first or not picked):
            rendered = self._render(store, target)
            warnings.extend(rendered.warnings)
            if rendered.value:
                picked = rendered.value
                source = CandidateSource.RESOLVE_RENDERED
            elif not picked:
                warnings.append("Rendering did not yield a main image URL either")
        elif not picked:
            warnings.append("No full-size image URL found in the page HTML")

        picked = uniq(store.postprocess_asset_url(u) for u in picked)
        candidates = [
            Candidate(CandidateKind.PDF, u, CandidateSource.RESOLVE, f"PDF候補 {i + 1}")
            for i, u in enumerate([p for p in pdfs if is_allowed_url(p, allowed)][: self.max_pdfs])
        ]
        candidates += [
            Candidate(CandidateKind.IMAGE, u, source, f"メイン画像候補 {i + 1}") for i, u in enumerate(picked)
        ]
        meta = {"foundImages": len(images), "checked": checked, "picked": len(picked)}
        LOG.info("Resolved %s: %s", target, meta)
        return ResolveResult(
            store_id=store.store_id,
            target_page=target,
            candidates=tuple(candidates),
            warnings=tuple(warnings),
            meta=meta,
        )

    def _render(self, store: StoreStrategy, target: str) -> Outcome[List[str]]:
        try:
            rendered = self.renderer.render(target)
        except PipelineCancelled:
            raise
        except Exception as exc:
            LOG.warning(f"Rendered resolve failed for {target}: {exc}")
            return Outcome.of([], [f"Rendered resolve failed: {exc}"])
        self.fetcher.check_cancelled()
        return store.urls_from_render(rendered)

    def assets_from_html(self, store: StoreStrategy, html: str, page_url: str) -> Outcome[List[str]]:
        """Top image URLs of an already-fetched page; thumbnails only when nothing larger exists."""
        allowed = store.allowlist()
        urls = [
            store.postprocess_asset_url(u)
            for u in extract_urls(html, page_url)
            if looks_like_image_url(u)
        ]
        images = [u for u in uniq(urls) if is_allowed_url(u, allowed)]
        ranked = store.scoring.rank(images)
        good = [u for u in ranked if not looks_bad(u)]
        picked = (good or [u for u in ranked if looks_like_thumb(u)])[:INLINE_PICK]
        if not picked:
            return Outcome.of([], [f"No large image URL found in the page HTML: {page_url}"])
        if not good:
            return Outcome.of(picked, [f"Only thumbnail images found on {page_url}; results may be low resolution"])
        return Outcome.of(picked)

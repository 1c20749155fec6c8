"""End-to-end extraction: input URLs -> assets -> page bitmaps -> tiles -> items."""

from __future__ import annotations

import time
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Set

from ..config import PipelineSettings
from ..domain.models import ExtractMode, ExtractRequest, ExtractResponse, Outcome, PageBitmap, StoreId
from ..errors import FlyerError, PipelineCancelled, RequestValidationError
from ..logging import get_logger
from ..stores import get_strategy
from ..stores.base import StoreStrategy
from ..web.fetch import ASSET_POLICY, HTML_POLICY, FetchedResource, HttpFetcher, assert_allowed_url
from ..web.html import is_image_or_pdf_url, uniq
from .assets import normalize_asset
from .extract import BatchExtractor, VisionExtractor
from .grid import compose_tiles, expand_tile_urls, group_tiles
from .resolve import PageResolver
from .tiling import tile_pages

LOG = get_logger("flow")


def build_request(payload: Mapping[str, Any], *, default_max_tiles: int = 200) -> ExtractRequest:
    """Validate an extract payload (``storeId``, ``urls`` or ``url``, ``mode``, ``maxTiles``)."""
    store_id = StoreId.parse(payload.get("storeId"))
    if store_id is None:
        allowed = " | ".join(s.value for s in StoreId)
        raise RequestValidationError(f"storeId is required ({allowed})")

    urls = payload.get("urls")
    if urls is None and payload.get("url"):
        urls = [payload.get("url")]
    if not isinstance(urls, list) or not urls or not all(isinstance(u, str) and u.strip() for u in urls):
        raise RequestValidationError("urls is required (string[])")

    raw_max = payload.get("maxTiles")
    if raw_max is None:
        max_tiles = default_max_tiles
    else:
        try:
            max_tiles = int(raw_max)
        except (TypeError, ValueError):
            raise RequestValidationError("maxTiles must be a positive integer")
        if max_tiles <= 0:
            raise RequestValidationError("maxTiles must be a positive integer")

    return ExtractRequest(
        store_id=store_id,
        source_urls=[u.strip() for u in urls],
        mode=ExtractMode.parse(payload.get("mode")),
        max_tiles=max_tiles,
    )


class FlyerPipeline:
    """Runs one extraction request; not shared between concurrent requests."""

    def __init__(
        self,
        fetcher: HttpFetcher,
        vision: VisionExtractor,
        *,
        model_name: str = "",
        settings: Optional[PipelineSettings] = None,
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> None:
        self.fetcher = fetcher
        self.vision = vision
        self.model_name = model_name
        self.settings = settings or PipelineSettings()
        self.max_output_tokens = max_output_tokens
        self.resolver = PageResolver(fetcher)
        self.html_policy = replace(HTML_POLICY, timeout_sec=self.settings.http_timeout_sec)
        self.asset_policy = replace(ASSET_POLICY, timeout_sec=self.settings.http_timeout_sec)
        self.extractor = BatchExtractor(
            vision,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            cancel=fetcher.cancel,
        )

    def _meta(self, started: float, pages: int, tiles: int, **extra: Any) -> Dict[str, Any]:
        meta: Dict[str, Any] = {
            "model": self.model_name,
            "pages": pages,
            "tiles": tiles,
            "elapsedMs": int((time.perf_counter() - started) * 1000),
            "maxOutputTokens": self.max_output_tokens,
        }
        meta.update(extra)
        return meta

    def _exhausted(self, started: float, warnings: List[str], summary: str, pages: int = 0) -> ExtractResponse:
        LOG.warning(summary)
        return ExtractResponse(items=[], warnings=[*warnings, summary], meta=self._meta(started, pages, 0))

    # -- stages -------------------------------------------------------------

    def collect_inputs(self, store: StoreStrategy, urls: List[str]) -> Outcome[List[str]]:
        """Direct asset URLs for each input; HTML pages are resolved in place."""
        allowed = store.allowlist()
        inputs: List[str] = []
        warnings: List[str] = []
        for u in urls:
            try:
                assert_allowed_url(u, allowed)
                if is_image_or_pdf_url(u):
                    inputs.append(u)
                    continue
                res = self.fetcher.fetch(u, self.html_policy, allowed_hosts=allowed)
                if res.is_html():
                    found = self.resolver.assets_from_html(store, res.text, u)
                    warnings.extend(found.warnings)
                    if found.value:
                        inputs.extend(found.value)
                    else:
                        warnings.append(f"Could not resolve page to a direct asset URL: {u}")
                elif res.is_pdf() or res.content_type.lower().startswith("image/"):
                    inputs.append(u)
                else:
                    warnings.append(f"Unsupported URL type (not html/image/pdf): {u} ({res.content_type})")
            except PipelineCancelled:
                raise
            except FlyerError as exc:
                warnings.append(f"resolve failed: {u} :: {exc}")
        return Outcome.of(uniq(inputs), warnings)

    def _load_asset(self, store: StoreStrategy, url: str) -> FetchedResource:
        return self.fetcher.fetch(url, self.asset_policy, allowed_hosts=store.allowlist())

    def build_pages(self, store: StoreStrategy, inputs: List[str], speculative: Set[str]) -> Outcome[List[PageBitmap]]:
        """Stitch tile grids, then fetch and normalize every remaining input.

        Speculative URLs are only ever fetched as part of a grid.
        """
        pages: List[PageBitmap] = []
        warnings: List[str] = []
        stitched: Set[str] = set()

        for group in group_tiles(inputs) if store.stitches_tile_grids else []:
            try:
                bitmap = compose_tiles(group.tiles, lambda url: self._load_asset(store, url).content)
            except PipelineCancelled:
                raise
            except Exception as exc:
                warnings.append(f"Tile composite failed: {group.key} :: {exc}")
                continue
            if bitmap is not None:
                pages.append(bitmap)
                stitched.update(t.url for t in group.tiles)
            elif any(t.url not in speculative for t in group.tiles):
                warnings.append(f"Tile composite failed (not enough usable tiles): {group.key}")

        for url in inputs:
            if url in stitched or url in speculative:
                continue
            try:
                res = self._load_asset(store, url)
                out = normalize_asset(res)
            except PipelineCancelled:
                raise
            except Exception as exc:
                warnings.append(f"fetch/normalize failed: {url} :: {exc}")
                continue
            warnings.extend(out.warnings)
            pages.extend(out.value)

        return Outcome.of([replace(p, page_index=i) for i, p in enumerate(pages)], warnings)

    # -- entry points ---------------------------------------------------------

    def extract_from_urls(self, request: ExtractRequest) -> ExtractResponse:
        started = time.perf_counter()
        store = get_strategy(request.store_id)
        if not request.source_urls:
            raise RequestValidationError("urls is required (string[])")
        warnings: List[str] = []
        LOG.info(
            "Extract request: store=%s urls=%d mode=%s maxTiles=%d",
            store.store_id.value,
            len(request.source_urls),
            request.mode.value,
            request.max_tiles,
        )

        collected = self.collect_inputs(store, request.source_urls)
        warnings.extend(collected.warnings)
        inputs = list(collected.value)
        if not inputs:
            return self._exhausted(started, warnings, "No processable image/PDF was found in the input URLs")

        speculative: Set[str] = set()
        if store.stitches_tile_grids:
            for u in list(inputs):
                for extra in expand_tile_urls(u, next_page=store.speculative_next_page) or []:
                    if extra not in inputs:
                        inputs.append(extra)
                        speculative.add(extra)

        prepared = store.prepare_inputs(inputs)
        warnings.extend(prepared.warnings)
        inputs = prepared.value
        if not inputs:
            return self._exhausted(started, warnings, "No processable image/PDF was found in the input URLs")

        self.fetcher.check_cancelled()
        built = self.build_pages(store, inputs, speculative)
        warnings.extend(built.warnings)
        pages = built.value
        if not pages:
            return self._exhausted(started, warnings, "No page images could be prepared")

        response = self._extract_pages(started, pages, request.mode, request.max_tiles, warnings)
        response.meta.update(storeId=store.store_id.value, inputUrls=inputs)
        return response

    def extract_from_upload(
        self,
        data: bytes,
        *,
        filename: str,
        content_type: str = "",
        mode: ExtractMode = ExtractMode.ALL,
        max_tiles: Optional[int] = None,
    ) -> ExtractResponse:
        """Run normalization, tiling and extraction on a local PDF or image."""
        started = time.perf_counter()
        if not data:
            raise RequestValidationError("file is empty")
        if len(data) > ASSET_POLICY.max_bytes:
            raise RequestValidationError(f"file too large: {len(data)} bytes (max {ASSET_POLICY.max_bytes})")
        warnings: List[str] = []
        out = normalize_asset(FetchedResource(url=filename, content=data, content_type=content_type))
        warnings.extend(out.warnings)
        if not out.value:
            return self._exhausted(started, warnings, "No page images could be prepared")
        response = self._extract_pages(started, out.value, mode, max_tiles or self.settings.max_tiles, warnings)
        response.meta.update(filename=filename)
        return response

    def _extract_pages(
        self,
        started: float,
        pages: List[PageBitmap],
        mode: ExtractMode,
        max_tiles: int,
        warnings: List[str],
    ) -> ExtractResponse:
        tiles = tile_pages(
            pages,
            max_tiles=max_tiles,
            tile_size=self.settings.tile_size,
            overlap=self.settings.tile_overlap,
        )
        if not tiles:
            return self._exhausted(started, warnings, "No tiles could be generated", pages=len(pages))

        result = self.extractor.run(tiles, mode)
        warnings.extend(result.warnings)
        meta = self._meta(started, len(pages), len(tiles))
        LOG.info("Extraction finished: %d item(s), meta=%s", len(result.value), meta)
        return ExtractResponse(items=list(result.value), warnings=warnings, meta=meta)

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..config import PipelineSettings, VisionConfig, load_pipeline_settings, load_vision
from ..errors import FetchError, RequestValidationError, UrlNotAllowedError
from ..logging import get_logger
from ..pipeline.discover import discover_flyer_candidates
from ..pipeline.extract import VisionExtractor
from ..pipeline.flow import FlyerPipeline, build_request
from ..pipeline.resolve import PageResolver
from ..pipeline.vision import VisionClient
from ..stores import get_strategy
from ..web.fetch import HttpFetcher
from ..web.render import PlaywrightRenderer

LOG = get_logger("server")


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise RequestValidationError("invalid json")
    if not isinstance(body, dict):
        raise RequestValidationError("invalid json")
    return body


def create_app(
    *,
    dotenv_dir: Optional[str] = None,
    allow_origins: Optional[List[str]] = None,
    fetcher_factory: Callable[[], HttpFetcher] = HttpFetcher,
    vision_factory: Callable[[VisionConfig], VisionExtractor] = VisionClient,
    renderer_factory: Optional[Callable[[], PlaywrightRenderer]] = PlaywrightRenderer,
    vision_config: Optional[VisionConfig] = None,
    settings: Optional[PipelineSettings] = None,
) -> Starlette:
    """Create a Starlette app exposing discovery, resolution and extraction.

    Every request gets its own fetcher; blocking work runs in the threadpool.
    """
    vision_cfg = vision_config or load_vision(dotenv_dir)
    pipeline_settings = settings or load_pipeline_settings(dotenv_dir)
    LOG.info(
        "Flyer API configured: model=%s vision_key=%s render=%s max_tiles=%d",
        vision_cfg.model_name,
        "set" if vision_cfg.api_key else "missing",
        pipeline_settings.render_enabled,
        pipeline_settings.max_tiles,
    )

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "model": vision_cfg.model_name})

    async def discover(request: Request) -> JSONResponse:
        try:
            body = await _json_body(request)
            store = get_strategy(body.get("storeId"))
        except RequestValidationError as exc:
            return _error(str(exc), 400)

        def run() -> Dict[str, Any]:
            fetcher = fetcher_factory()
            try:
                return discover_flyer_candidates(store.store_id, fetcher).as_dict()
            finally:
                fetcher.close()

        try:
            payload = await run_in_threadpool(run)
        except (FetchError, UrlNotAllowedError) as exc:
            LOG.error(f"Discovery failed for {store.store_id.value}: {exc}")
            return _error(str(exc), 502)
        return JSONResponse(payload)

    async def resolve(request: Request) -> JSONResponse:
        try:
            body = await _json_body(request)
            store = get_strategy(body.get("storeId"))
            pages = body.get("pages")
            if pages is None and body.get("pageUrl"):
                pages = [body.get("pageUrl")]
            if not isinstance(pages, list) or not pages or not all(isinstance(p, str) for p in pages):
                raise RequestValidationError("storeId & pages/pageUrl are required")
        except RequestValidationError as exc:
            return _error(str(exc), 400)

        def run() -> Dict[str, Any]:
            fetcher = fetcher_factory()
            renderer = renderer_factory() if (renderer_factory and pipeline_settings.render_enabled) else None
            try:
                return store.resolve(pages, PageResolver(fetcher, renderer)).as_dict()
            finally:
                fetcher.close()

        try:
            payload = await run_in_threadpool(run)
        except RequestValidationError as exc:
            return _error(str(exc), 400)
        return JSONResponse(payload)

    async def extract_url(request: Request) -> JSONResponse:
        try:
            body = await _json_body(request)
            req = build_request(body, default_max_tiles=pipeline_settings.max_tiles)
        except RequestValidationError as exc:
            return _error(str(exc), 400)
        if not vision_cfg.api_key:
            return _error("vision API key is missing (set VISION_API_KEY or GEMINI_API_KEY)", 500)

        def run() -> Dict[str, Any]:
            fetcher = fetcher_factory()
            vision = vision_factory(vision_cfg)
            try:
                pipeline = FlyerPipeline(
                    fetcher,
                    vision,
                    model_name=vision_cfg.model_name,
                    settings=pipeline_settings,
                    max_output_tokens=vision_cfg.max_output_tokens,
                    temperature=vision_cfg.temperature,
                )
                return pipeline.extract_from_urls(req).as_dict()
            finally:
                close = getattr(vision, "close", None)
                if callable(close):
                    close()
                fetcher.close()

        payload = await run_in_threadpool(run)
        return JSONResponse(payload)

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/flyer/discover", discover, methods=["POST"]),
        Route("/api/flyer/resolve", resolve, methods=["POST"]),
        Route("/api/flyer/extract-url", extract_url, methods=["POST"]),
    ]

    app = Starlette(debug=False, routes=routes)

    origins = allow_origins or ["http://localhost:3000", "http://127.0.0.1:3000"]
    if "*" in origins:
        cors_allow_origins = ["*"]
    else:
        cors_allow_origins = origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


__all__ = ["create_app"]

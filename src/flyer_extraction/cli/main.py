from __future__ import annotations

import argparse
import json
import mimetypes
import os
import sys
from typing import Any, Dict, Sequence

from ..config import load_pipeline_settings, load_vision
from ..domain.models import ExtractMode
from ..errors import FetchError, PipelineCancelled, RequestValidationError, UrlNotAllowedError
from ..logging import configure_logging, get_logger
from ..pipeline.discover import discover_flyer_candidates
from ..pipeline.flow import FlyerPipeline, build_request
from ..pipeline.resolve import PageResolver
from ..pipeline.vision import VisionClient
from ..stores import get_strategy
from ..web.fetch import HttpFetcher
from ..web.render import PlaywrightRenderer

LOG = get_logger("cli-main")


def _print_json(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _handle_discover(ns: argparse.Namespace) -> int:
    fetcher = HttpFetcher()
    try:
        result = discover_flyer_candidates(ns.store, fetcher)
    except (FetchError, UrlNotAllowedError) as exc:
        LOG.error(f"Discovery failed: {exc}")
        return 1
    finally:
        fetcher.close()
    _print_json(result.as_dict())
    return 0


def _handle_resolve(ns: argparse.Namespace) -> int:
    settings = load_pipeline_settings(os.getcwd())
    store = get_strategy(ns.store)
    fetcher = HttpFetcher()
    renderer = PlaywrightRenderer() if (settings.render_enabled and not ns.no_render) else None
    try:
        result = store.resolve(ns.pages, PageResolver(fetcher, renderer))
    finally:
        fetcher.close()
    _print_json(result.as_dict())
    return 0


def _make_pipeline(fetcher: HttpFetcher):
    vision_cfg = load_vision(os.getcwd())
    if not vision_cfg.api_key:
        LOG.error("No vision API key. Set VISION_API_KEY or GEMINI_API_KEY in env/.env.")
        return None, None
    client = VisionClient(vision_cfg)
    pipeline = FlyerPipeline(
        fetcher,
        client,
        model_name=vision_cfg.model_name,
        settings=load_pipeline_settings(os.getcwd()),
        max_output_tokens=vision_cfg.max_output_tokens,
        temperature=vision_cfg.temperature,
    )
    return pipeline, client


def _handle_extract_url(ns: argparse.Namespace) -> int:
    payload: Dict[str, Any] = {"storeId": ns.store, "urls": ns.urls, "mode": ns.mode}
    if ns.max_tiles is not None:
        payload["maxTiles"] = ns.max_tiles
    req = build_request(payload, default_max_tiles=load_pipeline_settings(os.getcwd()).max_tiles)
    fetcher = HttpFetcher()
    pipeline, client = _make_pipeline(fetcher)
    if pipeline is None:
        fetcher.close()
        return 2
    try:
        response = pipeline.extract_from_urls(req)
    finally:
        client.close()
        fetcher.close()
    _print_json(response.as_dict())
    return 0 if response.items else 1


def _handle_extract_file(ns: argparse.Namespace) -> int:
    path = os.path.abspath(os.path.expanduser(ns.source))
    if not os.path.isfile(path):
        LOG.error(f"Source file not found: {path}")
        return 2
    with open(path, "rb") as fh:
        data = fh.read()
    content_type = mimetypes.guess_type(path)[0] or ""
    fetcher = HttpFetcher()
    pipeline, client = _make_pipeline(fetcher)
    if pipeline is None:
        fetcher.close()
        return 2
    try:
        response = pipeline.extract_from_upload(
            data,
            filename=os.path.basename(path),
            content_type=content_type,
            mode=ExtractMode.parse(ns.mode),
            max_tiles=ns.max_tiles,
        )
    finally:
        client.close()
        fetcher.close()
    _print_json(response.as_dict())
    return 0 if response.items else 1


def _handle_serve(ns: argparse.Namespace) -> int:
    from ..server import create_app
    import uvicorn

    allow_origins = ns.allow_origins
    if allow_origins and len(allow_origins) == 1 and allow_origins[0] == "*":
        allow_origins = ["*"]

    configure_logging(ns.log_level, force=True)
    app = create_app(dotenv_dir=os.getcwd(), allow_origins=allow_origins)
    uvicorn.run(
        app,
        host=ns.host,
        port=ns.port,
        reload=ns.reload,
        log_level=ns.log_level,
    )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="flyer-extract",
        description="Discover, resolve and extract items from grocery-store flyers.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    modes = [m.value for m in ExtractMode]

    discover = subparsers.add_parser("discover", help="List current flyer candidates for a store.")
    discover.add_argument("--store", required=True, help="Store id, e.g. aoba_oshima")
    discover.set_defaults(handler=_handle_discover)

    resolve = subparsers.add_parser("resolve", help="Resolve flyer viewer pages into image/PDF URLs.")
    resolve.add_argument("--store", required=True)
    resolve.add_argument("--page", action="append", dest="pages", required=True, help="Page URL (repeatable)")
    resolve.add_argument("--no-render", action="store_true", help="Never escalate to headless rendering")
    resolve.set_defaults(handler=_handle_resolve)

    extract_url = subparsers.add_parser("extract-url", help="Extract priced items from flyer URLs.")
    extract_url.add_argument("--store", required=True)
    extract_url.add_argument("--url", action="append", dest="urls", required=True, help="Image/PDF/page URL (repeatable)")
    extract_url.add_argument("--mode", choices=modes, default=ExtractMode.ALL.value)
    extract_url.add_argument("--max-tiles", type=int, help="Tile budget (default FLYER_MAX_TILES or 200)")
    extract_url.set_defaults(handler=_handle_extract_url)

    extract_file = subparsers.add_parser("extract-file", help="Extract priced items from a local PDF or image.")
    extract_file.add_argument("--source", required=True)
    extract_file.add_argument("--mode", choices=modes, default=ExtractMode.ALL.value)
    extract_file.add_argument("--max-tiles", type=int)
    extract_file.set_defaults(handler=_handle_extract_file)

    serve = subparsers.add_parser("serve", help="Run the flyer JSON API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload (development only)")
    serve.add_argument("--log-level", default="info")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    serve.set_defaults(handler=_handle_serve)

    args = parser.parse_args(provided)
    try:
        code = args.handler(args)
    except RequestValidationError as exc:
        LOG.error(f"Invalid request: {exc}")
        code = 2
    except (KeyboardInterrupt, PipelineCancelled):
        LOG.info("Interrupted; no result emitted.")
        code = 1
    LOG.info(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())

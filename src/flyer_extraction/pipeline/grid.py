"""Reassemble flyer pages that the hosting platform splits into quadrant tiles.

Two filename conventions are recognised:

- ``<page>_<size>_<tileIndex>.<ext>`` with ``tileIndex`` 0..3, where
  ``row = tileIndex // 2`` and ``col = tileIndex % 2``;
- ``<base>_<row><col>.<ext>`` with single-digit row and column.

Tiles sharing origin, directory and (page, size) or base name form one grid.
"""

from __future__ import annotations

import io
import re
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from PIL import Image

from ..domain.models import GridTile, PageBitmap, TileGroup
from ..errors import PipelineCancelled
from ..logging import get_logger

LOG = get_logger("grid")

_INDEXED_RE = re.compile(r"^(\d+)_(\d+)_(\d+)\.(jpg|jpeg|png|webp)$", re.IGNORECASE)
_ROWCOL_RE = re.compile(r"^(.*)_([0-9])([0-9])\.(jpg|jpeg|png|webp)$", re.IGNORECASE)

EXPANDED_EXTENSION = "jpg"


def _split_path(url: str) -> Optional[Tuple[str, str, str]]:
    """Return (origin, directory, basename) or None for a non-absolute URL."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        return None
    path = parts.path
    basename = path[path.rfind("/") + 1 :]
    directory = path[: len(path) - len(basename)]
    return f"{parts.scheme}://{parts.netloc}", directory, basename


def parse_tile_url(url: str) -> Optional[Tuple[str, GridTile]]:
    """Return (group key, tile) when url follows a quadrant naming convention."""
    split = _split_path(url)
    if split is None:
        return None
    origin, directory, basename = split

    m = _INDEXED_RE.match(basename)
    if m:
        page, size, index = int(m.group(1)), int(m.group(2)), int(m.group(3))
        if index > 3:
            return None
        key = f"{origin}{directory}{page}_{size}"
        return key, GridTile(url=url, row=index // 2, col=index % 2, page=page)

    m = _ROWCOL_RE.match(basename)
    if m:
        key = f"{origin}{directory}{m.group(1)}"
        return key, GridTile(url=url, row=int(m.group(2)), col=int(m.group(3)), page=None)
    return None


def group_tiles(urls: Sequence[str]) -> List[TileGroup]:
    """Group tile URLs into grids of at least two members.

    Groups are ordered by page ascending, larger groups first within a page.
    """
    groups: Dict[str, List[GridTile]] = OrderedDict()
    seen = set()
    for u in urls:
        if u in seen:
            continue
        seen.add(u)
        parsed = parse_tile_url(u)
        if parsed is None:
            continue
        key, tile = parsed
        groups.setdefault(key, []).append(tile)

    usable = [TileGroup(key=k, tiles=tuple(v)) for k, v in groups.items() if len(v) >= 2]
    usable.sort(key=lambda g: len(g.tiles), reverse=True)
    usable.sort(key=lambda g: g.tiles[0].page if g.tiles[0].page is not None else -1)
    return usable


def expand_tile_urls(url: str, *, next_page: bool = True) -> Optional[List[str]]:
    """All four quadrant URLs for url's page, and for page + 1 when ``next_page``.

    The page + 1 URLs are a guess from front/back flyer numbering; they may
    not exist. Only the indexed convention can be expanded.
    """
    split = _split_path(url)
    if split is None:
        return None
    origin, directory, basename = split
    m = _INDEXED_RE.match(basename)
    if not m:
        return None
    page, size = int(m.group(1)), int(m.group(2))
    pages = (page, page + 1) if next_page else (page,)
    return [
        f"{origin}{directory}{p}_{size}_{i}.{EXPANDED_EXTENSION}"
        for p in pages
        for i in range(4)
    ]


def compose_tiles(
    tiles: Sequence[GridTile],
    load: Callable[[str], bytes],
    *,
    page_index: int = 0,
) -> Optional[PageBitmap]:
    """Fetch each tile through ``load`` and paste them onto one white canvas.

    Tiles that fail to load or decode are skipped. Returns None when fewer
    than two tiles remain. The first loaded tile's size is the cell size.
    """
    loaded: List[Tuple[GridTile, Image.Image]] = []
    for tile in tiles:
        try:
            data = load(tile.url)
            with Image.open(io.BytesIO(data)) as im:
                im.load()
                rgb = im.convert("RGB")
        except PipelineCancelled:
            raise
        except Exception as exc:
            LOG.debug(f"Skipping tile {tile.url}: {exc}")
            continue
        if not rgb.width or not rgb.height:
            continue
        loaded.append((tile, rgb))

    if len(loaded) < 2:
        LOG.info("Tile grid has %d usable tile(s); not composing", len(loaded))
        return None

    tile_w, tile_h = loaded[0][1].size
    min_row = min(t.row for t, _ in loaded)
    max_row = max(t.row for t, _ in loaded)
    min_col = min(t.col for t, _ in loaded)
    max_col = max(t.col for t, _ in loaded)

    width = (max_col - min_col + 1) * tile_w
    height = (max_row - min_row + 1) * tile_h
    canvas = Image.new("RGB", (width, height), (255, 255, 255))
    for tile, im in loaded:
        canvas.paste(im, ((tile.col - min_col) * tile_w, (tile.row - min_row) * tile_h))

    buf = io.BytesIO()
    canvas.save(buf, format="PNG")
    LOG.info("Composed %d tile(s) into %dx%d page", len(loaded), width, height)
    return PageBitmap(png=buf.getvalue(), page_index=page_index, width=width, height=height)


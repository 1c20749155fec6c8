from __future__ import annotations

import io
from typing import List, Sequence

from PIL import Image

from ..domain.models import ExtractionTile, PageBitmap
from ..logging import get_logger

LOG = get_logger("tiling")

TILE_SIZE = 1024
TILE_OVERLAP = 96


def window_boxes(width: int, height: int, tile_size: int = TILE_SIZE, overlap: int = TILE_OVERLAP):
    """Yield (left, top, w, h) windows in row-major order, clipped to the bitmap."""
    step = max(1, tile_size - overlap)
    for top in range(0, height, step):
        for left in range(0, width, step):
            yield left, top, min(tile_size, width - left), min(tile_size, height - top)


def tile_page(
    page: PageBitmap,
    *,
    tile_size: int = TILE_SIZE,
    overlap: int = TILE_OVERLAP,
    budget: int = 200,
) -> List[ExtractionTile]:
    """Crop ``page`` into overlapping windows, stopping after ``budget`` tiles."""
    tiles: List[ExtractionTile] = []
    if budget <= 0:
        return tiles
    with Image.open(io.BytesIO(page.png)) as im:
        im.load()
        width, height = im.size
        for index, (left, top, w, h) in enumerate(window_boxes(width, height, tile_size, overlap)):
            buf = io.BytesIO()
            im.crop((left, top, left + w, top + h)).save(buf, format="PNG")
            tiles.append(
                ExtractionTile(
                    bitmap=buf.getvalue(),
                    page_index=page.page_index,
                    tile_index_in_page=index,
                    box=(left, top, w, h),
                )
            )
            if len(tiles) >= budget:
                break
    return tiles


def tile_pages(
    pages: Sequence[PageBitmap],
    *,
    max_tiles: int = 200,
    tile_size: int = TILE_SIZE,
    overlap: int = TILE_OVERLAP,
) -> List[ExtractionTile]:
    """Tile pages in order until ``max_tiles`` is reached; later pages may be skipped entirely."""
    tiles: List[ExtractionTile] = []
    for page in pages:
        remaining = max_tiles - len(tiles)
        if remaining <= 0:
            LOG.info("Tile budget %d reached; remaining page(s) not tiled", max_tiles)
            break
        tiles.extend(tile_page(page, tile_size=tile_size, overlap=overlap, budget=remaining))
    LOG.info("Tiled %d page(s) into %d tile(s)", len(pages), len(tiles))
    return tiles

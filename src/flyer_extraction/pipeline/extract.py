"""Sequential per-tile extraction with continue-on-failure and item dedup."""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from ..domain.models import ExtractionTile, ExtractMode, FlyerItem, Outcome
from ..domain.normalize import make_dedup_key, normalize_flyer_item
from ..errors import PipelineCancelled
from ..logging import get_logger
from .prompts import build_prompt
from .vision import parse_model_json

LOG = get_logger("extract")

INGREDIENTS_CAP = 30
EXCERPT_CHARS = 200


class VisionExtractor(Protocol):
    def extract(
        self,
        png: bytes,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        json_only: bool = True,
    ) -> str: ...


def items_from_response(parsed: Any) -> List[FlyerItem]:
    """Normalize the ``items`` list of a parsed response; invalid entries are dropped."""
    raw_items = parsed.get("items") if isinstance(parsed, dict) else None
    if not isinstance(raw_items, list):
        return []
    out = []
    for raw in raw_items:
        item = normalize_flyer_item(raw)
        if item is not None:
            out.append(item)
    return out


def dedup_items(items: Iterable[FlyerItem]) -> List[FlyerItem]:
    """Collapse items with equal dedup keys.

    A later item replaces an earlier one but keeps the earlier one's position.
    """
    merged: Dict[str, FlyerItem] = {}
    for item in items:
        merged[make_dedup_key(item)] = item
    return list(merged.values())


class BatchExtractor:
    """Run the vision capability over tiles one at a time.

    A failing tile becomes one warning and the loop moves on. Only
    cancellation stops the batch.
    """

    def __init__(
        self,
        vision: VisionExtractor,
        *,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.vision = vision
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.cancel = cancel

    def _check_cancelled(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise PipelineCancelled("cancelled by caller")

    def extract_tile(self, tile: ExtractionTile, index: int, count: int, mode: ExtractMode) -> List[FlyerItem]:
        prompt = build_prompt(mode, index, count)
        text = self.vision.extract(
            tile.bitmap,
            prompt,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            json_only=True,
        )
        return items_from_response(parse_model_json(text))

    def run(self, tiles: Sequence[ExtractionTile], mode: ExtractMode = ExtractMode.ALL) -> Outcome[List[FlyerItem]]:
        warnings: List[str] = []
        collected: List[FlyerItem] = []
        count = len(tiles)
        t0 = time.perf_counter()
        for i, tile in enumerate(tiles, start=1):
            self._check_cancelled()
            try:
                found = self.extract_tile(tile, i, count, mode)
            except PipelineCancelled:
                raise
            except Exception as exc:
                excerpt = str(exc)[:EXCERPT_CHARS]
                LOG.warning(f"Tile {i}/{count} failed: {excerpt}")
                warnings.append(f"Extraction failed (tile {i}/{count}): {excerpt}")
                continue
            LOG.debug(f"Tile {i}/{count}: {len(found)} item(s)")
            collected.extend(found)

        items = dedup_items(collected)
        if mode is ExtractMode.INGREDIENTS:
            items = items[:INGREDIENTS_CAP]
        LOG.info(
            "Extracted %d item(s) (%d before dedup) from %d tile(s) in %.1fs; %d tile failure(s)",
            len(items),
            len(collected),
            count,
            time.perf_counter() - t0,
            len(warnings),
        )
        return Outcome.of(items, warnings)

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")


class StoreId(str, Enum):
    AOBA_OSHIMA = "aoba_oshima"
    LIFE_KAWASAKI_OSHIMA = "life_kawasaki_oshima"
    ITOYOKADO_KAWASAKI = "itoyokado_kawasaki"

    @classmethod
    def parse(cls, value: Any) -> Optional["StoreId"]:
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip())
            except ValueError:
                return None
        return None


class CandidateKind(str, Enum):
    IMAGE = "image"
    PDF = "pdf"
    PAGE = "page"


class CandidateSource(str, Enum):
    FIXED = "fixed"
    SCRAPE = "scrape"
    RESOLVE = "resolve"
    RESOLVE_RENDERED = "resolve_rendered"


class ExtractMode(str, Enum):
    ALL = "all"
    INGREDIENTS = "ingredients"

    @classmethod
    def parse(cls, value: Any) -> "ExtractMode":
        return cls.INGREDIENTS if value == cls.INGREDIENTS.value or value is cls.INGREDIENTS else cls.ALL


@dataclass(frozen=True)
class Candidate:
    kind: CandidateKind
    url: str  # absolute, scheme-qualified
    source: CandidateSource
    title: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"kind": self.kind.value, "url": self.url, "source": self.source.value}
        if self.title:
            out["title"] = self.title
        return out


@dataclass(frozen=True)
class DiscoverResult:
    store_id: StoreId
    candidates: Tuple[Candidate, ...] = ()
    warnings: Tuple[str, ...] = ()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "storeId": self.store_id.value,
            "candidates": [c.as_dict() for c in self.candidates],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """A stage result plus the diagnostics it produced."""

    value: T
    warnings: Tuple[str, ...] = ()

    @classmethod
    def of(cls, value: T, warnings: Optional[List[str]] = None) -> "Outcome[T]":
        return cls(value=value, warnings=tuple(warnings or ()))


@dataclass(frozen=True)
class GridTile:
    url: str
    row: int
    col: int
    page: Optional[int] = None


@dataclass(frozen=True)
class TileGroup:
    key: str
    tiles: Tuple[GridTile, ...]


@dataclass(frozen=True)
class PageBitmap:
    png: bytes
    page_index: int
    width: int
    height: int


@dataclass(frozen=True)
class ExtractionTile:
    bitmap: bytes  # PNG
    page_index: int
    tile_index_in_page: int
    box: Tuple[int, int, int, int] = (0, 0, 0, 0)  # left, top, width, height


@dataclass(frozen=True)
class FlyerItem:
    category: str
    name: str
    price_yen: int
    unit: Optional[str] = None
    notes: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"category": self.category, "name": self.name, "priceYen": self.price_yen}
        if self.unit:
            out["unit"] = self.unit
        if self.notes:
            out["notes"] = self.notes
        return out


@dataclass
class ExtractRequest:
    store_id: StoreId
    source_urls: List[str]
    mode: ExtractMode = ExtractMode.ALL
    max_tiles: int = 200


@dataclass
class ExtractResponse:
    items: List[FlyerItem] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.items)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "items": [it.as_dict() for it in self.items],
            "count": self.count,
            "meta": dict(self.meta),
            "warnings": list(self.warnings),
        }


__all__ = [
    "StoreId",
    "CandidateKind",
    "CandidateSource",
    "ExtractMode",
    "Candidate",
    "DiscoverResult",
    "Outcome",
    "GridTile",
    "TileGroup",
    "PageBitmap",
    "ExtractionTile",
    "FlyerItem",
    "ExtractRequest",
    "ExtractResponse",
]

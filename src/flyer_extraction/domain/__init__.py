"""Domain types and pure normalization helpers for flyer extraction."""

from .models import (
    Candidate,
    CandidateKind,
    CandidateSource,
    DiscoverResult,
    ExtractionTile,
    ExtractMode,
    ExtractRequest,
    ExtractResponse,
    FlyerItem,
    GridTile,
    Outcome,
    PageBitmap,
    StoreId,
    TileGroup,
)

__all__ = [
    "Candidate",
    "CandidateKind",
    "CandidateSource",
    "DiscoverResult",
    "ExtractionTile",
    "ExtractMode",
    "ExtractRequest",
    "ExtractResponse",
    "FlyerItem",
    "GridTile",
    "Outcome",
    "PageBitmap",
    "StoreId",
    "TileGroup",
]

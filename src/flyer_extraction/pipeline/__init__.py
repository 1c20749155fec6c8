"""Pipeline stages from discovery to de-duplicated flyer items."""

from .discover import discover_flyer_candidates
from .extract import BatchExtractor, dedup_items
from .flow import FlyerPipeline, build_request
from .resolve import PageResolver, ResolveResult
from .vision import VisionClient, parse_model_json

__all__ = [
    "discover_flyer_candidates",
    "BatchExtractor",
    "dedup_items",
    "FlyerPipeline",
    "build_request",
    "PageResolver",
    "ResolveResult",
    "VisionClient",
    "parse_model_json",
]

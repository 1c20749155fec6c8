"""
Flyer extraction: discover, resolve and read grocery-store promotional flyers.

Stages: store-specific candidate discovery, page-to-asset resolution,
tile-grid stitching, PDF/image normalization, tiling, and per-tile
vision extraction with de-duplication.
"""

__version__ = "0.1.0"

__all__ = [
    "config",
    "errors",
    "logging",
]

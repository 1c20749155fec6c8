"""Heuristic ranking of image URLs scraped from flyer pages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Tuple

from .html import looks_like_image_url

DENYLIST: Tuple[str, ...] = (
    "thumb",
    "thumbnail",
    "favicon",
    "logo",
    "icon",
    "sprite",
    "banner",
    "btn",
    "button",
    "common",
    "loading",
    "spinner",
    "pixel",
    "tracking",
    "analytics",
    "thumb-size=m",
    "content-width=310",
    "content-height=310",
)

THUMB_MARKERS: Tuple[str, ...] = (
    "thumb",
    "thumbnail",
    "thumb-size=m",
    "content-width=310",
    "content-height=310",
)


def looks_bad(url: str) -> bool:
    """True for thumbnails, icons, buttons, banners and tracking pixels."""
    lowered = url.lower()
    return any(part in lowered for part in DENYLIST)


def looks_like_thumb(url: str) -> bool:
    lowered = url.lower()
    return any(part in lowered for part in THUMB_MARKERS)


@dataclass(frozen=True)
class ScoringRules:
    """Per-platform weights for picking the main flyer image.

    ``full_size_markers`` are host/path fragments of a platform's full-size
    CDN; ``platform_markers`` only prove the URL belongs to the platform.
    """

    full_size_markers: Tuple[str, ...] = ()
    platform_markers: Tuple[str, ...] = ()
    full_size_weight: int = 90
    platform_weight: int = 30
    deny_weight: int = 120
    extension_weight: int = 20

    def score(self, url: str) -> int:
        s = url.lower()
        score = 0
        if any(m in s for m in self.full_size_markers):
            score += self.full_size_weight
        if any(m in s for m in self.platform_markers):
            score += self.platform_weight
        if looks_bad(s):
            score -= self.deny_weight
        if looks_like_image_url(url):
            score += self.extension_weight
        return score

    def rank(self, urls: Iterable[str]) -> List[str]:
        """Sort by descending score; ties keep discovery order."""
        return sorted(urls, key=self.score, reverse=True)

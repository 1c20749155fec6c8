"""ライフ 川崎大島店: leaflet cards from the tokubai widget embedded in the store page."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlsplit, urlunsplit

from ..domain.models import Candidate, CandidateKind, CandidateSource, DiscoverResult, Outcome, StoreId
from ..domain.normalize import parse_card_date
from ..logging import get_logger
from ..web.fetch import HttpFetcher
from ..web.html import extract_attr_urls, extract_css_urls, extract_raw_urls, parse_html, to_abs_url, uniq
from ..web.scoring import ScoringRules
from .base import StoreStrategy, uniq_by_url

LOG = get_logger("store-life")

LEAFLET_HOST = "image.tokubai.co.jp"
LEAFLET_PATH = "/images/bargain_office_leaflets/"
MAX_LATEST = 10
MAX_FALLBACK = 30

_CARD_SELECTOR = 'a[class*="leaflet"], a[href*="/leaflet_widget/click"]'
_DURATION_SELECTOR = 'div[class*="duration"]'
_WIDGET_RE = re.compile(r"""https?://widgets\.tokubai\.co\.jp/\d+/leaflet_widget[^"'<>\\\s]*""", re.IGNORECASE)
_SIZED_SEGMENT_RE = re.compile(r"/images/bargain_office_leaflets/[^/]+/")


def to_tokubai_high_res(url: str) -> str:
    """Swap the pre-sized path segment for the original-resolution one."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if "tokubai.co.jp" not in (parts.hostname or ""):
        return url
    if LEAFLET_PATH not in parts.path:
        return url
    path = _SIZED_SEGMENT_RE.sub(LEAFLET_PATH + "o=true/", parts.path, count=1)
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def is_leaflet_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.hostname == LEAFLET_HOST and LEAFLET_PATH in parts.path


def extract_widget_urls(html: str, base_url: str) -> List[str]:
    out = []
    for raw in _WIDGET_RE.findall(html):
        abs_url = to_abs_url(raw, base_url)
        if abs_url:
            out.append(abs_url)
    return uniq(out)


@dataclass
class LeafletPick:
    urls: List[str] = field(default_factory=list)
    total_cards: int = 0
    parsed_cards: int = 0
    with_dates: int = 0
    latest_count: int = 0

    def counters(self) -> Dict[str, int]:
        return {
            "totalCards": self.total_cards,
            "parsedCards": self.parsed_cards,
            "withDates": self.with_dates,
            "latestCount": self.latest_count,
        }


def pick_latest_leaflets(html: str, base_url: str, *, today: Optional[date] = None) -> LeafletPick:
    """Pick every card whose start date equals the most recent one.

    Ties are all kept. Cards missing an href or an image are not counted as parsed.
    """
    cards = parse_html(html).select(_CARD_SELECTOR)
    pick = LeafletPick(total_cards=len(cards))
    dated = []
    for card in cards:
        img_tag = card.find("img", src=True)
        href = to_abs_url(card.get("href") or "", base_url)
        img = to_abs_url(img_tag["src"], base_url) if img_tag else None
        if not href or not img:
            continue
        pick.parsed_cards += 1
        duration = card.select_one(_DURATION_SELECTOR)
        start = parse_card_date((duration or card).get_text(" "), today=today)
        if start is not None:
            dated.append((start, img))

    pick.with_dates = len(dated)
    if not dated:
        return pick
    latest = max(d for d, _ in dated)
    chosen = [img for d, img in dated if d == latest]
    pick.latest_count = len(chosen)
    pick.urls = [to_tokubai_high_res(u) for u in chosen]
    return pick


def discover_from_html(html: str, base_url: str, *, today: Optional[date] = None) -> Outcome[List[Candidate]]:
    """Card selection first, then widget pages and raw leaflet images."""
    pick = pick_latest_leaflets(html, base_url, today=today)
    LOG.debug(f"Leaflet cards: {pick.counters()}")
    if pick.urls:
        cands = [
            Candidate(CandidateKind.IMAGE, u, CandidateSource.SCRAPE, f"最新チラシ画像 {i + 1}")
            for i, u in enumerate(u for u in pick.urls if is_leaflet_url(u))
        ]
        if cands:
            return Outcome.of(uniq_by_url(cands)[:MAX_LATEST])

    widgets = extract_widget_urls(html, base_url)
    raw = uniq([*extract_attr_urls(html, base_url), *extract_raw_urls(html), *extract_css_urls(html, base_url)])
    images = uniq(to_tokubai_high_res(u) for u in raw if is_leaflet_url(u))
    if widgets or images:
        cands = [
            Candidate(CandidateKind.IMAGE, u, CandidateSource.SCRAPE, f"チラシ画像候補 {i + 1}")
            for i, u in enumerate(images)
        ]
        cands += [
            Candidate(CandidateKind.PAGE, u, CandidateSource.SCRAPE, f"チラシウィジェット {i + 1}")
            for i, u in enumerate(widgets)
        ]
        return Outcome.of(uniq_by_url(cands)[:MAX_FALLBACK])

    has_leaflet_link = "/leaflet_widget/click" in html
    tokubai_imgs = len(re.findall(r"image\.tokubai\.co\.jp/images/bargain_office_leaflets", html, re.IGNORECASE))
    c = pick.counters()
    warning = (
        "Could not identify the latest leaflet from the store page: "
        f"totalCards={c['totalCards']}, parsedCards={c['parsedCards']}, withDates={c['withDates']}, "
        f"latestCount={c['latestCount']}, hasLeafletLink={str(has_leaflet_link).lower()}, "
        f"tokubaiImgs={tokubai_imgs}, widgetUrls={len(widgets)}"
    )
    return Outcome.of([], [warning])


class LifeStrategy(StoreStrategy):
    store_id = StoreId.LIFE_KAWASAKI_OSHIMA
    label = "ライフ 川崎大島店"
    home_url = "https://store.lifecorp.jp/detail/east624/"
    allowed_hosts = (
        "store.lifecorp.jp",
        "meocloud-image.s3.ap-northeast-1.amazonaws.com",
        LEAFLET_HOST,
    )
    scoring = ScoringRules(
        full_size_markers=("/bargain_office_leaflets/o=true/", "meocloud-image"),
        platform_markers=("tokubai.co.jp", "lifecorp.jp"),
    )

    def discover(self, fetcher: HttpFetcher) -> DiscoverResult:
        html = self.fetch_home(fetcher)
        found = discover_from_html(html, self.home_url)
        LOG.info("Discovered %d candidate(s) for %s", len(found.value), self.store_id.value)
        return DiscoverResult(store_id=self.store_id, candidates=tuple(found.value), warnings=found.warnings)

    def postprocess_asset_url(self, url: str) -> str:
        return to_tokubai_high_res(url)

    def prepare_inputs(self, urls: Sequence[str]) -> Outcome[List[str]]:
        rewritten = uniq(to_tokubai_high_res(u) for u in urls)
        kept = [u for u in rewritten if is_leaflet_url(u)]
        warnings = []
        dropped = len(rewritten) - len(kept)
        if dropped:
            warnings.append(f"Skipped {dropped} URL(s) that are not leaflet images")
        return Outcome.of(kept, warnings)

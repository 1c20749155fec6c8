"""イトーヨーカドー 川崎店: flyers hosted in a Shufoo viewer iframe.

The store page links to a Shufoo detail viewer ``/t/asp_iframe/shop/<shop>/<flyer>``
or only to the thumbnail list ``/t/asp_iframe/shop/<shop>/list``. The viewer
builds its DOM in script and serves each flyer page as four quadrant tiles.
"""

from __future__ import annotations

import re
from datetime import date
from typing import List, Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ..domain.models import Candidate, CandidateKind, CandidateSource, DiscoverResult, Outcome, StoreId
from ..domain.normalize import parse_card_date
from ..errors import FetchError, PipelineCancelled, UrlNotAllowedError
from ..logging import get_logger
from ..web.fetch import HTML_POLICY, HttpFetcher
from ..web.html import (
    decode_loose,
    extract_attr_urls,
    extract_css_urls,
    extract_meta_images,
    extract_raw_urls,
    looks_like_image_url,
    looks_like_pdf_url,
    parse_html,
    to_abs_url,
    uniq,
)
from ..web.render import RenderResult
from ..web.scoring import ScoringRules, looks_bad, looks_like_thumb
from .base import StoreStrategy, sort_by_kind, uniq_by_url

LOG = get_logger("store-itoyokado")

SHUFOO_ORIGIN = "https://asp.shufoo.net"
VIEWER_QUERY = (
    "lp-chirashi=true&lp-timeline=true&lp-pickup=true&lp-coupon=true"
    "&lp-event=true&lp-shop-detail=false&un=IY"
)
MAX_CANDIDATES = 30

_CARD_SELECTOR = "a.shufoo-card--chirashi"
_CARD_TITLE_SELECTOR = "div.shufoo-card__title"
_DETAIL_RE = re.compile(r"""https?://asp\.shufoo\.net/t/asp_iframe/shop/\d+/\d+(?:\?[^"'<>]*)?""", re.IGNORECASE)
_LIST_RE = re.compile(r"""https?://asp\.shufoo\.net/t/asp_iframe/shop/\d+/list(?:\?[^"'<>]*)?""", re.IGNORECASE)
_LIST_ENTRY_RE = re.compile(r"""/t/asp_iframe/shop/(\d+)/(\d+)""")
_VIEWER_PATH_RE = re.compile(r"/t/asp_iframe/shop/\d+/\d+")
_STATE_BLOCK_RE = re.compile(r"State[\s\S]*?end")
_STATE_IMAGE_RE = re.compile(r"""https?://[^"'\\\s>]+?\.(?:png|jpe?g|webp)(?:\?[^"'\\\s>]*)?""", re.IGNORECASE)

SCORING = ScoringRules(
    full_size_markers=("ipqcache", "s-cmn.shufoo.net", "cmn.shufoo.net"),
    platform_markers=("shufoo",),
)

# Query parameters the Shufoo CDN uses to pick a rendition size.
_SIZE_PARAMS = {
    "thumb-size": "l",
    "imwidth": "2000",
    "w": "2000",
    "width": "2000",
    "content-width": "1200",
    "content-height": "1200",
}


def to_shufoo_abs_url(href: str, base_url: str) -> Optional[str]:
    cleaned = decode_loose(href.strip())
    if cleaned.startswith("/t/asp_iframe/"):
        return SHUFOO_ORIGIN + cleaned
    return to_abs_url(cleaned, base_url)


def pick_latest_card_url(html: str, base_url: str, *, today: Optional[date] = None) -> Optional[str]:
    """Return the href of the chirashi card with the latest ``M/D`` title.

    The first card wins a tie.
    """
    best_url = None
    best_date = None
    for card in parse_html(html).select(_CARD_SELECTOR):
        href = card.get("href")
        url = to_shufoo_abs_url(href, base_url) if href else None
        if not url:
            continue
        title_tag = card.select_one(_CARD_TITLE_SELECTOR)
        title = title_tag.get_text(" ", strip=True) if title_tag else ""
        start = parse_card_date(title, today=today) if title else None
        if start is None:
            continue
        if best_date is None or start > best_date:
            best_date, best_url = start, url
    return best_url


def find_detail_url(urls: Sequence[str]) -> Optional[str]:
    for u in urls:
        m = _DETAIL_RE.search(u)
        if m:
            return m.group(0)
    return None


def find_list_url(urls: Sequence[str]) -> Optional[str]:
    for u in urls:
        m = _LIST_RE.search(u)
        if m:
            return m.group(0)
    return None


def detail_url_from_list_html(html: str) -> Optional[str]:
    m = _LIST_ENTRY_RE.search(html)
    if not m:
        return None
    shop_id, flyer_id = m.groups()
    return f"{SHUFOO_ORIGIN}/t/asp_iframe/shop/{shop_id}/{flyer_id}?{VIEWER_QUERY}"


def is_list_url(url: str) -> bool:
    return "/list" in url.lower()


def classify_candidate(url: str) -> Optional[Candidate]:
    if looks_like_pdf_url(url):
        return Candidate(CandidateKind.PDF, url, CandidateSource.SCRAPE, "PDFチラシ候補")
    if looks_like_image_url(url):
        return Candidate(CandidateKind.IMAGE, url, CandidateSource.SCRAPE, "画像チラシ候補")
    lowered = url.lower()
    if "shufoo" in lowered or "chirashi" in lowered or "asp_iframe" in lowered:
        return Candidate(CandidateKind.PAGE, url, CandidateSource.SCRAPE, "店舗チラシページ")
    return None


def page_fallbacks(urls: Sequence[str]) -> List[Candidate]:
    """Page-like URLs from the store page, minus thumbnail list pages."""
    out = []
    for u in urls:
        c = classify_candidate(u)
        if c is not None and c.kind is CandidateKind.PAGE and not is_list_url(c.url):
            out.append(c)
    return out


def pick_main_image(html: str, page_url: str) -> Outcome[Optional[str]]:
    """Best-scoring Shufoo-hosted image on a viewer page."""
    soup = parse_html(html)
    urls = uniq(
        [
            *extract_meta_images(soup, page_url),
            *extract_raw_urls(html),
            *extract_attr_urls(soup, page_url),
            *extract_css_urls(html, page_url),
        ]
    )
    images = [u for u in urls if looks_like_image_url(u) and "shufoo.net" in u.lower()]
    if not images:
        return Outcome.of(None, ["No image URL found on the Shufoo viewer page"])
    best = SCORING.rank(images)[0]
    warnings = []
    if "thumb" in best.lower():
        warnings.append("Only thumbnail-sized images were found on the Shufoo viewer page; resolve it to get the full image")
    return Outcome.of(best, warnings)


def extract_state_block_image_urls(html: str, base_url: str) -> List[str]:
    """Tile URLs from the viewer's inline ``State ... end`` data block."""
    m = _STATE_BLOCK_RE.search(html or "")
    if not m:
        return []
    urls = []
    for raw in _STATE_IMAGE_RE.findall(decode_loose(m.group(0))):
        abs_url = to_abs_url(decode_loose(raw), base_url)
        if abs_url and not looks_bad(abs_url):
            urls.append(abs_url)
    return SCORING.rank(uniq(urls))


def normalize_shufoo_image_url(url: str) -> str:
    """Ask the Shufoo CDN for its largest rendition where a size parameter exists."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not (parts.hostname or "").endswith("shufoo.net") or not parts.query:
        return url
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    if not any(k in _SIZE_PARAMS for k, _ in pairs):
        return url
    pairs = [(k, _SIZE_PARAMS.get(k, v)) for k, v in pairs]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(pairs), parts.fragment))


class ItoyokadoStrategy(StoreStrategy):
    store_id = StoreId.ITOYOKADO_KAWASAKI
    label = "イトーヨーカドー 川崎店"
    home_url = "https://stores.itoyokado.co.jp/detail/547/"
    allowed_hosts = (
        "stores.itoyokado.co.jp",
        "asp.shufoo.net",
        "s-cmn.shufoo.net",
        "cmn.shufoo.net",
        "www.shufoo.net",
        "ipqcache1.shufoo.net",
        "ipqcache2.shufoo.net",
    )
    scoring = SCORING
    render_first = True
    stitches_tile_grids = True
    speculative_next_page = True

    def discover(self, fetcher: HttpFetcher) -> DiscoverResult:
        html = self.fetch_home(fetcher)
        warnings: List[str] = []
        urls = uniq([*extract_attr_urls(html, self.home_url), *extract_raw_urls(html), *extract_css_urls(html, self.home_url)])

        found = self.find_detail_page(html, urls, fetcher)
        warnings.extend(found.warnings)
        detail = found.value

        candidates: List[Candidate] = []
        if detail:
            candidates.append(Candidate(CandidateKind.PAGE, detail, CandidateSource.SCRAPE, "店舗チラシページ（メインビュー）"))
            main = self.try_resolve_main_image(detail, fetcher)
            warnings.extend(main.warnings)
            if main.value:
                candidates.insert(0, Candidate(CandidateKind.IMAGE, main.value, CandidateSource.SCRAPE, "メインチラシ画像（推定）"))
        else:
            warnings.append("Could not find a Shufoo detail viewer URL on the store page")

        candidates.extend(page_fallbacks(urls))
        ordered = sort_by_kind(uniq_by_url(candidates))[:MAX_CANDIDATES]
        LOG.info("Discovered %d candidate(s) for %s", len(ordered), self.store_id.value)
        return DiscoverResult(store_id=self.store_id, candidates=tuple(ordered), warnings=tuple(warnings))

    def find_detail_page(self, html: str, urls: Sequence[str], fetcher: HttpFetcher) -> Outcome[Optional[str]]:
        """Latest card, then an embedded detail URL, then the list-page hop."""
        latest = pick_latest_card_url(html, self.home_url)
        if latest:
            return Outcome.of(decode_loose(latest))
        detail = find_detail_url(urls)
        if detail:
            return Outcome.of(decode_loose(detail))
        list_url = find_list_url(urls)
        if not list_url:
            return Outcome.of(None)
        LOG.info("Only a list page was linked; following %s", list_url)
        try:
            list_html = fetcher.fetch_text(list_url, HTML_POLICY, allowed_hosts=self.allowed_hosts)
        except PipelineCancelled:
            raise
        except (FetchError, UrlNotAllowedError) as exc:
            return Outcome.of(None, [f"Shufoo list page fetch failed: {list_url} :: {exc}"])
        return Outcome.of(detail_url_from_list_html(list_html))

    def try_resolve_main_image(self, page_url: str, fetcher: HttpFetcher) -> Outcome[Optional[str]]:
        try:
            html = fetcher.fetch_text(page_url, HTML_POLICY, allowed_hosts=self.allowed_hosts)
        except PipelineCancelled:
            raise
        except (FetchError, UrlNotAllowedError) as exc:
            return Outcome.of(None, [f"Shufoo viewer page fetch/parse failed: {exc}"])
        return pick_main_image(html, page_url)

    def pick_target_page(self, pages: Sequence[str]) -> str:
        for p in pages:
            if _VIEWER_PATH_RE.search(p):
                return p
        return pages[0]

    def urls_from_render(self, rendered: RenderResult, limit: int = 6) -> Outcome[List[str]]:
        from_state = extract_state_block_image_urls(rendered.html, rendered.url)
        if from_state:
            return self.keep_allowed_rendered(from_state)
        return super().urls_from_render(rendered, limit=1)

    def postprocess_asset_url(self, url: str) -> str:
        return normalize_shufoo_image_url(url)

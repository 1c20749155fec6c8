from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence, Tuple

from ..domain.models import Candidate, CandidateKind, DiscoverResult, Outcome, StoreId
from ..logging import get_logger
from ..web.fetch import HTML_POLICY, HttpFetcher, is_allowed_url
from ..web.html import decode_loose, uniq
from ..web.render import RenderResult
from ..web.scoring import ScoringRules, looks_bad

if TYPE_CHECKING:
    from ..pipeline.resolve import PageResolver, ResolveResult

LOG = get_logger("stores")

_KIND_ORDER = {CandidateKind.IMAGE: 0, CandidateKind.PAGE: 1, CandidateKind.PDF: 2}


def uniq_by_url(candidates: Iterable[Candidate]) -> List[Candidate]:
    """Keep the first candidate per (loosely decoded) URL."""
    seen = set()
    out: List[Candidate] = []
    for c in candidates:
        key = decode_loose(c.url)
        if key in seen:
            continue
        seen.add(key)
        out.append(c if key == c.url else Candidate(kind=c.kind, url=key, source=c.source, title=c.title))
    return out


def sort_by_kind(candidates: Iterable[Candidate]) -> List[Candidate]:
    """image before page before pdf; stable within a kind."""
    return sorted(candidates, key=lambda c: _KIND_ORDER[c.kind])


class StoreStrategy(ABC):
    """Discovery and resolution rules for one supported store."""

    store_id: StoreId
    label: str
    home_url: str
    allowed_hosts: Tuple[str, ...] = ()
    scoring: ScoringRules = ScoringRules()

    # Static HTML is known to be insufficient; always try the renderer.
    render_first: bool = False
    # Inputs may be quadrant tiles that must be stitched before tiling.
    stitches_tile_grids: bool = False
    # Front page tiles imply back page tiles at page + 1.
    speculative_next_page: bool = False

    @abstractmethod
    def discover(self, fetcher: HttpFetcher) -> DiscoverResult:
        """Return flyer candidates; raises FetchError only for the store page itself."""

    def allowlist(self) -> Tuple[str, ...]:
        return self.allowed_hosts

    def resolve(self, pages: Sequence[str], resolver: "PageResolver") -> "ResolveResult":
        return resolver.resolve(self, pages)

    def fetch_home(self, fetcher: HttpFetcher) -> str:
        LOG.info("Fetching store page for %s: %s", self.store_id.value, self.home_url)
        return fetcher.fetch_text(self.home_url, HTML_POLICY, allowed_hosts=self.allowed_hosts)

    def pick_target_page(self, pages: Sequence[str]) -> str:
        return pages[0]

    def urls_from_render(self, rendered: RenderResult, limit: int = 6) -> Outcome[List[str]]:
        """Largest DOM images first, then image responses by declared size.

        Off-allowlist URLs are dropped before ``limit`` is applied.
        """
        dom = [d.src for d in rendered.dom_by_area()]
        observed = [o.url for o in rendered.observed_by_size()]
        urls = [
            u
            for u in uniq([*dom, *observed])
            if u and not u.startswith(("data:", "blob:")) and not looks_bad(u)
        ]
        return self.keep_allowed_rendered(urls, limit)

    def keep_allowed_rendered(self, urls: Sequence[str], limit: Optional[int] = None) -> Outcome[List[str]]:
        kept = [u for u in urls if is_allowed_url(u, self.allowlist())]
        warnings = []
        if len(kept) < len(urls):
            warnings.append(f"Skipped {len(urls) - len(kept)} rendered image URL(s) outside the store allowlist")
        return Outcome.of(kept[:limit] if limit else kept, warnings)

    def postprocess_asset_url(self, url: str) -> str:
        return url

    def prepare_inputs(self, urls: Sequence[str]) -> Outcome[List[str]]:
        """Rewrite or filter extraction inputs before download."""
        return Outcome.of(list(urls))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.store_id.value}>"

"""食品館あおば 大島店: the flyer images live at stable, known URLs."""

from __future__ import annotations

from ..domain.models import Candidate, CandidateKind, CandidateSource, DiscoverResult, StoreId
from ..logging import get_logger
from ..web.fetch import HttpFetcher
from ..web.scoring import ScoringRules
from .base import StoreStrategy

LOG = get_logger("store-aoba")

FIXED_CANDIDATES = (
    Candidate(
        kind=CandidateKind.IMAGE,
        url="https://www.bicrise.com/flyer/ooshima-01.jpg",
        source=CandidateSource.FIXED,
        title="あおば大島 チラシ 1",
    ),
    Candidate(
        kind=CandidateKind.IMAGE,
        url="https://www.bicrise.com/flyer/ooshima-02.jpg",
        source=CandidateSource.FIXED,
        title="あおば大島 チラシ 2",
    ),
)


class AobaStrategy(StoreStrategy):
    store_id = StoreId.AOBA_OSHIMA
    label = "食品館あおば 大島店"
    home_url = "https://www.bicrise.com/ooshima/"
    allowed_hosts = ("www.bicrise.com", "bicrise.com")
    scoring = ScoringRules(full_size_markers=("/flyer/",), platform_markers=("bicrise.com",))

    def discover(self, fetcher: HttpFetcher) -> DiscoverResult:
        LOG.info("Using %d fixed flyer URL(s); no network call", len(FIXED_CANDIDATES))
        return DiscoverResult(store_id=self.store_id, candidates=FIXED_CANDIDATES, warnings=())

from __future__ import annotations

import time
from typing import Any

from ..domain.models import DiscoverResult
from ..logging import get_logger
from ..stores import get_strategy
from ..web.fetch import HttpFetcher

LOG = get_logger("discover")


def discover_flyer_candidates(store_id: Any, fetcher: HttpFetcher) -> DiscoverResult:
    """Current flyer candidates for a store.

    Raises RequestValidationError for an unknown store and FetchError when the
    store page itself cannot be fetched; every other problem is a warning.
    """
    store = get_strategy(store_id)
    t0 = time.perf_counter()
    result = store.discover(fetcher)
    LOG.info(
        "Discovery for %s: %d candidate(s), %d warning(s) in %.2fs",
        store.store_id.value,
        len(result.candidates),
        len(result.warnings),
        time.perf_counter() - t0,
    )
    return result

"""Per-store discovery and resolution strategies, keyed by StoreId."""

from typing import Any, Dict

from ..domain.models import StoreId
from ..errors import RequestValidationError
from .aoba import AobaStrategy
from .base import StoreStrategy
from .itoyokado import ItoyokadoStrategy
from .life import LifeStrategy

STRATEGIES: Dict[StoreId, StoreStrategy] = {
    s.store_id: s for s in (AobaStrategy(), LifeStrategy(), ItoyokadoStrategy())
}


def get_strategy(store_id: Any) -> StoreStrategy:
    sid = StoreId.parse(store_id)
    if sid is None:
        allowed = " | ".join(s.value for s in StoreId)
        raise RequestValidationError(f"storeId is required ({allowed})")
    return STRATEGIES[sid]


__all__ = [
    "STRATEGIES",
    "StoreStrategy",
    "AobaStrategy",
    "LifeStrategy",
    "ItoyokadoStrategy",
    "get_strategy",
]

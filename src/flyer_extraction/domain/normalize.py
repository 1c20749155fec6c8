"""Item normalization, dedup keys and card-date parsing for model and scraped text."""

import re
import unicodedata
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from ..logging import get_logger
from ..web.html import strip_tags
from .models import FlyerItem

_LOG = get_logger("normalize")

UNCATEGORIZED = "その他"

PRICE_FIELD_ALIASES = ("priceYen", "price", "price_yen", "price_jpy", "priceJpy")

_DEDUP_STRIP_RE = re.compile(r"[（）()\[\]【】「」『』・,，.．。:：/／]")


def coerce_price_yen(value: Any) -> Optional[int]:
    """Coerce a model-supplied price into a positive integer yen amount.

    Accepts numbers and strings like '1,280円(税込)' or '¥１，２８０'; the first
    digit run after removing thousands separators wins. Returns None for
    zero, negative, boolean, or non-numeric input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        try:
            rounded = int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        except InvalidOperation:
            return None
        return rounded if rounded > 0 else None
    if not isinstance(value, str):
        return None
    s = unicodedata.normalize("NFKC", value).replace(",", "")
    if re.match(r"^\s*-\s*\d", s):
        return None
    m = re.search(r"\d+", s)
    if not m:
        return None
    n = int(m.group(0))
    return n if n > 0 else None


def _clean_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize_flyer_item(raw: Any) -> Optional[FlyerItem]:
    """Return a FlyerItem or None when the raw model item is unusable.

    Items without a name or without a positive price are treated as
    extraction noise and dropped silently.
    """
    if not isinstance(raw, dict):
        return None
    name = _clean_text(raw.get("name"))
    if not name:
        return None
    price = None
    for key in PRICE_FIELD_ALIASES:
        if raw.get(key) is not None:
            price = coerce_price_yen(raw.get(key))
            break
    if price is None:
        return None
    return FlyerItem(
        category=_clean_text(raw.get("category")) or UNCATEGORIZED,
        name=name,
        price_yen=price,
        unit=_clean_text(raw.get("unit")),
        notes=_clean_text(raw.get("notes")),
    )


def _norm_key_part(s: str) -> str:
    folded = unicodedata.normalize("NFKC", s or "").casefold()
    folded = re.sub(r"\s+", "", folded)
    return _DEDUP_STRIP_RE.sub("", folded)


def make_dedup_key(item: FlyerItem) -> str:
    return f"{_norm_key_part(item.name)}|{item.price_yen}|{_norm_key_part(item.unit or '')}"


def parse_card_date(text: str, *, today: Optional[date] = None) -> Optional[date]:
    """Parse a flyer card's start date.

    Supports the full form ``2025年1月12日`` and the short ``1/12`` form,
    which is placed in the current year. Full-width digits are accepted.
    """
    normalized = unicodedata.normalize("NFKC", strip_tags(text))
    normalized = re.sub(r"\s+", "", normalized)
    m = re.search(r"(\d{4})年(\d{1,2})月(\d{1,2})", normalized)
    if m:
        year, month, day = (int(g) for g in m.groups())
    else:
        m = re.search(r"(\d{1,2})/(\d{1,2})", normalized)
        if not m:
            return None
        month, day = (int(g) for g in m.groups())
        year = (today or date.today()).year
    try:
        return date(year, month, day)
    except ValueError:
        _LOG.debug("Card date out of range: %r", text[:80])
        return None

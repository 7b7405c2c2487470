from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, List, Optional

TWOPLACES = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def d(val) -> Decimal:
    """Coerce incoming values to Decimal safely."""
    if isinstance(val, Decimal):
        return val
    if val is None or val == "":
        return ZERO
    if isinstance(val, str):
        val = val.strip().replace(",", "")
    try:
        return Decimal(str(val))
    except InvalidOperation:
        raise ValueError(f"Not a monetary amount: {val!r}")


def q2(amount) -> Decimal:
    """Round to minor currency units (cents), half up."""
    return d(amount).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def norm_key(value: Optional[str]) -> str:
    """Normalize a container or shipment number for comparisons."""
    return (value or "").strip().upper()


def unique(values: Iterable[Optional[str]]) -> List[str]:
    """De-duplicate preserving first-seen order, dropping blanks."""
    seen = set()
    out: List[str] = []
    for v in values:
        if v is None or v == "" or v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out

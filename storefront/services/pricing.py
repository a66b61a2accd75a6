from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from storefront.config import settings
from storefront.errors import ValidationError


def _quantum() -> Decimal:
    return Decimal(1).scaleb(-settings.decimals)


def to_money(value: Any) -> Decimal:
    """Parse ``value`` into a Decimal rounded to the configured number of places."""
    if isinstance(value, bool):
        raise ValidationError(f"invalid amount: {value!r}")
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"invalid amount: {value!r}") from None
    if not d.is_finite():
        raise ValidationError(f"invalid amount: {value!r}")
    return d.quantize(_quantum(), rounding=ROUND_HALF_UP)


def money_json(value: Optional[Decimal]) -> Optional[float]:
    if value is None:
        return None
    return float(to_money(value))


def sale_price(price: Decimal, discount: Optional[Decimal]) -> Decimal:
    """Price after a percentage discount (``discount`` is 0..100)."""
    if not discount:
        return to_money(price)
    return to_money(price * (Decimal(100) - discount) / Decimal(100))


def line_total(price: Decimal, quantity: int) -> Decimal:
    return to_money(price * quantity)


def order_total(lines: Iterable[tuple[Decimal, int]]) -> Decimal:
    total = Decimal(0)
    for price, qty in lines:
        total += line_total(price, qty)
    return to_money(total)

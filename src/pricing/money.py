"""Денежные величины: всё считаем в целых центах."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Привести значение к Decimal; мусор, None и NaN дают default."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return default
    if not result.is_finite():
        return default
    return result


def to_cents(value: Any) -> int:
    """Сумма в долларах -> целые центы (округление half-up)."""
    amount = to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    return int(amount * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def percent_of(cents: int, percent: Any) -> int:
    """Процент от суммы в центах, округлённый half-up до цента."""
    share = Decimal(cents) * to_decimal(percent) / 100
    return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_currency(amount: Any) -> str:
    value = to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)
    if value < 0:
        return f"-${-value:,.2f}"
    return f"${value:,.2f}"

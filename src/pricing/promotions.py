"""Правила промокодов и расчёт скидки."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Union

from .money import ZERO, format_currency, percent_of, to_cents, to_decimal


class PromoType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_SHIPPING = "free_shipping"
    FREE_ORDER = "free_order"
    FIXED_PRICE_ITEM = "fixed_price_item"


PROMO_WARNINGS = {
    "invalid_promo_code": "Invalid promo code",
    "promo_expired": "Promo code not found or expired",
    "promo_not_started": "This promo code is not yet active",
    "promo_exhausted": "This code has been used up",
    "promo_user_limit": "You have already used this promo code the maximum number of times",
    "promo_min_order": "Minimum order amount not reached",
}


def normalize_code(code: Any) -> Optional[str]:
    if not isinstance(code, str):
        return None
    normalized = code.strip().upper()
    return normalized or None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class PromoRule:
    """Снимок промокода на момент расчёта.

    ``user_uses_count`` заполняет сервис промокодов: сколько раз текущий
    пользователь уже применил этот код.
    """

    code: str
    type: str
    value: Optional[Decimal] = None
    description: Optional[str] = None
    min_order_amount: Optional[Decimal] = None
    active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    max_uses: Optional[int] = None
    uses_count: int = 0
    per_user_limit: Optional[int] = None
    user_uses_count: int = 0
    combinable: bool = True
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PromoRule":
        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        value = pick("value")
        min_order = pick("min_order_amount", "minOrderAmount")
        return cls(
            code=normalize_code(data.get("code")) or "",
            type=str(data.get("type") or ""),
            value=to_decimal(value) if value is not None else None,
            description=data.get("description"),
            min_order_amount=to_decimal(min_order) if min_order is not None else None,
            active=bool(data.get("active", True)),
            start_date=_parse_datetime(pick("start_date", "startDate")),
            end_date=_parse_datetime(pick("end_date", "endDate")),
            max_uses=_optional_int(pick("max_uses", "maxUses")),
            uses_count=_optional_int(pick("uses_count", "usesCount")) or 0,
            per_user_limit=_optional_int(pick("per_user_limit", "perUserLimit")),
            user_uses_count=_optional_int(pick("user_uses_count", "userUsesCount")) or 0,
            combinable=bool(data.get("combinable", True)),
            id=str(data["id"]) if data.get("id") is not None else None,
        )


PromoRuleSet = Union[Mapping[str, PromoRule], Iterable[PromoRule], None]


def index_rules(rules: PromoRuleSet) -> dict[str, PromoRule]:
    """Привести набор правил к словарю «КОД -> правило»."""
    if rules is None:
        return {}
    if isinstance(rules, Mapping):
        return {normalize_code(code) or "": rule for code, rule in rules.items()}
    return {rule.code: rule for rule in rules}


def check_eligibility(rule: PromoRule, subtotal_cents: int, as_of: datetime) -> Optional[str]:
    """Вернуть код предупреждения, если промокод сейчас неприменим, иначе None."""
    if not rule.active:
        return "promo_expired"
    try:
        PromoType(rule.type)
    except ValueError:
        return "invalid_promo_code"
    if rule.start_date and rule.start_date > as_of:
        return "promo_not_started"
    if rule.end_date and rule.end_date < as_of:
        return "promo_expired"
    if rule.max_uses is not None and rule.max_uses > 0 and rule.uses_count >= rule.max_uses:
        return "promo_exhausted"
    if rule.per_user_limit is not None and rule.per_user_limit > 0 and rule.user_uses_count >= rule.per_user_limit:
        return "promo_user_limit"
    if rule.min_order_amount and subtotal_cents < to_cents(rule.min_order_amount):
        return "promo_min_order"
    return None


def compute_discount(rule: PromoRule, sets_subtotal_cents: int, fee_cents: int) -> tuple[int, str]:
    """Скидка в центах и её описание. Скидка не превышает сумму заказа."""
    ceiling = sets_subtotal_cents + fee_cents
    value = rule.value if rule.value is not None else ZERO
    promo_type = PromoType(rule.type)

    if promo_type is PromoType.PERCENTAGE:
        percent = min(max(value, ZERO), Decimal(100))
        # Процент считается только от стоимости наборов, без доставки
        discount = percent_of(sets_subtotal_cents, percent)
        description = f"{percent.normalize():f}% off"
    elif promo_type is PromoType.FREE_SHIPPING:
        discount = fee_cents
        description = "Free shipping"
    elif promo_type is PromoType.FREE_ORDER:
        discount = ceiling
        description = "Free order"
    else:
        discount = max(0, to_cents(value))
        description = f"{format_currency(value)} off"

    return min(discount, ceiling), description

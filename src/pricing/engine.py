"""Расчёт стоимости заказа.

Чистая функция: без ввода-вывода, без скрытого состояния. Некорректные
необязательные поля подменяются безопасными значениями, а проблемы
(неизвестная форма, плохой промокод) возвращаются списком предупреждений
вместе с разбивкой, а не исключением.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Union

from .catalog import BUNDLED_CATALOG, Catalog
from .models import (
    AppliedPromo,
    Fulfillment,
    LineItem,
    NailSet,
    PriceBreakdown,
    PricingWarning,
    safe_quantity,
)
from .money import to_cents, to_decimal
from .promotions import (
    PROMO_WARNINGS,
    PromoRuleSet,
    check_eligibility,
    compute_discount,
    index_rules,
    normalize_code,
)

# Срок выполнения по умолчанию, если у скорости не задано days
DEFAULT_COMPLETION_DAYS = {"standard": 14, "priority": 5, "rush": 1}

NailSetInput = Union[NailSet, Mapping[str, Any]]


def _set_label(nail_set: NailSet, shape_name: Optional[str], quantity: int) -> str:
    base = nail_set.name or (f"{shape_name} Set" if shape_name else "Custom Set")
    suffix = "s" if quantity > 1 else ""
    return f"{base} ({quantity} set{suffix})"


def _malformed(value: Any) -> bool:
    """Поле передано, но это не строка и не число."""
    return value is not None and (isinstance(value, bool) or not isinstance(value, (str, int)))


def _as_nail_set(value: NailSetInput) -> NailSet:
    return value if isinstance(value, NailSet) else NailSet.from_dict(value)


def calculate_price_breakdown(
    nail_sets: Iterable[NailSetInput] = (),
    fulfillment: Union[Fulfillment, Mapping[str, Any], None] = None,
    promo_code: Optional[str] = None,
    *,
    catalog: Catalog = BUNDLED_CATALOG,
    promotions: PromoRuleSet = None,
    as_of: Optional[datetime] = None,
) -> PriceBreakdown:
    """Посчитать разбивку стоимости для черновика заказа.

    Порядок позиций: наборы (в порядке черновика) -> доставка -> скидка.
    """
    warnings: list[PricingWarning] = []
    line_items: list[LineItem] = []
    sets_subtotal = 0

    for index, raw_set in enumerate(nail_sets or ()):
        if not raw_set or not isinstance(raw_set, (NailSet, Mapping)):
            continue
        nail_set = _as_nail_set(raw_set)
        # У сырых наборов без id идентификатор зависит только от позиции
        if isinstance(raw_set, NailSet) or raw_set.get("id"):
            line_id = nail_set.id
        else:
            line_id = f"set_{index}"
        quantity = safe_quantity(nail_set.quantity)
        shape = catalog.get_shape(nail_set.shape_id)
        if shape is None:
            warnings.append(
                PricingWarning(
                    code="unknown_shape",
                    message=f"Unknown shape id: {nail_set.shape_id}",
                    ref=line_id,
                )
            )
            subtotal = 0
        else:
            subtotal = to_cents(to_decimal(shape.base_price) * quantity)
        sets_subtotal += subtotal
        line_items.append(
            LineItem(
                id=line_id,
                label=_set_label(nail_set, shape.name if shape else None, quantity),
                amount_cents=subtotal,
            )
        )

    selection = Fulfillment.from_value(fulfillment)
    raw = fulfillment if isinstance(fulfillment, Mapping) else {}
    method = catalog.get_method(selection.method)
    if method is None:
        if selection.method or _malformed(raw.get("method")):
            shown = raw.get("method", selection.method)
            warnings.append(
                PricingWarning(code="unknown_method", message=f"Unknown delivery method: {shown}")
            )
        method = catalog.default_method

    speed = method.resolve_speed(selection.speed)
    if speed is None:
        if selection.speed or _malformed(raw.get("speed")):
            shown = raw.get("speed", selection.speed)
            warnings.append(
                PricingWarning(code="unknown_speed", message=f"Unknown delivery speed: {shown}")
            )
        speed = method.default_option

    fee = max(0, to_cents(speed.fee))
    if fee > 0:
        line_items.append(
            LineItem(id="fulfillment", label=f"{method.label} • {speed.label}", amount_cents=fee)
        )

    discount = 0
    applied: Optional[AppliedPromo] = None
    code = normalize_code(promo_code)
    if code:
        rule = index_rules(promotions).get(code)
        moment = as_of or datetime.now(timezone.utc)
        problem = "invalid_promo_code" if rule is None else check_eligibility(rule, sets_subtotal + fee, moment)
        if problem:
            warnings.append(PricingWarning(code=problem, message=PROMO_WARNINGS[problem], ref=code))
        else:
            discount, description = compute_discount(rule, sets_subtotal, fee)
            applied = AppliedPromo(
                code=code,
                type=rule.type,
                description=description,
                discount_cents=discount,
                promo_id=rule.id,
            )
            if discount > 0:
                line_items.append(
                    LineItem(id="promo", label=f"Promo {code} ({description})", amount_cents=-discount)
                )

    total = max(0, sets_subtotal + fee - discount)
    days = speed.days if speed.days is not None else DEFAULT_COMPLETION_DAYS.get(speed.id, DEFAULT_COMPLETION_DAYS["standard"])

    return PriceBreakdown(
        line_items=tuple(line_items),
        sets_subtotal_cents=sets_subtotal,
        fulfillment_fee_cents=fee,
        discount_cents=discount,
        total_cents=total,
        estimated_completion_days=days,
        method=method.id,
        speed=speed.id,
        promo=applied,
        warnings=tuple(warnings),
    )

"""Сервис промокодов: поиск, проверка, применение к заказу и админский CRUD."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

import aiosqlite

from database import db
from database.db import PromoCodeError
from database.models import PromoCode
from pricing.catalog import BUNDLED_CATALOG, Catalog
from pricing.engine import calculate_price_breakdown
from pricing.models import PriceBreakdown
from pricing.promotions import PROMO_WARNINGS, PromoRule, normalize_code

logger = logging.getLogger(__name__)


@dataclass
class PromoValidation:
    valid: bool
    code: Optional[str] = None
    error: Optional[str] = None
    discount_cents: int = 0
    description: Optional[str] = None
    promo_id: Optional[str] = None
    breakdown: Optional[PriceBreakdown] = field(default=None, repr=False)

    def to_dict(self) -> dict:
        data = {
            "valid": self.valid,
            "code": self.code,
            "discount": self.discount_cents / 100,
            "description": self.description,
        }
        if self.error:
            data["error"] = self.error
        if self.breakdown is not None:
            data["pricing"] = self.breakdown.to_dict()
        return data


async def resolve_promo_code(code: Optional[str], user_id: Optional[str] = None) -> Optional[PromoRule]:
    """Снимок правила промокода с числом применений этим пользователем."""
    normalized = normalize_code(code)
    if not normalized:
        return None
    promo = await db.get_promo_by_code(normalized)
    if promo is None:
        return None
    user_uses = await db.count_promo_usage(promo.id, user_id) if user_id else 0
    return promo.to_rule(user_uses_count=user_uses)


async def validate_promo_code(
    code: Optional[str],
    nail_sets: Iterable[Any],
    fulfillment: Any,
    *,
    catalog: Catalog = BUNDLED_CATALOG,
    user_id: Optional[str] = None,
    as_of: Optional[datetime] = None,
) -> PromoValidation:
    """
    Проверить промокод на конкретной корзине.

    Проверка выполняется тем же расчётом, что и итоговая цена, поэтому
    результат совпадает с тем, что покажет разбивка.
    """
    normalized = normalize_code(code)
    if not normalized:
        return PromoValidation(valid=False, error="Promo code is required")

    try:
        rule = await resolve_promo_code(normalized, user_id)
    except aiosqlite.Error:
        logger.exception("Failed to look up promo code %s", normalized)
        return PromoValidation(valid=False, code=normalized, error="Unable to validate promo code")

    breakdown = calculate_price_breakdown(
        nail_sets,
        fulfillment,
        normalized,
        catalog=catalog,
        promotions=[rule] if rule else None,
        as_of=as_of,
    )
    promo_warnings = [warning for warning in breakdown.warnings if warning.code in PROMO_WARNINGS]
    if breakdown.promo is None or promo_warnings:
        error = promo_warnings[0].message if promo_warnings else PROMO_WARNINGS["invalid_promo_code"]
        return PromoValidation(valid=False, code=normalized, error=error, breakdown=breakdown)

    return PromoValidation(
        valid=True,
        code=normalized,
        discount_cents=breakdown.promo.discount_cents,
        description=breakdown.promo.description,
        promo_id=breakdown.promo.promo_id,
        breakdown=breakdown,
    )


async def apply_promo_code_to_order(promo_code_id: str, order_id: str, user_id: Optional[str]) -> PromoCode:
    """Засчитать использование промокода заказом. Лимиты перепроверяются при записи."""
    promo = await db.get_promo(promo_code_id)
    if promo is None:
        raise PromoCodeError("Promo code not found", status_code=404)
    if promo.per_user_limit and user_id:
        used = await db.count_promo_usage(promo.id, user_id)
        if used >= promo.per_user_limit:
            raise PromoCodeError(PROMO_WARNINGS["promo_user_limit"], status_code=409)
    await db.record_promo_usage(promo, order_id, user_id)
    logger.info("Promo code %s applied to order %s", promo.code, order_id)
    return promo


# ---------- администрирование ----------


async def list_promo_codes() -> list[PromoCode]:
    return await db.list_promo_codes()


async def create_promo_code(data: dict, admin_id: Optional[str] = None) -> PromoCode:
    promo = await db.create_promo_code(data, admin_id)
    logger.info("Promo code %s created by %s", promo.code, admin_id)
    return promo


async def update_promo_code(promo_id: str, updates: dict) -> PromoCode:
    return await db.update_promo_code(promo_id, updates)


async def toggle_promo_code(promo_id: str, active: Optional[bool] = None) -> PromoCode:
    """Включить/выключить промокод; без active переключает текущее значение."""
    promo = await db.get_promo(promo_id)
    if promo is None:
        raise PromoCodeError("Promo code not found", status_code=404)
    target = (not promo.active) if active is None else bool(active)
    return await db.update_promo_code(promo_id, {"active": target})


async def delete_promo_code(promo_id: str) -> None:
    if await db.get_promo(promo_id) is None:
        raise PromoCodeError("Promo code not found", status_code=404)
    await db.delete_promo_code(promo_id)

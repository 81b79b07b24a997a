"""Оформление заказа: сохранение, снимок цены, оплата и завершение."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Optional

import aiosqlite

from database import db
from database.db import PromoCodeError
from database.models import PAID_STATUSES, Order
from payments import PaymentError, PaymentIntent, StripeClient
from pricing.catalog import Catalog, load_catalog
from pricing.models import PriceBreakdown

from . import workload
from .draft import DraftState, DraftTransitionError, OrderBuilder, OrderDraft
from .promos import apply_promo_code_to_order, resolve_promo_code

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATED_DAYS = 7

STATE_BY_STATUS = {
    "pending_payment": DraftState.READY_FOR_PAYMENT,
    "cancelled": DraftState.DISCARDED,
}


class OrderValidationError(Exception):
    """Заказ не прошёл проверку."""

    status_code = 400


def order_from_draft(
    draft: OrderDraft,
    *,
    status: str = "draft",
    breakdown: Optional[PriceBreakdown] = None,
) -> Order:
    applied = breakdown.promo if breakdown is not None else None
    return Order(
        user_id=draft.user_id,
        id=draft.id,
        status=status,
        nail_sets=list(draft.nail_sets),
        fulfillment=draft.fulfillment,
        order_notes=draft.order_notes,
        promo_code=applied.code if applied else draft.promo_code,
        promo_code_id=applied.promo_id if applied else None,
        pricing=breakdown.to_dict() if breakdown is not None else None,
    )


def restore_builder(order: Order) -> OrderBuilder:
    """Восстановить машину состояний по сохранённому заказу."""
    draft = OrderDraft(
        user_id=order.user_id,
        id=order.id,
        nail_sets=list(order.nail_sets),
        fulfillment=order.fulfillment,
        order_notes=order.order_notes,
        promo_code=order.promo_code,
    )
    if order.status in PAID_STATUSES:
        state = DraftState.PAID
    else:
        state = STATE_BY_STATUS.get(order.status)
    builder = OrderBuilder(draft, state)
    builder.payment_intent_id = order.payment_intent_id
    return builder


def _production_jobs(order: Order) -> list[dict]:
    return [
        {
            "id": f"{order.id}_{nail_set.id}",
            "orderId": order.id,
            "nailSetId": nail_set.id,
            "quantity": nail_set.quantity,
            "shapeId": nail_set.shape_id,
            "name": nail_set.name,
            "description": nail_set.description,
        }
        for nail_set in order.nail_sets
    ]


def verify_intent(order: Order, intent: PaymentIntent) -> None:
    """Намерение должно быть выписано на этот заказ и на его текущую сумму."""
    if not order.payment_intent_id or intent.id != order.payment_intent_id:
        raise OrderValidationError("Payment intent mismatch for this order")
    if str(intent.metadata.get("order_id") or "") != order.id:
        raise OrderValidationError("Payment intent was created for another order")
    if intent.amount != order.total_cents:
        raise OrderValidationError(
            f"Payment amount {intent.amount} does not match order total {order.total_cents}"
        )


async def complete_order(order_id: str, payment_intent_id: Optional[str] = None) -> Order:
    """
    Отметить заказ оплаченным.

    Повторный вызов для уже оплаченного заказа ничего не меняет.
    Засчитывает промокод и занимает место в недельной загрузке ровно
    один раз, даже при параллельных вызовах.
    """
    order = await db.fetch_order(order_id)
    if order.status in PAID_STATUSES:
        return order
    if order.status != "pending_payment":
        raise OrderValidationError(f"Order {order_id} is {order.status}, not awaiting payment")
    if payment_intent_id and payment_intent_id != order.payment_intent_id:
        raise OrderValidationError("Payment intent mismatch for this order")

    days = int((order.pricing or {}).get("estimatedCompletionDays") or DEFAULT_ESTIMATED_DAYS)
    today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    paid = await db.mark_order_paid(
        order_id,
        payment_intent_id=payment_intent_id,
        estimated_fulfillment_date=today + timedelta(days=days),
        production_jobs=_production_jobs(order),
    )
    if paid is None:
        # Заказ уже оплатил параллельный вызов
        return await db.fetch_order(order_id)
    logger.info("Order %s marked as paid", order_id)

    # Оплата уже прошла: ошибки учёта только логируются
    if order.promo_code_id:
        try:
            await apply_promo_code_to_order(order.promo_code_id, order_id, order.user_id)
        except PromoCodeError as exc:
            logger.warning("Promo usage for order %s was not recorded: %s", order_id, exc)
    try:
        await workload.increment_weekly_orders()
    except aiosqlite.Error:
        logger.exception("Failed to increment weekly orders for %s", order_id)

    return paid


class CheckoutService:
    """Связывает черновик с хранилищем, промокодами и платёжным провайдером."""

    def __init__(self, payments: Optional[StripeClient] = None, *, currency: Optional[str] = None) -> None:
        self.payments = payments
        self.currency = currency or (payments.currency if payments else "usd")

    async def load_catalog(self) -> Catalog:
        return await load_catalog(db.fetch_shapes, db.fetch_fulfillment_config)

    async def save_draft(self, builder: OrderBuilder) -> Order:
        """Сохранить черновик без перехода к оплате."""
        if not builder.draft.nail_sets:
            raise OrderValidationError("At least one nail set is required")
        if builder.is_terminal:
            raise DraftTransitionError(f"Order draft is {builder.state.value} and can no longer be saved")
        order = await db.create_or_update_order(order_from_draft(builder.draft))
        builder.draft.id = order.id
        return order

    async def quote(self, builder: OrderBuilder, catalog: Optional[Catalog] = None) -> PriceBreakdown:
        catalog = catalog or await self.load_catalog()
        rule = await resolve_promo_code(builder.draft.promo_code, builder.draft.user_id)
        return builder.price(catalog, [rule] if rule else None)

    async def submit(self, builder: OrderBuilder, catalog: Optional[Catalog] = None) -> Order:
        """Проверить черновик, зафиксировать цену и перевести его к оплате."""
        catalog = catalog or await self.load_catalog()

        report = builder.readiness(catalog)
        if not report.ready:
            raise DraftTransitionError("; ".join(report.messages()), blockers=list(report.blockers))
        await workload.ensure_capacity()

        breakdown = await self.quote(builder, catalog)
        order = await db.create_or_update_order(
            order_from_draft(builder.draft, status="pending_payment", breakdown=breakdown)
        )
        builder.proceed_to_payment(order.id, catalog)
        builder.payment_intent_id = None
        logger.info("Order %s submitted, total %s cents", order.id, breakdown.total_cents)
        return order

    async def _call_payments(self, method: str, *args, **kwargs):
        if self.payments is None:
            raise PaymentError("Payments are not configured", status_code=503)
        func = getattr(self.payments, method)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def start_payment(self, builder: OrderBuilder) -> Optional[PaymentIntent]:
        """Создать платёжное намерение на сумму из снимка.

        Бесплатный заказ завершается сразу, намерение не создаётся.
        """
        if builder.state is not DraftState.READY_FOR_PAYMENT:
            raise DraftTransitionError(f"Order is not ready for payment (state {builder.state.value})")
        order = await db.fetch_order(builder.draft.id)

        if order.total_cents <= 0:
            await complete_order(order.id)
            builder.mark_paid()
            return None

        intent = await self._call_payments(
            "create_payment_intent",
            order.total_cents,
            currency=self.currency,
            metadata={"order_id": order.id, "user_id": order.user_id},
        )
        builder.payment_intent_id = intent.id
        await db.update_order(order.id, payment_intent_id=intent.id)
        return intent

    async def confirm_payment(
        self,
        builder: OrderBuilder,
        payment_method: str,
        billing_details: Optional[dict] = None,
    ) -> Order:
        """Подтвердить оплату. При отказе черновик остаётся готовым к повтору."""
        if builder.state is not DraftState.READY_FOR_PAYMENT or not builder.payment_intent_id:
            raise DraftTransitionError("Start the payment before confirming it")
        order = await db.fetch_order(builder.draft.id)
        if order.payment_intent_id != builder.payment_intent_id:
            raise OrderValidationError("Payment intent mismatch for this order")

        try:
            intent = await self._call_payments(
                "confirm_payment",
                builder.payment_intent_id,
                payment_method=payment_method,
                billing_details=billing_details,
            )
        except PaymentError as exc:
            builder.payment_failed(str(exc))
            raise

        return await self._finish(builder, order, intent)

    async def complete_with_intent(self, builder: OrderBuilder, payment_intent_id: str) -> Order:
        """Завершить заказ, оплата которого подтверждена на стороне клиента."""
        if builder.state is not DraftState.READY_FOR_PAYMENT:
            raise DraftTransitionError(f"Order is not awaiting payment (state {builder.state.value})")
        order = await db.fetch_order(builder.draft.id)
        if not order.payment_intent_id or payment_intent_id != order.payment_intent_id:
            raise OrderValidationError("Payment intent mismatch for this order")
        intent = await self._call_payments("retrieve_payment_intent", payment_intent_id)
        return await self._finish(builder, order, intent)

    async def _finish(self, builder: OrderBuilder, order: Order, intent: PaymentIntent) -> Order:
        if not intent.succeeded:
            message = f"Payment was not completed (status {intent.status})"
            builder.payment_failed(message)
            raise PaymentError(message, status_code=402, code=intent.status)
        verify_intent(order, intent)

        paid = await complete_order(order.id, intent.id)
        builder.mark_paid(intent.id)
        return paid

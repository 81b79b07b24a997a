"""FastAPI приложение витрины: каталог, расчёт цены, заказы и оплата."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse

# Добавляем src в путь
ROOT_DIR = Path(__file__).resolve().parents[2]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from auth import AuthContext, AuthError, accounts, bootstrap_session
from config import Settings
from database import OrderNotFoundError, PromoCodeError, db
from database.db import ShapeNotFoundError
from orders import (
    CapacityFullError,
    CheckoutService,
    DraftTransitionError,
    OrderBuilder,
    OrderDraft,
    OrderValidationError,
    complete_order,
    restore_builder,
)
from orders import promos, workload
from payments import PaymentError, StripeClient
from pricing.catalog import CatalogError, validate_method
from pricing.engine import calculate_price_breakdown
from pricing.models import DeliveryMethod, Fulfillment, NailSet
from pricing.promotions import normalize_code

from .schemas import (
    CapacityUpdate,
    DeliveryMethodIn,
    ConsentRequest,
    LoginRequest,
    OrderPayload,
    OrderUpdate,
    PaymentConfirmation,
    PromoCodeIn,
    PromoCodeUpdate,
    PromoValidateRequest,
    ShapeIn,
    QuoteRequest,
    SignupRequest,
)

logger = logging.getLogger(__name__)

settings = Settings.from_env()

app = FastAPI(title="Nail Storefront API")

checkout = CheckoutService()

EDITABLE_STATUSES = ("draft", "pending_payment")


@app.on_event("startup")
async def startup():
    """Инициализация при запуске."""
    await db.init_db()
    try:
        checkout.payments = StripeClient.from_env()
        checkout.currency = checkout.payments.currency
    except PaymentError as exc:
        logger.warning("Payments are disabled: %s", exc)


# ---------- ошибки ----------

ERROR_TYPES = (
    AuthError,
    CapacityFullError,
    CatalogError,
    DraftTransitionError,
    OrderNotFoundError,
    OrderValidationError,
    PaymentError,
    PromoCodeError,
    ShapeNotFoundError,
)


async def handle_domain_error(request: Request, exc: Exception) -> JSONResponse:
    status_code = getattr(exc, "status_code", None) or 400
    if isinstance(exc, PaymentError) and not exc.status_code:
        status_code = 502
    body: dict = {"error": str(exc)}
    if isinstance(exc, DraftTransitionError) and exc.blockers:
        body["blockers"] = exc.blockers
    if isinstance(exc, CapacityFullError) and exc.next_week_start:
        body["nextWeekStart"] = exc.next_week_start.isoformat()
    if isinstance(exc, AuthError) and exc.user is not None:
        body["pendingConsent"] = exc.user.pending_consent
        body["user"] = exc.user.to_public_dict()
    if isinstance(exc, PaymentError) and exc.code:
        body["code"] = exc.code
    return JSONResponse(body, status_code=status_code)


for error_type in ERROR_TYPES:
    app.add_exception_handler(error_type, handle_domain_error)


# ---------- аутентификация ----------


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    return token.strip() if scheme.lower() == "bearer" and token.strip() else None


async def optional_auth(authorization: Optional[str] = Header(None)) -> Optional[AuthContext]:
    token = _bearer_token(authorization)
    if token is None:
        return None
    return await bootstrap_session(token, admin_emails=settings.admin_emails)


async def require_auth(authorization: Optional[str] = Header(None)) -> AuthContext:
    return await bootstrap_session(_bearer_token(authorization), admin_emails=settings.admin_emails)


async def require_admin(context: AuthContext = Depends(require_auth)) -> AuthContext:
    if not context.policy.is_admin:
        raise AuthError("Admin access required", status_code=403)
    return context


def _ensure_can_view(context: AuthContext, order) -> None:
    if not context.policy.can_view_order(order):
        raise AuthError("You do not have access to this order", status_code=403)


# ---------- каталог и цены ----------


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/catalog")
async def get_catalog():
    """Формы и способы доставки."""
    catalog = await checkout.load_catalog()
    return catalog.to_dict()


@app.post("/api/pricing/quote")
async def quote(payload: QuoteRequest, context: Optional[AuthContext] = Depends(optional_auth)):
    """Посчитать разбивку стоимости без сохранения."""
    catalog = await checkout.load_catalog()
    user_id = context.user.id if context else None
    rule = await promos.resolve_promo_code(payload.promoCode, user_id)
    breakdown = calculate_price_breakdown(
        payload.nailSets,
        payload.fulfillment,
        payload.promoCode,
        catalog=catalog,
        promotions=[rule] if rule else None,
    )
    return breakdown.to_dict()


@app.post("/api/promo/validate")
async def validate_promo(payload: PromoValidateRequest, context: Optional[AuthContext] = Depends(optional_auth)):
    catalog = await checkout.load_catalog()
    validation = await promos.validate_promo_code(
        payload.code or payload.promoCode,
        payload.nailSets,
        payload.fulfillment,
        catalog=catalog,
        user_id=context.user.id if context else None,
    )
    return validation.to_dict()


# ---------- заказы ----------


@app.post("/api/orders", status_code=201)
async def save_order(payload: OrderPayload, context: AuthContext = Depends(require_auth)):
    """Сохранить черновик или отправить его к оплате (submit=true)."""
    if payload.id:
        existing = await db.fetch_order(payload.id)
        _ensure_can_view(context, existing)
        if existing.status not in EDITABLE_STATUSES:
            raise DraftTransitionError(f"Order is {existing.status} and can no longer be edited")
        user_id = existing.user_id
    else:
        user_id = context.user.id

    draft = OrderDraft(
        user_id=user_id,
        id=payload.id,
        nail_sets=[NailSet.from_dict(item) for item in payload.nailSets if item],
        fulfillment=Fulfillment.from_value(payload.fulfillment),
        order_notes=payload.orderNotes.strip(),
        promo_code=normalize_code(payload.promoCode),
    )
    builder = OrderBuilder(draft)

    if payload.submit:
        order = await checkout.submit(builder)
    else:
        order = await checkout.save_draft(builder)
    return {"order": order.to_dict()}


@app.get("/api/orders")
async def list_orders(
    status: Optional[str] = None,
    scope: Optional[str] = None,
    context: AuthContext = Depends(require_auth),
):
    """Заказы пользователя; администратор может запросить все (scope=all)."""
    if scope == "all" and context.policy.can_view_all_orders:
        orders = await db.fetch_orders(status=status)
    else:
        orders = await db.fetch_orders(user_id=context.user.id, status=status)
    return {"orders": [order.to_dict() for order in orders], "count": len(orders)}


@app.get("/api/orders/{order_id}")
async def get_order(order_id: str, context: AuthContext = Depends(require_auth)):
    order = await db.fetch_order(order_id)
    _ensure_can_view(context, order)
    return {"order": order.to_dict()}


@app.patch("/api/orders/{order_id}")
async def update_order(order_id: str, payload: OrderUpdate, context: AuthContext = Depends(require_auth)):
    """Админское обновление: статус, заметки, трек-номер."""
    if not context.policy.can_update_orders:
        raise AuthError("Admin access required", status_code=403)
    order = await db.update_order(
        order_id,
        status=payload.status,
        admin_notes=payload.adminNotes,
        admin_images=payload.adminImages,
        discount=payload.discount,
        tracking_number=payload.trackingNumber,
    )
    return {"order": order.to_dict()}


@app.post("/api/orders/{order_id}/payment-intent")
async def create_payment_intent(order_id: str, context: AuthContext = Depends(require_auth)):
    order = await db.fetch_order(order_id)
    _ensure_can_view(context, order)
    builder = restore_builder(order)

    intent = await checkout.start_payment(builder)
    if intent is None:
        order = await db.fetch_order(order_id)
        return {"paymentRequired": False, "order": order.to_dict()}
    return {
        "paymentRequired": True,
        "paymentIntentId": intent.id,
        "clientSecret": intent.client_secret,
        "amount": intent.amount,
        "currency": intent.currency,
    }


@app.post("/api/orders/{order_id}/complete")
async def complete(order_id: str, payload: PaymentConfirmation, context: AuthContext = Depends(require_auth)):
    """
    Завершить оплату заказа.

    С paymentMethod оплата подтверждается на сервере; с paymentIntentId
    проверяется статус уже подтверждённого намерения. Администратор может
    отметить заказ оплаченным вручную.
    """
    order = await db.fetch_order(order_id)
    _ensure_can_view(context, order)
    builder = restore_builder(order)

    if payload.paymentMethod:
        order = await checkout.confirm_payment(builder, payload.paymentMethod, payload.billingDetails)
    elif payload.paymentIntentId:
        order = await checkout.complete_with_intent(builder, payload.paymentIntentId)
    elif context.policy.can_update_orders:
        order = await complete_order(order_id)
    else:
        raise OrderValidationError("Payment confirmation is required")
    return {"order": order.to_dict()}


# ---------- загрузка ----------


@app.get("/api/capacity")
async def get_capacity():
    status = await workload.check_capacity_availability()
    return status.to_dict()


@app.put("/api/capacity")
async def set_capacity(payload: CapacityUpdate, context: AuthContext = Depends(require_admin)):
    status = await workload.update_weekly_capacity(payload.weeklyCapacity)
    return status.to_dict()


# ---------- промокоды (админ) ----------


@app.get("/api/admin/promo-codes")
async def list_promo_codes(context: AuthContext = Depends(require_admin)):
    codes = await promos.list_promo_codes()
    return {"promoCodes": [promo.to_dict() for promo in codes]}


@app.post("/api/admin/promo-codes", status_code=201)
async def create_promo_code(payload: PromoCodeIn, context: AuthContext = Depends(require_admin)):
    promo = await promos.create_promo_code(payload.model_dump(), context.user.id)
    return {"promoCode": promo.to_dict()}


@app.patch("/api/admin/promo-codes/{promo_id}")
async def update_promo_code(promo_id: str, payload: PromoCodeUpdate, context: AuthContext = Depends(require_admin)):
    promo = await promos.update_promo_code(promo_id, payload.model_dump(exclude_unset=True))
    return {"promoCode": promo.to_dict()}


@app.post("/api/admin/promo-codes/{promo_id}/toggle")
async def toggle_promo_code(promo_id: str, context: AuthContext = Depends(require_admin)):
    promo = await promos.toggle_promo_code(promo_id)
    return {"promoCode": promo.to_dict()}


@app.delete("/api/admin/promo-codes/{promo_id}")
async def delete_promo_code(promo_id: str, context: AuthContext = Depends(require_admin)):
    await promos.delete_promo_code(promo_id)
    return {"success": True}


# ---------- каталог (админ) ----------


@app.get("/api/admin/shapes")
async def list_shapes(context: AuthContext = Depends(require_admin)):
    """Все формы, включая скрытые."""
    return {"shapes": await db.fetch_shapes(include_hidden=True)}


@app.put("/api/admin/shapes/{shape_id}")
async def save_shape(shape_id: str, payload: ShapeIn, context: AuthContext = Depends(require_admin)):
    await db.save_shape(
        {
            "name": shape_id,
            "display_name": payload.displayName,
            "image_url": payload.imageUrl,
            "base_price": payload.basePrice,
            "price_adjustment": payload.priceAdjustment,
            "is_visible": payload.isVisible,
            "display_order": payload.displayOrder,
        }
    )
    logger.info("Shape %s saved by %s", shape_id, context.user.id)
    return {"shapes": await db.fetch_shapes(include_hidden=True)}


@app.delete("/api/admin/shapes/{shape_id}")
async def delete_shape(shape_id: str, context: AuthContext = Depends(require_admin)):
    await db.delete_shape(shape_id)
    logger.info("Shape %s deleted by %s", shape_id, context.user.id)
    return {"success": True}


@app.put("/api/admin/delivery-methods/{method_id}")
async def save_delivery_method(
    method_id: str, payload: DeliveryMethodIn, context: AuthContext = Depends(require_admin)
):
    """Создать или заменить способ получения. Скорости проверяются как в каталоге."""
    method = DeliveryMethod.from_dict(method_id, payload.model_dump(exclude={"displayOrder"}))
    validate_method(method)
    data = method.to_dict()
    await db.save_delivery_method(data, payload.displayOrder)
    logger.info("Delivery method %s saved by %s", method_id, context.user.id)
    return {"deliveryMethod": data}


# ---------- аккаунты ----------


@app.post("/auth/signup", status_code=201)
async def signup(payload: SignupRequest):
    result = await accounts.signup(
        payload.name,
        payload.email,
        payload.password,
        payload.dob,
        parent_email=payload.parent_email,
        parent_phone=payload.parent_phone,
    )
    return result.to_dict()


@app.post("/auth/login")
async def login(payload: LoginRequest):
    user, session = await accounts.login(payload.email, payload.password)
    return {"user": user.to_public_dict(), "token": session.token}


@app.post("/auth/logout")
async def logout(context: AuthContext = Depends(require_auth)):
    await accounts.logout(context.token)
    return {"success": True}


@app.post("/auth/consent")
async def consent(payload: ConsentRequest):
    user, log = await accounts.approve_consent(payload.token, payload.approver_name)
    return {"user": user.to_public_dict(), "consentLog": log.to_public_dict()}


@app.get("/auth/consent/logs")
async def consent_logs(context: AuthContext = Depends(require_admin)):
    logs = await accounts.list_consent_logs()
    return {"logs": logs, "count": len(logs)}

"""Модели базы данных."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from pricing.models import Fulfillment, NailSet, NailSizes
from pricing.promotions import PromoRule

ORDER_STATUSES = frozenset(
    {
        "draft",
        "submitted",
        "pending",
        "pending_payment",
        "paid",
        "in_progress",
        "completed",
        "delivered",
        "cancelled",
    }
)

PAID_STATUSES = frozenset({"paid", "in_progress", "completed", "delivered"})
# Заказы, которые больше нельзя оплатить
CLOSED_STATUSES = PAID_STATUSES | {"cancelled"}

ROLES = frozenset({"customer", "admin"})


def _iso(value: Optional[datetime | date]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class User:
    """Модель пользователя."""

    id: str
    name: str
    email: str
    password_hash: str
    dob: Optional[date] = None
    age: Optional[int] = None
    role: Optional[str] = None
    parent_email: Optional[str] = None
    parent_phone: Optional[str] = None
    pending_consent: bool = False
    consented_at: Optional[datetime] = None
    consent_approver: Optional[str] = None
    consent_channel: Optional[str] = None
    telegram_id: Optional[int] = None
    created_at: Optional[datetime] = None

    def to_public_dict(self) -> dict:
        """Данные пользователя без хеша пароля."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "dob": _iso(self.dob),
            "age": self.age,
            "role": self.role,
            "parentEmail": self.parent_email,
            "parentPhone": self.parent_phone,
            "pendingConsent": self.pending_consent,
            "consentedAt": _iso(self.consented_at),
            "consentApprover": self.consent_approver,
            "consentChannel": self.consent_channel,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class Session:
    token: str
    user_id: str
    created_at: Optional[datetime] = None


@dataclass
class ConsentLog:
    """Запись о согласии родителя (или самого пользователя)."""

    id: str
    user_id: str
    status: str  # pending, approved
    channel: str  # self, email, sms
    contact: Optional[str] = None
    token: Optional[str] = None
    approver_name: Optional[str] = None
    created_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "status": self.status,
            "channel": self.channel,
            "contact": self.contact,
            "approverName": self.approver_name,
            "createdAt": _iso(self.created_at),
            "approvedAt": _iso(self.approved_at),
        }


@dataclass
class Order:
    """Модель заказа вместе с наборами."""

    user_id: str
    id: Optional[str] = None
    status: str = "draft"
    nail_sets: list[NailSet] = field(default_factory=list)
    fulfillment: Fulfillment = field(default_factory=Fulfillment)
    customer_sizes: NailSizes = field(default_factory=NailSizes)
    order_notes: str = ""
    promo_code: Optional[str] = None
    promo_code_id: Optional[str] = None
    pricing: Optional[dict] = None  # снимок разбивки на момент оформления
    payment_intent_id: Optional[str] = None
    discount: float = 0.0
    tracking_number: str = ""
    admin_notes: Optional[str] = None
    admin_images: list[str] = field(default_factory=list)
    estimated_fulfillment_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    production_jobs: list[dict] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def total_cents(self) -> int:
        if not self.pricing:
            return 0
        return int(self.pricing.get("totalCents") or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "status": self.status,
            "nailSets": [nail_set.to_dict() for nail_set in self.nail_sets],
            "fulfillment": self.fulfillment.to_dict(),
            "customerSizes": self.customer_sizes.to_dict(),
            "orderNotes": self.order_notes,
            "promoCode": self.promo_code,
            "pricing": self.pricing,
            "paymentIntentId": self.payment_intent_id,
            "discount": self.discount,
            "trackingNumber": self.tracking_number,
            "adminNotes": self.admin_notes,
            "adminImages": list(self.admin_images),
            "estimatedFulfillmentDate": _iso(self.estimated_fulfillment_date),
            "paidAt": _iso(self.paid_at),
            "productionJobs": list(self.production_jobs),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class PromoCode:
    """Промокод в том виде, как он хранится в базе."""

    id: str
    code: str
    type: str
    value: Optional[float] = None
    description: Optional[str] = None
    min_order_amount: Optional[float] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    max_uses: Optional[int] = None
    uses_count: int = 0
    per_user_limit: Optional[int] = None
    combinable: bool = True
    active: bool = True
    created_by_admin_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_rule(self, user_uses_count: int = 0) -> PromoRule:
        return PromoRule.from_dict({**self.to_dict(), "user_uses_count": user_uses_count})

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "type": self.type,
            "value": self.value,
            "description": self.description,
            "min_order_amount": self.min_order_amount,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "max_uses": self.max_uses,
            "uses_count": self.uses_count,
            "per_user_limit": self.per_user_limit,
            "combinable": self.combinable,
            "active": self.active,
            "created_by_admin_id": self.created_by_admin_id,
            "created_at": _iso(self.created_at),
        }


@dataclass
class WeeklyCapacity:
    week_start: date
    weekly_capacity: int
    orders_count: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.weekly_capacity - self.orders_count)

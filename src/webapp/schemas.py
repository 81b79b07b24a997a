"""Схемы запросов HTTP API.

Наборы и доставка принимаются как словари: их разбор с подстановкой
значений по умолчанию выполняют модели пакета pricing.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class QuoteRequest(BaseModel):
    nailSets: List[dict] = Field(default_factory=list, description="Nail sets in the draft")
    fulfillment: Optional[dict] = Field(None, description="Delivery method, speed and address")
    promoCode: Optional[str] = Field(None, description="Promo code to apply")


class PromoValidateRequest(QuoteRequest):
    code: Optional[str] = Field(None, description="Promo code to validate")


class OrderPayload(BaseModel):
    id: Optional[str] = Field(None, description="Existing order id when updating a draft")
    nailSets: List[dict] = Field(default_factory=list)
    fulfillment: Optional[dict] = None
    orderNotes: str = Field("", description="Free-text notes for the whole order")
    promoCode: Optional[str] = None
    submit: bool = Field(False, description="Submit for payment instead of saving a draft")


class OrderUpdate(BaseModel):
    status: Optional[str] = None
    adminNotes: Optional[str] = None
    adminImages: Optional[List[str]] = None
    discount: Optional[float] = Field(None, ge=0)
    trackingNumber: Optional[str] = None


class PaymentConfirmation(BaseModel):
    paymentMethod: Optional[str] = Field(None, description="Stripe payment method id (pm_...)")
    paymentIntentId: Optional[str] = None
    billingDetails: Optional[dict] = None


class PromoCodeIn(BaseModel):
    code: str = Field(..., min_length=1)
    type: str = Field(..., description="percentage, fixed_amount, free_shipping, free_order, fixed_price_item")
    value: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    min_order_amount: Optional[float] = Field(None, ge=0)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    max_uses: Optional[int] = Field(None, ge=0)
    per_user_limit: Optional[int] = Field(None, ge=0)
    combinable: bool = True
    active: bool = True


class PromoCodeUpdate(BaseModel):
    code: Optional[str] = None
    type: Optional[str] = None
    value: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    min_order_amount: Optional[float] = Field(None, ge=0)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    max_uses: Optional[int] = Field(None, ge=0)
    per_user_limit: Optional[int] = Field(None, ge=0)
    combinable: Optional[bool] = None
    active: Optional[bool] = None


class ShapeIn(BaseModel):
    displayName: Optional[str] = None
    imageUrl: Optional[str] = None
    basePrice: float = Field(..., ge=0)
    priceAdjustment: float = 0
    isVisible: bool = True
    displayOrder: int = 0


class SpeedOptionIn(BaseModel):
    label: Optional[str] = None
    description: Optional[str] = None
    tagline: Optional[str] = None
    fee: float = Field(0, ge=0)
    days: Optional[int] = Field(None, ge=0)


class DeliveryMethodIn(BaseModel):
    label: str = Field(..., min_length=1)
    description: Optional[str] = None
    defaultSpeed: Optional[str] = None
    speedOptions: Dict[str, SpeedOptionIn] = Field(default_factory=dict)
    displayOrder: int = 0


class CapacityUpdate(BaseModel):
    weeklyCapacity: int = Field(..., ge=0)


class SignupRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    dob: Optional[str] = None
    parent_email: Optional[str] = None
    parent_phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ConsentRequest(BaseModel):
    token: Optional[str] = None
    approver_name: Optional[str] = None

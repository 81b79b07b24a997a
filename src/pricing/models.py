"""Модели каталога, наборов ногтей и расчёта стоимости."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional

from .money import ZERO, from_cents, to_decimal

# Порядок скоростей: от медленной к быстрой
SPEED_ORDER = ("standard", "priority", "rush")

# Способы получения, для которых нужен адрес
TRANSPORT_METHODS = frozenset({"delivery", "shipping", "local_courier"})

ADDRESS_REQUIRED_FIELDS = ("name", "line1", "city", "postal_code")

FINGER_KEYS = ("thumb", "index", "middle", "ring", "pinky")


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _clean_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def clean_id(value: Any) -> Optional[str]:
    """Идентификатор из каталога: только строка или целое, остальное -> None."""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return None
    return str(value).strip() or None


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Первое непустое значение по списку ключей (snake_case и camelCase)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass(frozen=True)
class Shape:
    """Форма ногтей из каталога."""

    id: str
    name: str
    base_price: Decimal
    image_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Shape":
        return cls(
            id=str(data["id"]),
            name=str(_pick(data, "name", "display_name", default=data["id"])),
            base_price=to_decimal(_pick(data, "base_price", "basePrice")),
            image_url=_pick(data, "image_url", "imageUrl"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "basePrice": float(self.base_price),
            "imageUrl": self.image_url,
        }


@dataclass(frozen=True)
class SpeedOption:
    """Вариант скорости выполнения (standard / priority / rush)."""

    id: str
    label: str
    fee: Decimal = ZERO
    days: Optional[int] = None
    description: str = ""
    tagline: Optional[str] = None

    @classmethod
    def from_dict(cls, speed_id: str, data: Mapping[str, Any]) -> "SpeedOption":
        days = data.get("days")
        return cls(
            id=str(data.get("id") or speed_id),
            label=str(_pick(data, "label", "display_name", default=speed_id)),
            fee=to_decimal(_pick(data, "fee", "price")),
            days=int(days) if days is not None else None,
            description=data.get("description") or "",
            tagline=data.get("tagline") or None,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "description": self.description,
            "fee": float(self.fee),
            "days": self.days,
            "tagline": self.tagline,
        }


@dataclass(frozen=True)
class DeliveryMethod:
    """Способ получения заказа и доступные для него скорости."""

    id: str
    label: str
    default_speed: str
    speed_options: Mapping[str, SpeedOption] = field(default_factory=dict)
    description: str = ""

    @property
    def requires_address(self) -> bool:
        return self.id in TRANSPORT_METHODS

    def resolve_speed(self, speed_id: Optional[str]) -> Optional[SpeedOption]:
        speed_id = clean_id(speed_id)
        if not speed_id:
            return None
        return self.speed_options.get(speed_id)

    @property
    def default_option(self) -> SpeedOption:
        return self.speed_options[self.default_speed]

    @classmethod
    def from_dict(cls, method_id: str, data: Mapping[str, Any]) -> "DeliveryMethod":
        raw_options = _pick(data, "speed_options", "speedOptions", default={}) or {}
        options = {
            key: value if isinstance(value, SpeedOption) else SpeedOption.from_dict(key, value)
            for key, value in raw_options.items()
        }
        default_speed = _pick(data, "default_speed", "defaultSpeed")
        if not default_speed and options:
            default_speed = next(iter(options))
        return cls(
            id=str(data.get("id") or method_id),
            label=str(data.get("label") or method_id),
            default_speed=str(default_speed or "standard"),
            speed_options=options,
            description=data.get("description") or "",
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "description": self.description,
            "defaultSpeed": self.default_speed,
            "requiresAddress": self.requires_address,
            "speedOptions": {key: option.to_dict() for key, option in self.speed_options.items()},
        }


@dataclass
class Upload:
    """Загруженный эскиз дизайна. Принадлежит ровно одному набору."""

    id: str
    file_name: Optional[str] = None
    data: Optional[str] = None

    @classmethod
    def from_value(cls, value: Any) -> Optional["Upload"]:
        if not value:
            return None
        if isinstance(value, Upload):
            return cls(id=value.id, file_name=value.file_name, data=value.data)
        if isinstance(value, str):
            return cls(id=new_id("upload"), data=value)
        if isinstance(value, Mapping):
            data = _pick(value, "data", "base64", "content", "url")
            if not data:
                return None
            return cls(
                id=str(value.get("id") or new_id("upload")),
                file_name=_pick(value, "file_name", "fileName"),
                data=data,
            )
        return None

    def to_dict(self) -> dict:
        return {"id": self.id, "fileName": self.file_name, "data": self.data}


@dataclass
class NailSizes:
    mode: str = "standard"  # standard | perSet
    values: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_value(cls, value: Any) -> "NailSizes":
        if isinstance(value, NailSizes):
            return cls(mode=value.mode, values=dict(value.values))
        if not isinstance(value, Mapping):
            return cls()
        mode = "perSet" if value.get("mode") in ("perSet", "custom") else "standard"
        raw_values = value.get("values")
        values: dict[str, str] = {}
        if isinstance(raw_values, Mapping):
            values = {
                str(finger): size if isinstance(size, str) else ""
                for finger, size in raw_values.items()
            }
        elif isinstance(raw_values, list):
            for finger, size in zip(FINGER_KEYS, raw_values):
                values[finger] = size if isinstance(size, str) else ""
        return cls(mode=mode, values=values)

    def to_dict(self) -> dict:
        return {"mode": self.mode, "values": dict(self.values)}


@dataclass
class NailSet:
    """Позиция заказа: один набор ногтей."""

    id: str
    shape_id: Optional[str] = None
    quantity: int = 1
    name: Optional[str] = None
    description: str = ""
    design_uploads: list[Upload] = field(default_factory=list)
    set_notes: str = ""
    sizes: NailSizes = field(default_factory=NailSizes)
    requires_follow_up: bool = False

    @property
    def is_complete(self) -> bool:
        """Набор можно заказывать: есть эскиз, описание или пометка «уточнить»."""
        return bool(self.design_uploads) or bool(self.description.strip()) or self.requires_follow_up

    @classmethod
    def empty(cls) -> "NailSet":
        return cls(id=new_id("set"))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NailSet":
        uploads = _pick(data, "design_uploads", "designUploads", default=[])
        name = _clean_text(data.get("name")) or None
        return cls(
            id=str(data.get("id") or new_id("set")),
            shape_id=clean_id(_pick(data, "shape_id", "shapeId")),
            quantity=safe_quantity(data.get("quantity")),
            name=name,
            description=_clean_text(data.get("description")),
            design_uploads=[
                upload
                for upload in (Upload.from_value(item) for item in uploads or [])
                if upload is not None
            ],
            set_notes=_clean_text(_pick(data, "set_notes", "setNotes")),
            sizes=NailSizes.from_value(data.get("sizes")),
            requires_follow_up=bool(_pick(data, "requires_follow_up", "requiresFollowUp", default=False)),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "shapeId": self.shape_id,
            "quantity": self.quantity,
            "description": self.description,
            "designUploads": [upload.to_dict() for upload in self.design_uploads],
            "setNotes": self.set_notes,
            "sizes": self.sizes.to_dict(),
            "requiresFollowUp": self.requires_follow_up,
        }


def safe_quantity(value: Any) -> int:
    """Количество наборов: целое >= 1, иначе 1."""
    if isinstance(value, bool):
        return 1
    try:
        quantity = int(value)
    except (TypeError, ValueError, OverflowError):
        return 1
    return quantity if quantity >= 1 else 1


@dataclass
class Address:
    name: str = ""
    line1: str = ""
    line2: Optional[str] = None
    city: str = ""
    state: str = ""
    postal_code: str = ""
    label: Optional[str] = None

    def missing_fields(self) -> list[str]:
        return [name for name in ADDRESS_REQUIRED_FIELDS if not getattr(self, name).strip()]

    @classmethod
    def from_value(cls, value: Any) -> Optional["Address"]:
        if isinstance(value, Address):
            return cls(**value.to_kwargs())
        if not isinstance(value, Mapping):
            return None
        return cls(
            name=_clean_text(value.get("name")),
            line1=_clean_text(value.get("line1")),
            line2=_clean_text(value.get("line2")) or None,
            city=_clean_text(value.get("city")),
            state=_clean_text(value.get("state")),
            postal_code=_clean_text(_pick(value, "postal_code", "postalCode")),
            label=_clean_text(value.get("label")) or None,
        )

    def to_kwargs(self) -> dict:
        return {
            "name": self.name,
            "line1": self.line1,
            "line2": self.line2,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "label": self.label,
        }

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "name": self.name,
            "line1": self.line1,
            "line2": self.line2,
            "city": self.city,
            "state": self.state,
            "postalCode": self.postal_code,
        }


@dataclass
class Fulfillment:
    """Выбранный способ и скорость получения заказа."""

    method: Optional[str] = None
    speed: Optional[str] = None
    address: Optional[Address] = None

    @property
    def requires_address(self) -> bool:
        return self.method in TRANSPORT_METHODS

    @classmethod
    def from_value(cls, value: Any) -> "Fulfillment":
        if isinstance(value, Fulfillment):
            return cls(method=value.method, speed=value.speed, address=Address.from_value(value.address))
        if not isinstance(value, Mapping):
            return cls()
        method = clean_id(value.get("method"))
        address = Address.from_value(value.get("address"))
        if method not in TRANSPORT_METHODS:
            address = None
        return cls(method=method, speed=clean_id(value.get("speed")), address=address)

    def to_dict(self) -> dict:
        address = self.address.to_dict() if self.address and self.requires_address else None
        return {"method": self.method, "speed": self.speed, "address": address}


@dataclass(frozen=True)
class LineItem:
    id: str
    label: str
    amount_cents: int

    @property
    def amount(self) -> Decimal:
        return from_cents(self.amount_cents)

    def to_dict(self) -> dict:
        return {"id": self.id, "label": self.label, "amount": float(self.amount), "amountCents": self.amount_cents}


@dataclass(frozen=True)
class PricingWarning:
    """Некритичное замечание к расчёту (неизвестная форма, плохой промокод...)."""

    code: str
    message: str
    ref: Optional[str] = None

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "ref": self.ref}


@dataclass(frozen=True)
class AppliedPromo:
    code: str
    type: str
    description: str
    discount_cents: int
    promo_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.promo_id,
            "code": self.code,
            "type": self.type,
            "description": self.description,
            "discount": float(from_cents(self.discount_cents)),
        }


@dataclass(frozen=True)
class PriceBreakdown:
    """Разбивка стоимости заказа. Всегда вычисляется, никогда не редактируется."""

    line_items: tuple[LineItem, ...]
    sets_subtotal_cents: int
    fulfillment_fee_cents: int
    discount_cents: int
    total_cents: int
    estimated_completion_days: int
    method: str
    speed: str
    promo: Optional[AppliedPromo] = None
    warnings: tuple[PricingWarning, ...] = ()

    @property
    def subtotal_cents(self) -> int:
        return self.sets_subtotal_cents + self.fulfillment_fee_cents

    @property
    def total(self) -> Decimal:
        return from_cents(self.total_cents)

    @property
    def discount(self) -> Decimal:
        return from_cents(self.discount_cents)

    def warning_codes(self) -> list[str]:
        return [warning.code for warning in self.warnings]

    def to_dict(self) -> dict:
        return {
            "lineItems": [item.to_dict() for item in self.line_items],
            "setsSubtotal": float(from_cents(self.sets_subtotal_cents)),
            "fulfillmentFee": float(from_cents(self.fulfillment_fee_cents)),
            "subtotal": float(from_cents(self.subtotal_cents)),
            "discount": float(self.discount),
            "total": float(self.total),
            "totalCents": self.total_cents,
            "estimatedCompletionDays": self.estimated_completion_days,
            "fulfillment": {"method": self.method, "speed": self.speed},
            "promo": self.promo.to_dict() if self.promo else None,
            "warnings": [warning.to_dict() for warning in self.warnings],
        }

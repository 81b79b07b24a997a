"""Черновик заказа и его состояния.

Жизненный цикл: EMPTY -> COMPOSING -> READY_FOR_PAYMENT -> PAID.
Из любого состояния, кроме PAID, черновик можно выбросить (DISCARDED).
Редактирование набора идёт через буфер-копию: save() переносит буфер в
список, cancel() его выбрасывает, не трогая сохранённые наборы.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pricing.catalog import Catalog
from pricing.engine import calculate_price_breakdown
from pricing.models import Address, Fulfillment, NailSet, NailSizes, PriceBreakdown, Upload, new_id, safe_quantity
from pricing.promotions import PromoRuleSet, normalize_code

logger = logging.getLogger(__name__)


class DraftState(str, Enum):
    EMPTY = "empty"
    COMPOSING = "composing"
    READY_FOR_PAYMENT = "ready_for_payment"
    PAID = "paid"
    DISCARDED = "discarded"


STATUS_BY_STATE = {
    DraftState.EMPTY: "draft",
    DraftState.COMPOSING: "draft",
    DraftState.READY_FOR_PAYMENT: "pending_payment",
    DraftState.PAID: "paid",
    DraftState.DISCARDED: "cancelled",
}

BLOCKER_MESSAGES = {
    "no_sets": "Add at least one nail set",
    "incomplete_set": "Each nail set needs a design upload, a description, or a follow-up request",
    "missing_fulfillment": "Choose a delivery method and speed",
    "missing_address": "Please provide a full delivery address",
}


class DraftTransitionError(Exception):
    """Переход черновика запрещён в текущем состоянии."""

    status_code = 409

    def __init__(self, message: str, *, blockers: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.blockers = blockers or []


@dataclass(frozen=True)
class Readiness:
    blockers: tuple[str, ...] = ()
    incomplete_set_ids: tuple[str, ...] = ()
    missing_address_fields: tuple[str, ...] = ()

    @property
    def ready(self) -> bool:
        return not self.blockers

    def messages(self) -> list[str]:
        return [BLOCKER_MESSAGES[code] for code in self.blockers]

    def to_dict(self) -> dict:
        return {
            "ready": self.ready,
            "blockers": list(self.blockers),
            "messages": self.messages(),
            "incompleteSetIds": list(self.incomplete_set_ids),
            "missingAddressFields": list(self.missing_address_fields),
        }


@dataclass
class OrderDraft:
    user_id: str
    id: Optional[str] = None
    nail_sets: list[NailSet] = field(default_factory=list)
    fulfillment: Fulfillment = field(default_factory=Fulfillment)
    order_notes: str = ""
    promo_code: Optional[str] = None


def check_readiness(draft: OrderDraft, catalog: Optional[Catalog] = None) -> Readiness:
    """Что мешает перейти к оплате. Каждое условие проверяется независимо."""
    blockers: list[str] = []
    if not draft.nail_sets:
        blockers.append("no_sets")

    incomplete = tuple(nail_set.id for nail_set in draft.nail_sets if not nail_set.is_complete)
    if incomplete:
        blockers.append("incomplete_set")

    selection = draft.fulfillment
    method = catalog.get_method(selection.method) if catalog else None
    if not selection.method or not selection.speed:
        blockers.append("missing_fulfillment")
    elif catalog is not None and (method is None or method.resolve_speed(selection.speed) is None):
        blockers.append("missing_fulfillment")

    missing_fields: tuple[str, ...] = ()
    requires_address = method.requires_address if method is not None else selection.requires_address
    if requires_address:
        address = selection.address or Address()
        missing_fields = tuple(address.missing_fields())
        if missing_fields:
            blockers.append("missing_address")

    return Readiness(
        blockers=tuple(blockers),
        incomplete_set_ids=incomplete,
        missing_address_fields=missing_fields,
    )


def duplicate_nail_set(source: NailSet) -> NailSet:
    """Копия набора с новым id, новыми id эскизов и суффиксом в названии."""
    clone = copy.deepcopy(source)
    clone.id = new_id("set")
    clone.design_uploads = [
        Upload(id=new_id("upload"), file_name=upload.file_name, data=upload.data)
        for upload in source.design_uploads
    ]
    clone.name = f"{source.name} (Copy)" if source.name else "Copy"
    return clone


class NailSetEditor:
    """Буфер редактирования одного набора."""

    EDITABLE_FIELDS = ("shape_id", "quantity", "name", "description", "set_notes", "requires_follow_up")

    def __init__(self, builder: "OrderBuilder", buffer: NailSet, *, is_new: bool) -> None:
        self._builder = builder
        self.buffer = buffer
        self.is_new = is_new
        self._closed = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise DraftTransitionError("This editor has already been closed")

    def update(self, **fields: Any) -> "NailSetEditor":
        self._ensure_open()
        for name, value in fields.items():
            if name == "sizes":
                self.buffer.sizes = NailSizes.from_value(value)
            elif name == "quantity":
                self.buffer.quantity = safe_quantity(value)
            elif name in ("description", "set_notes"):
                setattr(self.buffer, name, value.strip() if isinstance(value, str) else "")
            elif name == "name":
                self.buffer.name = (value.strip() or None) if isinstance(value, str) else None
            elif name == "requires_follow_up":
                self.buffer.requires_follow_up = bool(value)
            elif name in self.EDITABLE_FIELDS:
                setattr(self.buffer, name, value)
            else:
                raise ValueError(f"Unknown nail set field: {name}")
        return self

    def add_upload(self, data: str, file_name: Optional[str] = None) -> Upload:
        self._ensure_open()
        upload = Upload(id=new_id("upload"), file_name=file_name, data=data)
        self.buffer.design_uploads.append(upload)
        return upload

    def remove_upload(self, upload_id: str) -> None:
        self._ensure_open()
        self.buffer.design_uploads = [upload for upload in self.buffer.design_uploads if upload.id != upload_id]

    def save(self) -> NailSet:
        """Перенести буфер в список наборов черновика."""
        self._ensure_open()
        self._builder._commit_set(copy.deepcopy(self.buffer))
        self._closed = True
        return self.buffer

    def cancel(self) -> None:
        self._closed = True


class OrderBuilder:
    """Машина состояний черновика заказа."""

    def __init__(self, draft: OrderDraft, state: Optional[DraftState] = None) -> None:
        self.draft = draft
        self.state = state or (DraftState.COMPOSING if draft.nail_sets else DraftState.EMPTY)
        self.payment_intent_id: Optional[str] = None
        self.last_payment_error: Optional[str] = None

    @classmethod
    def start(cls, user_id: str) -> "OrderBuilder":
        return cls(OrderDraft(user_id=user_id))

    @property
    def status(self) -> str:
        return STATUS_BY_STATE[self.state]

    @property
    def is_terminal(self) -> bool:
        return self.state in (DraftState.PAID, DraftState.DISCARDED)

    def _ensure_editable(self) -> None:
        if self.is_terminal:
            raise DraftTransitionError(f"Order draft is {self.state.value} and can no longer be edited")

    def _touch(self) -> None:
        # Любая правка возвращает черновик к сборке
        self.state = DraftState.COMPOSING if self.draft.nail_sets else DraftState.EMPTY

    def get_set(self, set_id: str) -> NailSet:
        for nail_set in self.draft.nail_sets:
            if nail_set.id == set_id:
                return nail_set
        raise KeyError(set_id)

    # ---------- наборы ----------

    def start_new_set(self) -> NailSetEditor:
        self._ensure_editable()
        return NailSetEditor(self, NailSet.empty(), is_new=True)

    def edit_set(self, set_id: str) -> NailSetEditor:
        self._ensure_editable()
        return NailSetEditor(self, copy.deepcopy(self.get_set(set_id)), is_new=False)

    def _commit_set(self, nail_set: NailSet) -> None:
        self._ensure_editable()
        for index, existing in enumerate(self.draft.nail_sets):
            if existing.id == nail_set.id:
                self.draft.nail_sets[index] = nail_set
                break
        else:
            self.draft.nail_sets.append(nail_set)
        self._touch()

    def add_set(self, nail_set: NailSet) -> NailSet:
        self._commit_set(copy.deepcopy(nail_set))
        return nail_set

    def remove_set(self, set_id: str) -> None:
        self._ensure_editable()
        self.get_set(set_id)
        self.draft.nail_sets = [nail_set for nail_set in self.draft.nail_sets if nail_set.id != set_id]
        self._touch()

    def duplicate_set(self, set_id: str) -> NailSet:
        self._ensure_editable()
        clone = duplicate_nail_set(self.get_set(set_id))
        self.draft.nail_sets.append(clone)
        self._touch()
        return clone

    # ---------- доставка, заметки, промокод ----------

    def set_fulfillment(self, method: str, speed: Optional[str] = None, address: Any = None) -> None:
        self._ensure_editable()
        self.draft.fulfillment = Fulfillment.from_value({"method": method, "speed": speed, "address": address})
        self._touch()

    def set_order_notes(self, notes: Optional[str]) -> None:
        self._ensure_editable()
        self.draft.order_notes = notes.strip() if isinstance(notes, str) else ""
        self._touch()

    def set_promo_code(self, code: Optional[str]) -> None:
        self._ensure_editable()
        self.draft.promo_code = normalize_code(code)
        self._touch()

    # ---------- расчёт и переходы ----------

    def readiness(self, catalog: Optional[Catalog] = None) -> Readiness:
        return check_readiness(self.draft, catalog)

    def price(self, catalog: Catalog, promotions: PromoRuleSet = None) -> PriceBreakdown:
        return calculate_price_breakdown(
            self.draft.nail_sets,
            self.draft.fulfillment,
            self.draft.promo_code,
            catalog=catalog,
            promotions=promotions,
        )

    def proceed_to_payment(self, order_id: Optional[str] = None, catalog: Optional[Catalog] = None) -> None:
        if self.state not in (DraftState.EMPTY, DraftState.COMPOSING):
            raise DraftTransitionError(f"Cannot proceed to payment from state {self.state.value}")
        report = self.readiness(catalog)
        if not report.ready:
            raise DraftTransitionError("; ".join(report.messages()), blockers=list(report.blockers))
        if order_id:
            self.draft.id = order_id
        self.state = DraftState.READY_FOR_PAYMENT
        logger.info("Order draft %s is ready for payment", self.draft.id)

    def payment_failed(self, reason: str) -> None:
        """Оплата не прошла: остаёмся в READY_FOR_PAYMENT для повтора."""
        if self.state is not DraftState.READY_FOR_PAYMENT:
            raise DraftTransitionError(f"No payment in progress (state {self.state.value})")
        self.last_payment_error = reason
        logger.warning("Payment failed for order %s: %s", self.draft.id, reason)

    def mark_paid(self, payment_intent_id: Optional[str] = None) -> None:
        if self.state is not DraftState.READY_FOR_PAYMENT:
            raise DraftTransitionError(f"Cannot mark order paid from state {self.state.value}")
        self.payment_intent_id = payment_intent_id
        self.last_payment_error = None
        self.state = DraftState.PAID

    def discard(self) -> None:
        if self.state is DraftState.PAID:
            raise DraftTransitionError("A paid order cannot be discarded")
        self.state = DraftState.DISCARDED

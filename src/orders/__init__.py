"""Черновики заказов, промокоды, загрузка и оформление."""

from .checkout import CheckoutService, OrderValidationError, complete_order, restore_builder
from .draft import DraftState, DraftTransitionError, NailSetEditor, OrderBuilder, OrderDraft, check_readiness
from .session import DraftSession
from .workload import CapacityFullError

__all__ = [
    "CapacityFullError",
    "CheckoutService",
    "DraftSession",
    "DraftState",
    "DraftTransitionError",
    "NailSetEditor",
    "OrderBuilder",
    "OrderDraft",
    "OrderValidationError",
    "check_readiness",
    "complete_order",
    "restore_builder",
]

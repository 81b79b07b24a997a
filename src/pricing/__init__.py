"""Каталог, промокоды и расчёт стоимости заказа."""

from .catalog import BUNDLED_CATALOG, Catalog, CatalogError, load_catalog
from .engine import calculate_price_breakdown
from .models import (
    Address,
    DeliveryMethod,
    Fulfillment,
    NailSet,
    NailSizes,
    PriceBreakdown,
    PricingWarning,
    Shape,
    SpeedOption,
    Upload,
)
from .money import format_currency
from .promotions import PromoRule, PromoType

__all__ = [
    "Address",
    "BUNDLED_CATALOG",
    "Catalog",
    "CatalogError",
    "DeliveryMethod",
    "Fulfillment",
    "NailSet",
    "NailSizes",
    "PriceBreakdown",
    "PricingWarning",
    "PromoRule",
    "PromoType",
    "Shape",
    "SpeedOption",
    "Upload",
    "calculate_price_breakdown",
    "format_currency",
    "load_catalog",
]

"""Каталог форм и способов получения заказа."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

from .models import SPEED_ORDER, DeliveryMethod, Shape, clean_id

logger = logging.getLogger(__name__)

DEFAULT_METHOD = "pickup"


class CatalogError(Exception):
    """Некорректная конфигурация каталога."""


# Встроенный каталог на случай недоступной базы
BUNDLED_SHAPES: list[dict] = [
    {"id": "almond", "name": "Almond", "basePrice": 45},
    {"id": "coffin", "name": "Coffin", "basePrice": 45},
    {"id": "square", "name": "Square", "basePrice": 40},
    {"id": "oval", "name": "Oval", "basePrice": 40},
    {"id": "stiletto", "name": "Stiletto", "basePrice": 50},
]

BUNDLED_DELIVERY_METHODS: dict[str, dict] = {
    "pickup": {
        "id": "pickup",
        "label": "Pick Up",
        "description": "Ready in 10 to 14 days in 92127",
        "defaultSpeed": "standard",
        "speedOptions": {
            "standard": {"label": "Standard", "description": "10 to 14 days", "fee": 0, "days": 14, "tagline": "Included"},
            "priority": {"label": "Priority", "description": "3 to 5 days", "fee": 5, "days": 5, "tagline": "Get your nails faster!"},
            "rush": {"label": "Rush", "description": "Next day", "fee": 10, "days": 1, "tagline": "Fast-track your order!"},
        },
    },
    "delivery": {
        "id": "delivery",
        "label": "Local Delivery",
        "description": "Ready in 10 to 14 days in 92127",
        "defaultSpeed": "standard",
        "speedOptions": {
            "standard": {"label": "Standard", "description": "10 to 14 days", "fee": 5, "days": 14, "tagline": "Included"},
            "priority": {"label": "Priority", "description": "3 to 5 days", "fee": 10, "days": 5, "tagline": "Get your nails faster!"},
            "rush": {"label": "Rush", "description": "Next day", "fee": 15, "days": 1, "tagline": "Fast-track your order!"},
        },
    },
    "shipping": {
        "id": "shipping",
        "label": "Shipping",
        "description": "Ready to ship in 10 to 14 days",
        "defaultSpeed": "standard",
        "speedOptions": {
            "standard": {"label": "Standard", "description": "10 to 14 days", "fee": 7, "days": 14, "tagline": "Included"},
            "priority": {"label": "Priority", "description": "3 to 5 days", "fee": 15, "days": 5, "tagline": "Get your nails faster!"},
            "rush": {"label": "Rush", "description": "Next day", "fee": 20, "days": 1, "tagline": "Fast-track your order!"},
        },
    },
}


def validate_method(method: DeliveryMethod) -> None:
    """Проверить инварианты способа получения, иначе CatalogError."""
    if not method.speed_options:
        raise CatalogError(f"Delivery method '{method.id}' has no speed options")
    if method.default_speed not in method.speed_options:
        raise CatalogError(
            f"Default speed '{method.default_speed}' is not configured for '{method.id}'"
        )

    # Более быстрая скорость не может обещать больший срок
    previous: Optional[int] = None
    for speed_id in SPEED_ORDER:
        option = method.speed_options.get(speed_id)
        if option is None or option.days is None:
            continue
        if previous is not None and option.days > previous:
            raise CatalogError(
                f"Speed '{speed_id}' of '{method.id}' is slower than a cheaper tier"
            )
        previous = option.days


@dataclass(frozen=True)
class Catalog:
    shapes: Mapping[str, Shape] = field(default_factory=dict)
    methods: Mapping[str, DeliveryMethod] = field(default_factory=dict)

    def get_shape(self, shape_id: Optional[str]) -> Optional[Shape]:
        shape_id = clean_id(shape_id)
        if not shape_id:
            return None
        return self.shapes.get(shape_id)

    def get_method(self, method_id: Optional[str]) -> Optional[DeliveryMethod]:
        method_id = clean_id(method_id)
        if not method_id:
            return None
        return self.methods.get(method_id)

    @property
    def default_method(self) -> DeliveryMethod:
        if DEFAULT_METHOD in self.methods:
            return self.methods[DEFAULT_METHOD]
        return next(iter(self.methods.values()))

    @classmethod
    def build(
        cls,
        shapes: Iterable[Any],
        methods: Mapping[str, Any],
    ) -> "Catalog":
        """Собрать каталог из сырых данных и проверить его."""
        shape_map: dict[str, Shape] = {}
        for item in shapes:
            shape = item if isinstance(item, Shape) else Shape.from_dict(item)
            shape_map[shape.id] = shape

        method_map: dict[str, DeliveryMethod] = {}
        for key, item in methods.items():
            method = item if isinstance(item, DeliveryMethod) else DeliveryMethod.from_dict(key, item)
            validate_method(method)
            method_map[method.id] = method

        if not method_map:
            raise CatalogError("Catalog has no delivery methods")
        return cls(shapes=shape_map, methods=method_map)

    def to_dict(self) -> dict:
        return {
            "shapes": [shape.to_dict() for shape in self.shapes.values()],
            "deliveryMethods": {key: method.to_dict() for key, method in self.methods.items()},
        }


BUNDLED_CATALOG = Catalog.build(BUNDLED_SHAPES, BUNDLED_DELIVERY_METHODS)


async def load_catalog(
    fetch_shapes: Callable[[], Awaitable[list]],
    fetch_fulfillment_config: Callable[[], Awaitable[Mapping[str, Any]]],
) -> Catalog:
    """Загрузить каталог у поставщика; при любой ошибке берётся встроенный."""
    try:
        shapes = await fetch_shapes()
        methods = await fetch_fulfillment_config()
        if not shapes or not methods:
            logger.warning("Catalog provider returned empty data, using bundled catalog")
            return BUNDLED_CATALOG
        return Catalog.build(shapes, methods)
    except Exception:
        logger.exception("Catalog fetch failed, using bundled catalog")
        return BUNDLED_CATALOG

"""Модуль работы с базой данных."""

from . import db
from .db import OrderNotFoundError, PromoCodeError, fetch_order, fetch_orders, get_user

__all__ = ["db", "OrderNotFoundError", "PromoCodeError", "fetch_order", "fetch_orders", "get_user"]

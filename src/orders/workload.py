"""Недельная загрузка мастерской: сколько заказов ещё можно принять."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import aiosqlite

from database import db

logger = logging.getLogger(__name__)

ALMOST_FULL_THRESHOLD = 3


class CapacityFullError(Exception):
    """На этой неделе заказы больше не принимаются."""

    status_code = 409

    def __init__(self, message: str, *, next_week_start: Optional[date] = None) -> None:
        super().__init__(message)
        self.next_week_start = next_week_start


def _today() -> date:
    return datetime.now(timezone.utc).date()


def week_start(day: Optional[date] = None) -> date:
    """Понедельник недели, в которую попадает day."""
    day = day or _today()
    return day - timedelta(days=day.weekday())


def next_week_start(day: Optional[date] = None) -> date:
    return week_start(day) + timedelta(days=7)


def format_next_availability(day: Optional[date]) -> str:
    if day is None:
        return "soon"
    return f"{day:%A, %B} {day.day}"


@dataclass(frozen=True)
class CapacityStatus:
    week_start: date
    weekly_capacity: int
    orders_count: int
    remaining: int
    available: bool = True
    is_almost_full: bool = False

    @property
    def is_full(self) -> bool:
        return not self.available

    @property
    def next_week_start(self) -> date:
        return self.week_start + timedelta(days=7)

    def to_dict(self) -> dict:
        return {
            "weekStart": self.week_start.isoformat(),
            "nextWeekStart": self.next_week_start.isoformat(),
            "nextAvailability": format_next_availability(self.next_week_start),
            "weeklyCapacity": self.weekly_capacity,
            "ordersCount": self.orders_count,
            "remaining": self.remaining,
            "available": self.available,
            "isAlmostFull": self.is_almost_full,
            "isFull": self.is_full,
        }


async def get_weekly_capacity(day: Optional[date] = None) -> CapacityStatus:
    record = await db.get_or_create_weekly_capacity(week_start(day))
    remaining = record.remaining
    return CapacityStatus(
        week_start=record.week_start,
        weekly_capacity=record.weekly_capacity,
        orders_count=record.orders_count,
        remaining=remaining,
        available=remaining > 0,
        is_almost_full=0 < remaining <= ALMOST_FULL_THRESHOLD,
    )


async def check_capacity_availability(day: Optional[date] = None) -> CapacityStatus:
    """Есть ли места на текущей неделе.

    Если хранилище недоступно, заказ не блокируется: возвращается
    «свободно» с условным остатком.
    """
    try:
        return await get_weekly_capacity(day)
    except aiosqlite.Error:
        logger.exception("Failed to check weekly capacity, allowing submission")
        return CapacityStatus(
            week_start=week_start(day),
            weekly_capacity=0,
            orders_count=0,
            remaining=999,
        )


async def ensure_capacity(day: Optional[date] = None) -> CapacityStatus:
    status = await check_capacity_availability(day)
    if not status.available:
        raise CapacityFullError(
            "We're at capacity for this week. "
            f"Orders open again {format_next_availability(status.next_week_start)}.",
            next_week_start=status.next_week_start,
        )
    return status


async def increment_weekly_orders(day: Optional[date] = None) -> CapacityStatus:
    await db.increment_weekly_orders(week_start(day))
    return await get_weekly_capacity(day)


async def update_weekly_capacity(capacity: int, day: Optional[date] = None) -> CapacityStatus:
    await db.update_weekly_capacity(week_start(day), capacity)
    return await get_weekly_capacity(day)


async def reset_current_week(day: Optional[date] = None) -> CapacityStatus:
    await db.reset_weekly_orders(week_start(day))
    return await get_weekly_capacity(day)

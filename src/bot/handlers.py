"""Обработчики команд Telegram-бота: статусы заказов и загрузка недели."""

from __future__ import annotations

import html
from typing import Optional

from aiogram import Router
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.types import BotCommand, Message

from auth.policy import AccessPolicy, Role, resolve_policy
from config import Settings
from database import OrderNotFoundError, db
from database.models import ORDER_STATUSES, Order
from orders import workload
from orders.workload import CapacityStatus
from pricing.money import format_currency, from_cents

router = Router()

settings = Settings.from_env()

MAX_ORDERS_IN_LIST = 20

STATUS_ICONS = {
    "draft": "📝",
    "pending_payment": "⏳",
    "paid": "💳",
    "in_progress": "🛠",
    "completed": "✅",
    "delivered": "📦",
    "cancelled": "❌",
}

# Меню команд: (команда, описание)
CUSTOMER_COMMANDS = (
    ("start", "Help"),
    ("orders", "List your orders, optionally by status"),
    ("order", "Order details by id"),
    ("link", "Link your storefront account"),
)
ADMIN_COMMANDS = CUSTOMER_COMMANDS + (("capacity", "This week's workload"),)


def bot_commands(is_admin: bool = False) -> list[BotCommand]:
    commands = ADMIN_COMMANDS if is_admin else CUSTOMER_COMMANDS
    return [BotCommand(command=name, description=description) for name, description in commands]


async def policy_for(telegram_id: int) -> AccessPolicy:
    """Права пользователя Telegram: список ADMIN_TELEGRAM_IDS или привязанный аккаунт."""
    user = await db.get_user_by_telegram_id(telegram_id)
    if telegram_id in settings.admin_telegram_ids:
        return AccessPolicy(user.id if user else None, Role.ADMIN, "telegram")
    return resolve_policy(user, admin_emails=settings.admin_emails)


def format_order_line(order: Order) -> str:
    icon = STATUS_ICONS.get(order.status, "•")
    total = format_currency(from_cents(order.total_cents))
    sets = len(order.nail_sets)
    return f"{icon} <code>{html.escape(order.id or '')}</code> {order.status}, {sets} set(s), {total}"


def format_order_details(order: Order) -> str:
    lines = [
        f"<b>Order</b> <code>{html.escape(order.id or '')}</code>",
        f"Status: {order.status}",
    ]
    for item in (order.pricing or {}).get("lineItems", []):
        lines.append(f"  {html.escape(item['label'])}: {format_currency(item['amount'])}")
    if order.pricing:
        lines.append(f"Total: <b>{format_currency(order.pricing.get('total'))}</b>")
    if order.fulfillment.method:
        lines.append(f"Fulfillment: {order.fulfillment.method} / {order.fulfillment.speed}")
    if order.estimated_fulfillment_date:
        lines.append(f"Estimated: {order.estimated_fulfillment_date:%Y-%m-%d}")
    if order.tracking_number:
        lines.append(f"Tracking: {html.escape(order.tracking_number)}")
    if order.order_notes:
        lines.append(f"Notes: {html.escape(order.order_notes)}")
    return "\n".join(lines)


def format_capacity(status: CapacityStatus) -> str:
    lines = [
        f"Week of {status.week_start:%Y-%m-%d}",
        f"Orders: {status.orders_count} / {status.weekly_capacity}",
        f"Remaining: {status.remaining}",
    ]
    if status.is_full:
        lines.append(f"Full. Next opening: {workload.format_next_availability(status.next_week_start)}")
    elif status.is_almost_full:
        lines.append("Almost full")
    return "\n".join(lines)


@router.message(CommandStart())
async def cmd_start(message: Message) -> None:
    """Обработчик команды /start."""
    user = message.from_user
    if not user:
        return

    policy = await policy_for(user.id)
    text = (
        f"Hi, {html.escape(user.first_name or 'there')}! 👋\n\n"
        "/orders [status] - list orders\n"
        "/order &lt;id&gt; - order details\n"
        "/link &lt;token&gt; - link your storefront account"
    )
    if policy.is_admin:
        text += "\n/capacity - this week's workload"
    await message.answer(text)


@router.message(Command("link"))
async def cmd_link(message: Message, command: CommandObject) -> None:
    """Привязать аккаунт витрины по токену сессии."""
    token = (command.args or "").strip()
    if not token or not message.from_user:
        await message.answer("Usage: /link &lt;session token&gt;")
        return
    session = await db.get_session(token)
    if session is None:
        await message.answer("Session not found or expired.")
        return
    await db.link_telegram_id(session.user_id, message.from_user.id)
    await message.answer("✅ Account linked.")


@router.message(Command("orders"))
async def cmd_orders(message: Message, command: CommandObject) -> None:
    if not message.from_user:
        return
    policy = await policy_for(message.from_user.id)
    if policy.user_id is None and not policy.is_admin:
        await message.answer("Link your account first: /link &lt;token&gt;")
        return

    status: Optional[str] = (command.args or "").strip() or None
    if status and status not in ORDER_STATUSES:
        await message.answer(f"Unknown status. Use one of: {', '.join(sorted(ORDER_STATUSES))}")
        return

    user_id = None if policy.can_view_all_orders else policy.user_id
    orders = await db.fetch_orders(user_id=user_id, status=status)
    if not orders:
        await message.answer("No orders found.")
        return
    lines = [format_order_line(order) for order in orders[:MAX_ORDERS_IN_LIST]]
    if len(orders) > MAX_ORDERS_IN_LIST:
        lines.append(f"…and {len(orders) - MAX_ORDERS_IN_LIST} more")
    await message.answer("\n".join(lines))


@router.message(Command("order"))
async def cmd_order(message: Message, command: CommandObject) -> None:
    if not message.from_user:
        return
    order_id = (command.args or "").strip()
    if not order_id:
        await message.answer("Usage: /order &lt;id&gt;")
        return

    policy = await policy_for(message.from_user.id)
    try:
        order = await db.fetch_order(order_id)
    except OrderNotFoundError:
        await message.answer("Order not found.")
        return
    if not policy.can_view_order(order):
        await message.answer("Order not found.")
        return
    await message.answer(format_order_details(order))


@router.message(Command("capacity"))
async def cmd_capacity(message: Message) -> None:
    if not message.from_user:
        return
    policy = await policy_for(message.from_user.id)
    if not policy.can_manage_capacity:
        await message.answer("Admins only.")
        return
    status = await workload.check_capacity_availability()
    await message.answer(format_capacity(status))

"""Telegram-бот статусов заказов: меню команд и запуск polling."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError
from aiogram.types import BotCommandScopeChat

# Добавляем src в путь для импортов
ROOT_DIR = Path(__file__).resolve().parents[2]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# Загружаем переменные окружения
load_dotenv(ROOT_DIR / ".env")

from bot.handlers import bot_commands, router
from config import Settings
from database import db
from orders import workload

logger = logging.getLogger(__name__)


async def setup_commands(bot: Bot, admin_ids: frozenset[int]) -> None:
    """Общее меню для клиентов, расширенное (с /capacity) в чатах администраторов."""
    await bot.set_my_commands(bot_commands())
    for admin_id in sorted(admin_ids):
        try:
            await bot.set_my_commands(bot_commands(is_admin=True), scope=BotCommandScopeChat(chat_id=admin_id))
        except TelegramAPIError as exc:
            # Администратор ещё не открывал чат с ботом
            logger.warning("Admin menu for %s was not set: %s", admin_id, exc)


async def main() -> None:
    """Запуск бота."""
    settings = Settings.from_env()
    if not settings.telegram_bot_token:
        raise ValueError("TELEGRAM_BOT_TOKEN не задан в переменных окружения")
    if not settings.admin_telegram_ids:
        logger.warning("ADMIN_TELEGRAM_IDS is empty, admin commands are available only to linked admin accounts")

    await db.init_db()
    status = await workload.check_capacity_availability()

    bot = Bot(
        token=settings.telegram_bot_token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML)
    )
    await setup_commands(bot, settings.admin_telegram_ids)

    dp = Dispatcher()
    dp.include_router(router)

    logger.info(
        "Order status bot started: week of %s, %d/%d orders",
        status.week_start.isoformat(),
        status.orders_count,
        status.weekly_capacity,
    )
    await dp.start_polling(bot)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())

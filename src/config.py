"""Настройки приложения из .env / переменных окружения."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _split(value: Optional[str]) -> list[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    db_path: Optional[str] = None
    stripe_secret_key: Optional[str] = None
    stripe_currency: str = "usd"
    admin_emails: frozenset[str] = field(default_factory=frozenset)
    admin_telegram_ids: frozenset[int] = field(default_factory=frozenset)
    telegram_bot_token: Optional[str] = None
    default_weekly_capacity: int = 50
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        telegram_ids = set()
        for item in _split(os.getenv("ADMIN_TELEGRAM_IDS")):
            if item.lstrip("-").isdigit():
                telegram_ids.add(int(item))
        return cls(
            db_path=os.getenv("STOREFRONT_DB_PATH") or None,
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
            stripe_currency=(os.getenv("STRIPE_CURRENCY") or "usd").lower(),
            admin_emails=frozenset(email.lower() for email in _split(os.getenv("ADMIN_EMAILS"))),
            admin_telegram_ids=frozenset(telegram_ids),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
            default_weekly_capacity=int(os.getenv("DEFAULT_WEEKLY_CAPACITY") or 50),
            port=int(os.getenv("PORT") or 8000),
        )

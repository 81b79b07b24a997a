"""Вспомогательные функции для e-mail, телефонов и возраста."""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Optional

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_FORMATTING_RE = re.compile(r"[\s\-().]")


def normalize_email(value: Any) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def is_email(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    return bool(EMAIL_RE.match(value.strip()))


def is_phone(value: Any) -> bool:
    """Телефон в формате США (10 или 11 цифр) либо E.164."""
    if not isinstance(value, str) or not value:
        return False
    cleaned = PHONE_FORMATTING_RE.sub("", value.strip())
    if cleaned.startswith("+"):
        return bool(re.fullmatch(r"\+\d{10,14}", cleaned))
    return bool(re.fullmatch(r"\d{10}|1\d{10}", cleaned))


def normalize_phone(phone: Any) -> Any:
    """Привести номер к E.164 (+1XXXXXXXXXX для США)."""
    if not isinstance(phone, str) or not phone:
        return phone
    trimmed = phone.strip()
    cleaned = PHONE_FORMATTING_RE.sub("", trimmed)
    if cleaned.startswith("+") and re.fullmatch(r"\+\d{10,14}", cleaned):
        return cleaned

    digits = re.sub(r"\D", "", trimmed)
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if trimmed.startswith("+"):
        return cleaned
    if len(digits) >= 10:
        return f"+1{digits[-10:]}"
    return f"+{digits}"


def format_phone_for_display(phone: Any) -> Any:
    if not isinstance(phone, str) or not phone:
        return phone
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    return phone if phone.startswith("+") else f"+{digits}"


def parse_dob(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def calculate_age(dob: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    age = today.year - dob.year
    if (today.month, today.day) < (dob.month, dob.day):
        age -= 1
    return age

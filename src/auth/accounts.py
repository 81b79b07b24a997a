"""Регистрация, вход и родительское согласие."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from database import db
from database.models import ConsentLog, Session, User

from .helpers import calculate_age, is_phone, normalize_email, normalize_phone, parse_dob

logger = logging.getLogger(__name__)

ADULT_AGE = 18
PBKDF2_ITERATIONS = 260_000


class AuthError(Exception):
    """Ошибка аутентификации или регистрации."""

    def __init__(self, message: str, *, status_code: int = 400, user: Optional[User] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.user = user


def hash_password(password: str, *, iterations: int = PBKDF2_ITERATIONS) -> str:
    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, iterations)
    return "pbkdf2_sha256${}${}${}".format(
        iterations,
        base64.b64encode(salt).decode(),
        base64.b64encode(digest).decode(),
    )


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt, expected = encoded.split("$")
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), base64.b64decode(salt), int(iterations))
    return hmac.compare_digest(base64.b64encode(digest).decode(), expected)


@dataclass
class SignupResult:
    user: User
    consent_log: ConsentLog
    consent_token: Optional[str] = None

    @property
    def consent_required(self) -> bool:
        return self.user.pending_consent

    def to_dict(self) -> dict:
        data = {
            "user": self.user.to_public_dict(),
            "consentRequired": self.consent_required,
            "consentLog": self.consent_log.to_public_dict(),
        }
        if self.consent_token:
            data["consentToken"] = self.consent_token
        return data


async def signup(
    name: str,
    email: str,
    password: str,
    dob: str,
    *,
    parent_email: Optional[str] = None,
    parent_phone: Optional[str] = None,
) -> SignupResult:
    """
    Зарегистрировать пользователя.

    Несовершеннолетним нужен контакт родителя: аккаунт создаётся
    с ожидающим согласием и токеном для его подтверждения.
    """
    if not name or not email or not password or not dob:
        raise AuthError("Missing required fields: name, email, password, dob")

    birth_date = parse_dob(dob)
    if birth_date is None:
        raise AuthError("Invalid date of birth")
    age = calculate_age(birth_date)

    normalized_email = normalize_email(email)
    parent_email = normalize_email(parent_email) or None
    if parent_phone:
        parent_phone = normalize_phone(parent_phone) if is_phone(parent_phone) else parent_phone.strip()
    parent_phone = parent_phone or None

    is_minor = age < ADULT_AGE
    if is_minor and not parent_email and not parent_phone:
        raise AuthError("Parent or guardian contact is required for minors")

    if await db.get_user_by_email(normalized_email):
        raise AuthError("Account already exists for this email", status_code=409)

    now = datetime.now(timezone.utc)
    clean_name = name.strip()
    user = User(
        id=str(uuid.uuid4()),
        name=clean_name,
        email=normalized_email,
        password_hash=hash_password(password),
        dob=birth_date,
        age=age,
        role=None,
        parent_email=parent_email,
        parent_phone=parent_phone,
        pending_consent=is_minor,
        consented_at=None if is_minor else now,
        consent_approver=None if is_minor else clean_name,
        consent_channel=None if is_minor else "self",
    )
    consent_token = uuid.uuid4().hex if is_minor else None
    consent_log = ConsentLog(
        id=str(uuid.uuid4()),
        user_id=user.id,
        status="pending" if is_minor else "approved",
        channel=("email" if parent_email else "sms") if is_minor else "self",
        contact=(parent_email or parent_phone) if is_minor else normalized_email,
        token=consent_token,
        approver_name=None if is_minor else clean_name,
        approved_at=None if is_minor else now,
    )

    await db.create_user(user, consent_log)
    logger.info("User %s signed up (consent required: %s)", user.id, is_minor)
    return SignupResult(user=user, consent_log=consent_log, consent_token=consent_token)


async def login(email: str, password: str) -> tuple[User, Session]:
    if not email or not password:
        raise AuthError("Missing email or password")

    user = await db.get_user_by_email(normalize_email(email))
    if user is None or not verify_password(password, user.password_hash):
        raise AuthError("Invalid credentials", status_code=401)
    if user.pending_consent:
        raise AuthError("Parental consent is still pending", status_code=403, user=user)

    session = await db.create_session(user.id)
    return user, session


async def logout(token: str) -> None:
    await db.delete_session(token)


async def approve_consent(token: str, approver_name: Optional[str] = None) -> tuple[User, ConsentLog]:
    if not token:
        raise AuthError("Missing consent token")

    log = await db.get_consent_log_by_token(token)
    if log is None:
        raise AuthError("Consent request not found", status_code=404)
    if log.status == "approved":
        raise AuthError("Consent already approved", status_code=409)
    if await db.get_user(log.user_id) is None:
        raise AuthError("Child account not found for consent request", status_code=404)

    approver = approver_name.strip() if isinstance(approver_name, str) and approver_name.strip() else None
    await db.approve_consent(log, approver)
    logger.info("Consent approved for user %s", log.user_id)

    user = await db.get_user(log.user_id)
    log.status = "approved"
    log.approver_name = approver
    log.approved_at = user.consented_at
    log.token = None
    return user, log


async def list_consent_logs(user_id: Optional[str] = None) -> list[dict]:
    """Журнал согласий без токенов."""
    return [log.to_public_dict() for log in await db.list_consent_logs(user_id)]

"""Старт сессии одной упорядоченной последовательностью шагов."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Mapping, Optional

from database import db
from database.models import User

from .accounts import AuthError
from .policy import AccessPolicy, resolve_policy

logger = logging.getLogger(__name__)

AuthListener = Callable[[str, "AuthContext"], Awaitable[None]]


class AuthEvents:
    """Простая подписка на события входа и выхода."""

    def __init__(self) -> None:
        self._listeners: list[AuthListener] = []

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def emit(self, event: str, context: "AuthContext") -> None:
        for listener in list(self._listeners):
            await listener(event, context)


auth_events = AuthEvents()


@dataclass
class AuthContext:
    token: str
    user: User
    policy: AccessPolicy
    unsubscribe: Optional[Callable[[], None]] = None


async def bootstrap_session(
    token: Optional[str],
    *,
    claims: Optional[Mapping[str, object]] = None,
    admin_emails: Iterable[str] = (),
    listener: Optional[AuthListener] = None,
    events: AuthEvents = auth_events,
) -> AuthContext:
    """
    Восстановить сессию по токену.

    Шаги выполняются строго по порядку: сессия -> профиль -> права ->
    подписка на события. Права не вычисляются до загрузки профиля.
    """
    if not token:
        raise AuthError("Authentication required", status_code=401)

    session = await db.get_session(token)
    if session is None:
        raise AuthError("Session expired or invalid", status_code=401)

    user = await db.get_user(session.user_id)
    if user is None:
        raise AuthError("Account not found", status_code=401)

    policy = resolve_policy(user, claims=claims, admin_emails=admin_emails)
    context = AuthContext(token=token, user=user, policy=policy)

    if listener is not None:
        context.unsubscribe = events.subscribe(listener)
    await events.emit("session_restored", context)
    logger.debug("Session restored for user %s as %s", user.id, policy.role.value)
    return context

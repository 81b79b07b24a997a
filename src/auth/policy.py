"""Права доступа, вычисляемые один раз при старте сессии."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Optional

from database.models import Order, User


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


@dataclass(frozen=True)
class AccessPolicy:
    user_id: Optional[str]
    role: Role
    source: str = "default"

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def can_view_all_orders(self) -> bool:
        return self.is_admin

    @property
    def can_manage_promos(self) -> bool:
        return self.is_admin

    @property
    def can_update_orders(self) -> bool:
        return self.is_admin

    @property
    def can_manage_capacity(self) -> bool:
        return self.is_admin

    def can_view_order(self, order: Order) -> bool:
        return self.is_admin or (self.user_id is not None and order.user_id == self.user_id)

    def to_dict(self) -> dict:
        return {"userId": self.user_id, "role": self.role.value, "isAdmin": self.is_admin}


ANONYMOUS = AccessPolicy(user_id=None, role=Role.CUSTOMER, source="anonymous")


def _as_role(value: object) -> Optional[Role]:
    if isinstance(value, str):
        try:
            return Role(value.strip().lower())
        except ValueError:
            return None
    return None


def resolve_policy(
    user: Optional[User],
    *,
    claims: Optional[Mapping[str, object]] = None,
    admin_emails: Iterable[str] = (),
) -> AccessPolicy:
    """
    Определить роль пользователя.

    Порядок источников: роль в claims токена, затем колонка role профиля,
    затем список администраторов из ADMIN_EMAILS.
    """
    if user is None:
        return ANONYMOUS

    role = _as_role((claims or {}).get("role"))
    if role is not None:
        return AccessPolicy(user.id, role, "claims")

    role = _as_role(user.role)
    if role is not None:
        return AccessPolicy(user.id, role, "profile")

    if user.email and user.email.lower() in {email.lower() for email in admin_emails}:
        return AccessPolicy(user.id, Role.ADMIN, "allowlist")

    return AccessPolicy(user.id, Role.CUSTOMER)

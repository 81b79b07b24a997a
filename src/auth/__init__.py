"""Аккаунты, согласие родителей и права доступа."""

from .accounts import AuthError, approve_consent, list_consent_logs, login, logout, signup
from .helpers import is_email, is_phone, normalize_phone
from .policy import AccessPolicy, Role, resolve_policy
from .session import AuthContext, bootstrap_session

__all__ = [
    "AccessPolicy",
    "AuthContext",
    "AuthError",
    "Role",
    "approve_consent",
    "bootstrap_session",
    "is_email",
    "is_phone",
    "list_consent_logs",
    "login",
    "logout",
    "normalize_phone",
    "resolve_policy",
    "signup",
]

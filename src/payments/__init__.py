"""Пакет интеграции с платёжным провайдером Stripe."""

from .stripe_client import PaymentError, PaymentIntent, StripeClient

__all__ = [
    "PaymentError",
    "PaymentIntent",
    "StripeClient",
]

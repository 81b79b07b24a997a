"""Клиент Stripe API для оплаты заказов."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

import httpx
from dotenv import load_dotenv


API_BASE_URL = "https://api.stripe.com/v1"
ENV_VAR_SECRET_KEY = "STRIPE_SECRET_KEY"
ENV_VAR_CURRENCY = "STRIPE_CURRENCY"

load_dotenv()


class PaymentError(Exception):
    """Базовое исключение для ошибок при обращении к платёжному провайдеру."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


@dataclass(frozen=True)
class PaymentIntent:
    """Платёжное намерение Stripe."""

    id: str
    client_secret: Optional[str]
    status: str
    amount: int
    currency: str
    metadata: dict = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentIntent":
        return cls(
            id=data["id"],
            client_secret=data.get("client_secret"),
            status=data.get("status") or "",
            amount=int(data.get("amount") or 0),
            currency=data.get("currency") or "usd",
            metadata=dict(data.get("metadata") or {}),
        )


def _flatten(prefix: str, value: dict) -> dict[str, str]:
    """Вложенный словарь -> form-поля вида prefix[key][sub]=value."""
    fields: dict[str, str] = {}
    for key, item in value.items():
        name = f"{prefix}[{key}]"
        if isinstance(item, dict):
            fields.update(_flatten(name, item))
        elif item is not None:
            fields[name] = str(item)
    return fields


class StripeClient:
    """Клиент для обращения к Stripe API."""

    def __init__(self, secret_key: str, *, timeout: float = 15.0, currency: str = "usd") -> None:
        self._secret_key = secret_key
        self._timeout = timeout
        self.currency = currency

    def _request(self, method: str, path: str, **kwargs) -> dict:
        """Базовый метод выполнения HTTP-запроса к API."""

        url = f"{API_BASE_URL}{path}"
        headers = {
            "Authorization": f"Bearer {self._secret_key}",
            "Accept": "application/json",
        }

        try:
            response = httpx.request(
                method,
                url,
                headers=headers,
                timeout=self._timeout,
                **kwargs,
            )
        except httpx.HTTPError as exc:
            raise PaymentError(f"Network error while calling {url}: {exc}") from exc

        payload = response.json() if response.content else {}
        if response.status_code != httpx.codes.OK:
            error = payload.get("error") or {}
            raise PaymentError(
                error.get("message") or f"Stripe API error {response.status_code}",
                status_code=response.status_code,
                code=error.get("code") or error.get("decline_code"),
            )

        return payload

    @classmethod
    def from_env(
        cls,
        *,
        timeout: float = 15.0,
        env_var: str = ENV_VAR_SECRET_KEY,
        currency_var: str = ENV_VAR_CURRENCY,
    ) -> "StripeClient":
        """Создать клиента, считав ключ из .env / переменных окружения."""

        secret_key = os.getenv(env_var)
        if not secret_key:
            raise PaymentError(
                f"Stripe secret key is missing from {env_var}. "
                "Create a .env file and set STRIPE_SECRET_KEY."
            )
        currency = (os.getenv(currency_var) or "usd").lower()
        return cls(secret_key=secret_key, timeout=timeout, currency=currency)

    def create_payment_intent(
        self,
        amount_cents: int,
        *,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentIntent:
        """Создать платёжное намерение на сумму в центах."""

        if amount_cents <= 0:
            raise PaymentError("Payment amount must be positive")
        data = {
            "amount": str(amount_cents),
            "currency": currency or self.currency,
            "automatic_payment_methods[enabled]": "true",
        }
        if metadata:
            data.update(_flatten("metadata", metadata))
        payload = self._request("POST", "/payment_intents", data=data)
        return PaymentIntent.from_dict(payload)

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        payload = self._request("GET", f"/payment_intents/{intent_id}")
        return PaymentIntent.from_dict(payload)

    def confirm_payment(
        self,
        intent_id: str,
        *,
        payment_method: str,
        billing_details: Optional[dict] = None,
    ) -> PaymentIntent:
        """
        Подтвердить оплату.

        Args:
            intent_id: ID платёжного намерения
            payment_method: ID способа оплаты (pm_...)
            billing_details: Имя, e-mail, адрес плательщика

        Returns:
            Обновлённое платёжное намерение. Отказ банка -> PaymentError.
        """
        data = {"payment_method": payment_method}
        if billing_details:
            data.update(_flatten("payment_method_data[billing_details]", billing_details))
        payload = self._request("POST", f"/payment_intents/{intent_id}/confirm", data=data)
        return PaymentIntent.from_dict(payload)

from __future__ import annotations

from dataclasses import replace

import pytest

from database import db
from payments import PaymentError, PaymentIntent
from pricing.models import NailSet


class FakePayments:
    """Платёжный провайдер в памяти с тем же интерфейсом, что у StripeClient."""

    currency = "usd"

    def __init__(self, *, decline: bool = False, status: str = "succeeded") -> None:
        self.decline = decline
        self.status = status
        self.created: list[tuple[int, str, dict]] = []
        self.confirmed: list[str] = []
        self.intents: dict[str, PaymentIntent] = {}

    def create_payment_intent(self, amount_cents, *, currency=None, metadata=None):
        self.created.append((amount_cents, currency, metadata))
        intent_id = f"pi_test_{len(self.created)}"
        intent = PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret",
            status="requires_payment_method",
            amount=amount_cents,
            currency=currency or self.currency,
            metadata={key: str(value) for key, value in (metadata or {}).items()},
        )
        self.intents[intent_id] = intent
        return intent

    def confirm_payment(self, intent_id, *, payment_method, billing_details=None):
        self.confirmed.append(intent_id)
        if self.decline:
            raise PaymentError("Your card was declined.", status_code=402, code="card_declined")
        return self.retrieve_payment_intent(intent_id)

    def retrieve_payment_intent(self, intent_id):
        if intent_id not in self.intents:
            raise PaymentError(f"No such payment_intent: '{intent_id}'", status_code=404, code="resource_missing")
        return replace(self.intents[intent_id], status=self.status)


@pytest.fixture
def fake_payments() -> FakePayments:
    return FakePayments()


@pytest.fixture
def payments_factory():
    return FakePayments


@pytest.fixture
async def storefront_db(tmp_path, monkeypatch):
    """Чистая база во временном каталоге с засеянным каталогом."""
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "storefront.db")
    await db.init_db()
    return db


@pytest.fixture
def almond_set() -> NailSet:
    return NailSet(id="set-almond", shape_id="almond", quantity=2, name=None, description="Pink chrome")

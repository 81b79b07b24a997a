import pytest
from fastapi.testclient import TestClient

import webapp.app as app_module
from config import Settings
from database import db

ADMIN_EMAIL = "owner@example.com"
ADDRESS = {"name": "Abri", "line1": "1 Main St", "city": "San Diego", "postalCode": "92127"}
ORDER = {
    "nailSets": [{"id": "set-1", "shapeId": "almond", "quantity": 2, "description": "Pink chrome"}],
    "fulfillment": {"method": "delivery", "speed": "rush", "address": ADDRESS},
}


@pytest.fixture
def payments(payments_factory):
    return payments_factory()


@pytest.fixture
def client(tmp_path, monkeypatch, payments):
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "api.db")
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    monkeypatch.setattr(app_module, "settings", Settings(admin_emails=frozenset({ADMIN_EMAIL})))
    monkeypatch.setattr(app_module.checkout, "payments", payments)
    with TestClient(app_module.app) as test_client:
        yield test_client


def register(client, email, dob="1990-05-17"):
    response = client.post(
        "/auth/signup", json={"name": "Test", "email": email, "password": "pw", "dob": dob}
    )
    assert response.status_code == 201
    token = client.post("/auth/login", json={"email": email, "password": "pw"}).json()["token"]
    return {"Authorization": f"Bearer {token}"}


def test_health_and_catalog(client):
    assert client.get("/health").json() == {"status": "ok"}

    catalog = client.get("/api/catalog").json()
    assert [shape["id"] for shape in catalog["shapes"]] == ["almond", "coffin", "square", "oval", "stiletto"]
    assert catalog["deliveryMethods"]["shipping"]["requiresAddress"] is True


def test_quote_without_account(client):
    response = client.post("/api/pricing/quote", json={**ORDER, "promoCode": "BOGUS"})

    body = response.json()
    assert response.status_code == 200
    assert body["total"] == 105.0
    assert body["warnings"][0]["code"] == "invalid_promo_code"


def test_orders_require_a_session(client):
    assert client.get("/api/orders").status_code == 401
    assert client.get("/api/orders", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_draft_submit_pay_flow(client, payments):
    headers = register(client, "abri@example.com")

    draft = client.post("/api/orders", json=ORDER, headers=headers)
    assert draft.status_code == 201
    order_id = draft.json()["order"]["id"]
    assert draft.json()["order"]["status"] == "draft"

    submitted = client.post("/api/orders", json={**ORDER, "id": order_id, "submit": True}, headers=headers)
    assert submitted.json()["order"]["status"] == "pending_payment"
    assert submitted.json()["order"]["pricing"]["totalCents"] == 10500

    intent = client.post(f"/api/orders/{order_id}/payment-intent", headers=headers).json()
    assert intent["paymentRequired"] is True
    assert intent["amount"] == 10500
    assert payments.created[0][2]["order_id"] == order_id

    paid = client.post(f"/api/orders/{order_id}/complete", json={"paymentMethod": "pm_card_visa"}, headers=headers)
    assert paid.status_code == 200
    assert paid.json()["order"]["status"] == "paid"
    assert paid.json()["order"]["productionJobs"][0]["nailSetId"] == "set-1"

    listing = client.get("/api/orders", headers=headers).json()
    assert listing["count"] == 1

    again = client.post("/api/orders", json={**ORDER, "id": order_id}, headers=headers)
    assert again.status_code == 409


def test_submit_reports_blockers(client):
    headers = register(client, "abri@example.com")
    incomplete = {**ORDER, "fulfillment": {"method": "shipping", "speed": "standard"}, "submit": True}

    response = client.post("/api/orders", json=incomplete, headers=headers)

    assert response.status_code == 409
    assert response.json()["blockers"] == ["missing_address"]


def test_declined_card_is_reported(client, payments):
    payments.decline = True
    headers = register(client, "abri@example.com")
    order_id = client.post("/api/orders", json={**ORDER, "submit": True}, headers=headers).json()["order"]["id"]
    client.post(f"/api/orders/{order_id}/payment-intent", headers=headers)

    response = client.post(
        f"/api/orders/{order_id}/complete", json={"paymentMethod": "pm_card_chargeDeclined"}, headers=headers
    )

    assert response.status_code == 402
    assert response.json()["code"] == "card_declined"
    order = client.get(f"/api/orders/{order_id}", headers=headers).json()["order"]
    assert order["status"] == "pending_payment"


def test_customers_cannot_see_each_other(client):
    owner = register(client, "abri@example.com")
    stranger = register(client, "eve@example.com")
    order_id = client.post("/api/orders", json=ORDER, headers=owner).json()["order"]["id"]

    assert client.get(f"/api/orders/{order_id}", headers=stranger).status_code == 403
    assert client.get("/api/orders?scope=all", headers=stranger).json()["count"] == 0
    assert client.get("/api/orders/missing", headers=owner).status_code == 404


def test_admin_manages_orders_and_promos(client):
    admin = register(client, ADMIN_EMAIL)
    customer = register(client, "abri@example.com")
    order_id = client.post("/api/orders", json=ORDER, headers=customer).json()["order"]["id"]

    assert client.get("/api/orders?scope=all", headers=admin).json()["count"] == 1
    updated = client.patch(
        f"/api/orders/{order_id}", json={"status": "in_progress", "trackingNumber": "1Z999"}, headers=admin
    )
    assert updated.json()["order"]["status"] == "in_progress"
    assert client.patch(f"/api/orders/{order_id}", json={"status": "paid"}, headers=customer).status_code == 403

    created = client.post(
        "/api/admin/promo-codes", json={"code": "welcome10", "type": "percentage", "value": 10}, headers=admin
    )
    assert created.status_code == 201
    promo_id = created.json()["promoCode"]["id"]
    assert client.get("/api/admin/promo-codes", headers=customer).status_code == 403

    validation = client.post("/api/promo/validate", json={**ORDER, "code": "WELCOME10"}, headers=customer).json()
    assert validation["valid"] is True
    assert validation["discount"] == 9.0

    toggled = client.post(f"/api/admin/promo-codes/{promo_id}/toggle", headers=admin).json()
    assert toggled["promoCode"]["active"] is False
    assert client.post("/api/promo/validate", json={**ORDER, "code": "WELCOME10"}).json()["valid"] is False

    duplicate = client.post("/api/admin/promo-codes", json={"code": "WELCOME10", "type": "free_order"}, headers=admin)
    assert duplicate.status_code == 409

    assert client.delete(f"/api/admin/promo-codes/{promo_id}", headers=admin).json() == {"success": True}
    assert client.delete(f"/api/admin/promo-codes/{promo_id}", headers=admin).status_code == 404


def test_full_week_blocks_submission(client):
    admin = register(client, ADMIN_EMAIL)
    customer = register(client, "abri@example.com")

    capacity = client.put("/api/capacity", json={"weeklyCapacity": 0}, headers=admin).json()
    assert capacity["isFull"] is True
    assert client.put("/api/capacity", json={"weeklyCapacity": 5}, headers=customer).status_code == 403
    assert client.get("/api/capacity").json()["available"] is False

    response = client.post("/api/orders", json={**ORDER, "submit": True}, headers=customer)
    assert response.status_code == 409
    assert "nextWeekStart" in response.json()


def test_minor_waits_for_parent_consent(client):
    signup = client.post(
        "/auth/signup",
        json={"name": "Kid", "email": "kid@example.com", "password": "pw", "dob": "2015-03-01",
              "parent_email": "parent@example.com"},
    ).json()
    assert signup["consentRequired"] is True

    blocked = client.post("/auth/login", json={"email": "kid@example.com", "password": "pw"})
    assert blocked.status_code == 403
    assert blocked.json()["pendingConsent"] is True

    approved = client.post("/auth/consent", json={"token": signup["consentToken"], "approver_name": "Mom"})
    assert approved.json()["user"]["pendingConsent"] is False

    assert client.post("/auth/login", json={"email": "kid@example.com", "password": "pw"}).status_code == 200


def test_logout_ends_session(client):
    headers = register(client, "abri@example.com")

    assert client.post("/auth/logout", headers=headers).json() == {"success": True}
    assert client.get("/api/orders", headers=headers).status_code == 401


def test_complete_rejects_intent_of_another_order(client, payments):
    headers = register(client, "abri@example.com")
    paid_id = client.post("/api/orders", json={**ORDER, "submit": True}, headers=headers).json()["order"]["id"]
    intent = client.post(f"/api/orders/{paid_id}/payment-intent", headers=headers).json()
    assert client.post(f"/api/orders/{paid_id}/complete", json={"paymentIntentId": intent["paymentIntentId"]},
                       headers=headers).status_code == 200

    bigger = {**ORDER, "nailSets": [{**ORDER["nailSets"][0], "id": "set-2", "quantity": 3}], "submit": True}
    other_id = client.post("/api/orders", json=bigger, headers=headers).json()["order"]["id"]

    response = client.post(
        f"/api/orders/{other_id}/complete", json={"paymentIntentId": intent["paymentIntentId"]}, headers=headers
    )

    assert response.status_code == 400
    order = client.get(f"/api/orders/{other_id}", headers=headers).json()["order"]
    assert order["status"] == "pending_payment"


def test_admin_cannot_complete_unsubmitted_draft(client):
    admin = register(client, ADMIN_EMAIL)
    customer = register(client, "abri@example.com")
    order_id = client.post("/api/orders", json=ORDER, headers=customer).json()["order"]["id"]

    response = client.post(f"/api/orders/{order_id}/complete", json={}, headers=admin)

    assert response.status_code == 400
    assert client.get(f"/api/orders/{order_id}", headers=admin).json()["order"]["status"] == "draft"


def test_admin_manages_catalog(client):
    admin = register(client, ADMIN_EMAIL)
    customer = register(client, "abri@example.com")

    saved = client.put("/api/admin/shapes/ballerina", json={"displayName": "Ballerina", "basePrice": 55},
                       headers=admin)
    assert saved.status_code == 200
    assert "ballerina" in [shape["id"] for shape in client.get("/api/catalog").json()["shapes"]]
    assert client.put("/api/admin/shapes/ballerina", json={"basePrice": 1}, headers=customer).status_code == 403

    hidden = client.put("/api/admin/shapes/oval", json={"basePrice": 40, "isVisible": False}, headers=admin)
    oval = next(shape for shape in hidden.json()["shapes"] if shape["id"] == "oval")
    assert oval["isVisible"] is False
    assert "oval" not in [shape["id"] for shape in client.get("/api/catalog").json()["shapes"]]

    assert client.delete("/api/admin/shapes/ballerina", headers=admin).json() == {"success": True}
    assert client.delete("/api/admin/shapes/ballerina", headers=admin).status_code == 404

    method = {
        "label": "Courier",
        "defaultSpeed": "rush",
        "speedOptions": {"standard": {"fee": 5, "days": 3}, "rush": {"label": "Same day", "fee": 25, "days": 0}},
    }
    response = client.put("/api/admin/delivery-methods/local_courier", json=method, headers=admin)
    assert response.status_code == 200
    assert response.json()["deliveryMethod"]["requiresAddress"] is True
    assert client.get("/api/catalog").json()["deliveryMethods"]["local_courier"]["defaultSpeed"] == "rush"

    slower_rush = {**method, "speedOptions": {"standard": {"days": 3}, "rush": {"days": 7}}}
    assert client.put("/api/admin/delivery-methods/local_courier", json=slower_rush, headers=admin).status_code == 400
    empty = {"label": "Nothing", "speedOptions": {}}
    assert client.put("/api/admin/delivery-methods/nothing", json=empty, headers=admin).status_code == 400

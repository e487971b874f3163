import json
from types import SimpleNamespace

import pytest
import stripe


@pytest.fixture
def stripe_calls(monkeypatch):
    calls = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    return calls


async def test_checkout_session_uses_catalog_prices(catalog, client, stripe_calls):
    resp = await client.post("/checkout_sessions", json={
        "items": [{"productId": "p1", "quantity": 2}, {"productId": "p2", "quantity": 1}],
        "buyerId": "u1",
        "addressId": "a1",
    })

    assert resp.status_code == 200
    assert resp.json() == {"url": "https://checkout.stripe.com/c/pay/cs_test_123"}

    (call,) = stripe_calls
    assert call["mode"] == "payment"
    amounts = [li["price_data"]["unit_amount"] for li in call["line_items"]]
    assert amounts == [7500, 2000]
    assert call["line_items"][0]["price_data"]["product_data"]["images"] == ["https://cdn.example.com/p1.jpg"]
    assert call["metadata"]["buyerId"] == "u1"
    assert call["metadata"]["addressId"] == "a1"
    assert json.loads(call["metadata"]["cartItems"]) == [
        {"productId": "p1", "quantity": 2},
        {"productId": "p2", "quantity": 1},
    ]


async def test_checkout_rejects_foreign_address(catalog, client, stripe_calls):
    resp = await client.post("/checkout_sessions", json={
        "items": [{"productId": "p1", "quantity": 1}], "buyerId": "u1", "addressId": "a2",
    })
    assert resp.status_code == 400
    assert stripe_calls == []


async def test_checkout_rejects_unknown_product(catalog, client, stripe_calls):
    resp = await client.post("/checkout_sessions", json={
        "items": [{"productId": "ghost", "quantity": 1}], "buyerId": "u1", "addressId": "a1",
    })
    assert resp.status_code == 400
    assert stripe_calls == []


async def test_checkout_requires_items(catalog, client, stripe_calls):
    resp = await client.post("/checkout_sessions", json={"items": [], "buyerId": "u1", "addressId": "a1"})
    assert resp.status_code == 422


async def test_checkout_gateway_error(catalog, client, monkeypatch):
    def failing_create(**kwargs):
        raise stripe.StripeError("card processor unavailable")
    monkeypatch.setattr(stripe.checkout.Session, "create", failing_create)

    resp = await client.post("/checkout_sessions", json={
        "items": [{"productId": "p1", "quantity": 1}], "buyerId": "u1", "addressId": "a1",
    })
    assert resp.status_code == 500
    assert "unavailable" in resp.json()["detail"]["message"]

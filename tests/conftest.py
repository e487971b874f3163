import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from storefront.db import Base, get_session
from storefront.main import app
from storefront.models import Address, CartItem, Order, Product
from storefront.verifier import StripeEventVerifier, get_verifier

WEBHOOK_SECRET = "whsec_test_secret"


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Builds a Stripe-Signature header value (t=...,v1=...) for the payload."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def completion_event(
    session_id: str = "cs_1",
    amount_total: int = 15000,
    buyer_id: str = "u1",
    address_id: str = "a1",
    cart: list | str | None = None,
    event_type: str = "checkout.session.completed",
    buyer_key: str = "buyerId",
) -> dict:
    if cart is None:
        cart = [{"productId": "p1", "quantity": 2}]
    cart_items = cart if isinstance(cart, str) else json.dumps(cart)
    return {
        "id": f"evt_{session_id}",
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "amount_total": amount_total,
                "payment_status": "paid",
                "metadata": {
                    buyer_key: buyer_id,
                    "addressId": address_id,
                    "cartItems": cart_items,
                },
            }
        },
    }


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
async def catalog(session_factory):
    async with session_factory() as s:
        s.add_all([
            Product(id="p1", name="Hot Sauce", price=Decimal("75.00"), stock=10,
                    image_urls=["https://cdn.example.com/p1.jpg"]),
            Product(id="p2", name="Mug", price=Decimal("20.00"), stock=3, image_urls=[]),
            Address(id="a1", user_id="u1", full_name="Deniz Yilmaz", phone_number="5550001",
                    address_line="Bagdat Cd. 12", city="Istanbul", district="Kadikoy",
                    postal_code="34710"),
            Address(id="a2", user_id="u2", full_name="Ali Kaya", phone_number="5550002",
                    address_line="Ataturk Blv. 3", city="Ankara", district="Cankaya",
                    postal_code="06690"),
            CartItem(user_id="u1", product_id="p1", quantity=2),
            CartItem(user_id="u2", product_id="p2", quantity=1),
        ])
        await s.commit()


@pytest.fixture
def fetch_orders(session_factory):
    async def _fetch(user_id: str | None = None) -> list[Order]:
        async with session_factory() as s:
            stmt = select(Order)
            if user_id is not None:
                stmt = stmt.where(Order.user_id == user_id)
            return (await s.execute(stmt)).scalars().all()
    return _fetch


@pytest.fixture
def fetch_stock(session_factory):
    async def _fetch(product_id: str) -> int:
        async with session_factory() as s:
            return (await s.get(Product, product_id)).stock
    return _fetch


@pytest.fixture
def fetch_cart(session_factory):
    async def _fetch(user_id: str) -> list[CartItem]:
        async with session_factory() as s:
            result = await s.execute(select(CartItem).where(CartItem.user_id == user_id))
            return result.scalars().all()
    return _fetch


@pytest.fixture
async def client(session_factory):
    async def override_get_session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_verifier] = lambda: StripeEventVerifier(WEBHOOK_SECRET, tolerance=300)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def deliver(client):
    async def _deliver(event: dict, signature: str | None = None, body: bytes | None = None):
        payload = json.dumps(event).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        headers["Stripe-Signature"] = signature if signature is not None else sign(payload)
        return await client.post("/webhook", content=body if body is not None else payload, headers=headers)
    return _deliver

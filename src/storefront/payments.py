import json
import logging
from decimal import Decimal
from typing import List

import stripe
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import crud
from storefront.config import settings
from storefront.schemas import CartLine, merge_cart_lines

logger = logging.getLogger("storefront.payments")

class CheckoutRejected(Exception):
    pass

def to_minor_units(price: Decimal) -> int:
    return int((Decimal(price) * 100).to_integral_value())

async def create_checkout_session(
    items: List[CartLine],
    buyer_id: str,
    address_id: str,
    session: AsyncSession
) -> str:
    """
    Opens a hosted Stripe Checkout session and returns its URL.

    Names and prices are read from the catalog; the client only chooses
    products and quantities. The cart snapshot travels in the session
    metadata and comes back with `checkout.session.completed`.
    """
    lines = merge_cart_lines(items)

    address = await crud.get_address(address_id, session)
    if address is None or address.user_id != buyer_id:
        raise CheckoutRejected(f"Address {address_id} does not belong to user {buyer_id}")

    products = await crud.get_products([line.product_id for line in lines], session)
    missing = [line.product_id for line in lines if line.product_id not in products]
    if missing:
        raise CheckoutRejected(f"Unknown products: {', '.join(missing)}")

    line_items = []
    for line in lines:
        product = products[line.product_id]
        line_items.append({
            "price_data": {
                "currency": settings.CHECKOUT_CURRENCY,
                "product_data": {
                    "name": product.name,
                    "images": list(product.image_urls or [])[:1],
                },
                "unit_amount": to_minor_units(product.price),
            },
            "quantity": line.quantity,
        })

    snapshot = [{"productId": line.product_id, "quantity": line.quantity} for line in lines]

    checkout = await run_in_threadpool(
        stripe.checkout.Session.create,
        api_key=settings.STRIPE_SECRET_KEY,
        payment_method_types=["card"],
        line_items=line_items,
        mode="payment",
        success_url=f"{settings.PUBLIC_URL}/order-placed",
        cancel_url=f"{settings.PUBLIC_URL}/cart",
        metadata={
            "buyerId": buyer_id,
            "addressId": address_id,
            "cartItems": json.dumps(snapshot),
        },
    )
    logger.info("[Payments] Checkout session %s opened for user %s", checkout.id, buyer_id)
    return checkout.url

"""
Order finalization for `checkout.session.completed` notifications.

    event → idempotency guard → materialize order → adjust inventory → clear cart

The order row and its items are written in a single transaction, so an order
is either complete or absent. That keeps the idempotency short-circuit safe:
a redelivery that finds an order by stripe_session_id finds a finished one.
Inventory and cart cleanup run after the commit and never fail the delivery.
"""

import enum
import logging
from dataclasses import dataclass
from typing import List, Tuple

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import crud
from storefront.models import Order
from storefront.schemas import CompletionEvent, WebhookEvent

logger = logging.getLogger("storefront.fulfillment")

CHECKOUT_COMPLETED = "checkout.session.completed"

OVERSELL_ALLOW = "allow"
OVERSELL_REJECT = "reject"


class Outcome(str, enum.Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass
class FulfillmentResult:
    outcome: Outcome
    order_id: str | None = None


class FulfillmentError(Exception):
    """Base for failures on the primary path. Retryable unless stated otherwise."""
    retryable = True


class MalformedEvent(FulfillmentError):
    retryable = False


class InsufficientStock(FulfillmentError):
    retryable = False


class AddressNotFound(FulfillmentError):
    pass


class ProductNotFound(FulfillmentError):
    pass


def parse_completion_event(event: WebhookEvent) -> CompletionEvent:
    try:
        return CompletionEvent.model_validate(event.data.object)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise MalformedEvent(f"Invalid checkout session payload: {fields}") from e


async def handle_event(
    event: WebhookEvent,
    session: AsyncSession,
    oversell_policy: str = OVERSELL_ALLOW
) -> FulfillmentResult:
    if event.type != CHECKOUT_COMPLETED:
        logger.info("[Fulfillment] Ignoring event %s of type %s", event.id, event.type)
        return FulfillmentResult(Outcome.IGNORED)

    completion = parse_completion_event(event)
    return await fulfill(completion, session, oversell_policy)


async def fulfill(
    completion: CompletionEvent,
    session: AsyncSession,
    oversell_policy: str = OVERSELL_ALLOW
) -> FulfillmentResult:
    existing = await crud.get_order_by_session_id(completion.session_id, session)
    if existing is not None:
        logger.info("[Fulfillment] Session %s already fulfilled as order %s",
                    completion.session_id, existing.id)
        return FulfillmentResult(Outcome.DUPLICATE, existing.id)

    try:
        order = await materialize_order(completion, session, oversell_policy)
    except crud.DuplicateOrderError:
        # lost the race against a concurrent delivery of the same session
        logger.info("[Fulfillment] Session %s was fulfilled concurrently", completion.session_id)
        return FulfillmentResult(Outcome.DUPLICATE)

    # rollbacks below expire the ORM objects, read what we need first
    order_id = order.id
    lines = [(item.product_id, item.quantity) for item in order.items]
    logger.info("[Fulfillment] Order %s created for session %s (%d items)",
                order_id, completion.session_id, len(lines))

    await adjust_inventory(order_id, lines, session)
    await clear_buyer_cart(completion.metadata.buyer_id, session)
    return FulfillmentResult(Outcome.CREATED, order_id)


async def materialize_order(
    completion: CompletionEvent,
    session: AsyncSession,
    oversell_policy: str = OVERSELL_ALLOW
) -> Order:
    meta = completion.metadata
    lines = meta.cart_items

    address = await crud.get_address(meta.address_id, session)
    if address is None:
        raise AddressNotFound(f"Address {meta.address_id} not found")

    order = await crud.insert_order(
        user_id=meta.buyer_id,
        total_amount=completion.total_amount,
        address=crud.address_snapshot(address),
        stripe_session_id=completion.session_id,
        session=session,
    )

    try:
        products = await crud.get_products([line.product_id for line in lines], session)
        missing = [line.product_id for line in lines if line.product_id not in products]
        if missing:
            raise ProductNotFound(f"Unknown products in cart: {', '.join(missing)}")

        if oversell_policy == OVERSELL_REJECT:
            short = [
                line.product_id for line in lines
                if line.quantity > products[line.product_id].stock
            ]
            if short:
                raise InsufficientStock(f"Insufficient stock for: {', '.join(short)}")

        await crud.add_order_items(order, lines, products, session)
        await session.commit()
    except (FulfillmentError, SQLAlchemyError) as e:
        await session.rollback()
        logger.error("[Fulfillment] Order for session %s rolled back: %s", completion.session_id, e)
        raise

    return order


async def adjust_inventory(
    order_id: str,
    lines: List[Tuple[str, int]],
    session: AsyncSession
) -> None:
    for product_id, quantity in lines:
        try:
            updated = await crud.decrement_stock(product_id, quantity, session)
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("[Fulfillment] Stock update failed for product %s (order %s): %s",
                         product_id, order_id, e)
            continue
        if not updated:
            logger.warning("[Fulfillment] Product %s vanished before stock update (order %s)",
                           product_id, order_id)


async def clear_buyer_cart(user_id: str, session: AsyncSession) -> None:
    try:
        removed = await crud.clear_cart(user_id, session)
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("[Fulfillment] Could not clear cart of user %s: %s", user_id, e)
        return
    logger.info("[Fulfillment] Cleared %d cart rows for user %s", removed, user_id)

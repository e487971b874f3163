import hmac
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Depends, Header, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import stripe
from storefront import crud, fulfillment, payments, schemas
from storefront.config import settings
from storefront.db import engine, Base, get_session
from storefront.verifier import InvalidPayload, InvalidSignature, StripeEventVerifier, get_verifier
import uvicorn

logger = logging.getLogger("storefront.webhook")

@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()

app = FastAPI(title="Storefront Service", lifespan=lifespan)


def require_seller(x_seller_key: str | None = Header(None)) -> None:
    expected = settings.SELLER_API_KEY
    if not expected or not x_seller_key or not hmac.compare_digest(x_seller_key, expected):
        raise HTTPException(status_code=403, detail="Seller access required")


@app.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None),
    session: AsyncSession = Depends(get_session),
    verifier: StripeEventVerifier = Depends(get_verifier)
):
    payload = await request.body()
    try:
        event = verifier.verify(payload, stripe_signature)
    except (InvalidSignature, InvalidPayload) as e:
        logger.warning("[Webhook] Rejected delivery: %s", e)
        raise HTTPException(status_code=400, detail=f"Webhook error: {e}")

    try:
        result = await fulfillment.handle_event(event, session, settings.OVERSELL_POLICY)
    except fulfillment.FulfillmentError as e:
        if not e.retryable:
            logger.error("[Webhook] Event %s cannot be processed: %s", event.id, e)
            raise HTTPException(status_code=400, detail=f"Webhook error: {e}")
        logger.error("[Webhook] Event %s failed, sender should retry: %s", event.id, e)
        raise HTTPException(status_code=500, detail=f"Webhook handler error: {e}")
    except SQLAlchemyError as e:
        logger.error("[Webhook] Database error on event %s: %s", event.id, e)
        raise HTTPException(status_code=500, detail="Webhook handler database error")

    logger.info("[Webhook] Event %s handled: %s", event.id, result.outcome.value)
    return {"received": True}


@app.post("/checkout_sessions", response_model=schemas.CheckoutSessionRead)
async def create_checkout_session(
    req: schemas.CheckoutSessionRequest,
    session: AsyncSession = Depends(get_session)
):
    try:
        url = await payments.create_checkout_session(req.items, req.buyer_id, req.address_id, session)
    except payments.CheckoutRejected as e:
        raise HTTPException(status_code=400, detail={"message": str(e)})
    except stripe.StripeError as e:
        logger.error("[Payments] Stripe checkout session error: %s", e)
        raise HTTPException(status_code=500, detail={"message": str(e)})
    return {"url": url}


@app.get("/orders", response_model=list[schemas.OrderRead])
async def list_orders(
    buyer_id: str,
    session: AsyncSession = Depends(get_session)
):
    return await crud.list_orders(session, user_id=buyer_id)

@app.get("/orders/{order_id}", response_model=schemas.OrderRead)
async def get_order(
    order_id: str,
    buyer_id: str,
    session: AsyncSession = Depends(get_session)
):
    order = await crud.get_order(order_id, session, user_id=buyer_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@app.get(
    "/seller/orders",
    response_model=list[schemas.OrderRead],
    dependencies=[Depends(require_seller)]
)
async def seller_list_orders(session: AsyncSession = Depends(get_session)):
    return await crud.list_orders(session)

@app.patch(
    "/seller/orders/{order_id}/status",
    response_model=schemas.OrderRead,
    dependencies=[Depends(require_seller)]
)
async def seller_update_status(
    order_id: str,
    update: schemas.OrderStatusUpdate,
    session: AsyncSession = Depends(get_session)
):
    order = await crud.update_order_status(order_id, update.status, session)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@app.get("/health")
async def health():
    return {"status": "ok", "service": "storefront"}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    uvicorn.run("storefront.main:app", host="0.0.0.0", port=8000)

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, Json, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal

from storefront.models import OrderStatus


class CartLine(BaseModel):
    """One `{productId, quantity}` pair of a cart snapshot. Prices never travel here."""
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId", min_length=1)
    quantity: int = Field(..., gt=0)


def merge_cart_lines(lines: List[CartLine]) -> List[CartLine]:
    """Collapses repeated product ids into one line, keeping first-seen order."""
    merged: Dict[str, int] = {}
    for line in lines:
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return [CartLine(product_id=pid, quantity=qty) for pid, qty in merged.items()]


# ── Webhook envelope ─────────────────────────────

class WebhookEventData(BaseModel):
    object: Dict[str, Any]


class WebhookEvent(BaseModel):
    id: Optional[str] = None
    type: str
    data: WebhookEventData


class CompletionMetadata(BaseModel):
    buyer_id: str = Field(..., validation_alias=AliasChoices("buyerId", "userId"), min_length=1)
    address_id: str = Field(..., validation_alias="addressId", min_length=1)
    cart_items: Json[List[CartLine]] = Field(..., validation_alias="cartItems")

    @field_validator("cart_items")
    @classmethod
    def cart_not_empty(cls, v: List[CartLine]) -> List[CartLine]:
        if not v:
            raise ValueError("cart snapshot is empty")
        return merge_cart_lines(v)


class CompletionEvent(BaseModel):
    """Verified `checkout.session.completed` payload."""
    model_config = ConfigDict(frozen=True)

    session_id: str = Field(..., validation_alias="id", min_length=1)
    amount_total: int = Field(..., ge=0)
    metadata: CompletionMetadata

    @property
    def total_amount(self) -> Decimal:
        # amount_total is in the smallest currency unit
        return (Decimal(self.amount_total) / 100).quantize(Decimal("0.01"))


# ── Checkout ─────────────────────────────────────

class CheckoutSessionRequest(BaseModel):
    items: List[CartLine] = Field(..., min_length=1)
    buyer_id: str = Field(..., alias="buyerId", min_length=1)
    address_id: str = Field(..., alias="addressId", min_length=1)


class CheckoutSessionRead(BaseModel):
    url: str


# ── Orders ───────────────────────────────────────

class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    product_id: str
    quantity: int
    price: float


class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    total_amount: float
    address: Dict[str, Any]
    status: str
    stripe_session_id: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    items: List[OrderItemRead] = []


class OrderStatusUpdate(BaseModel):
    status: OrderStatus

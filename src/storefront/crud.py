import logging
from decimal import Decimal
from typing import Dict, Iterable, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import IntegrityError

from storefront.models import Address, CartItem, Order, OrderItem, OrderStatus, Product
from storefront.schemas import CartLine

logger = logging.getLogger("storefront.crud")

class DuplicateOrderError(Exception):
    pass

# ── Addresses ────────────────────────────────────

async def get_address(
    address_id: str,
    session: AsyncSession
) -> Address | None:
    return await session.get(Address, address_id)

def address_snapshot(address: Address) -> dict:
    """Copies the address row so the order keeps it after later edits."""
    return {
        "id": address.id,
        "full_name": address.full_name,
        "phone_number": address.phone_number,
        "address_line": address.address_line,
        "city": address.city,
        "district": address.district,
        "postal_code": address.postal_code,
    }

# ── Orders ───────────────────────────────────────

async def get_order_by_session_id(
    stripe_session_id: str,
    session: AsyncSession
) -> Order | None:
    result = await session.execute(
        select(Order).where(Order.stripe_session_id == stripe_session_id)
    )
    return result.scalar_one_or_none()

async def insert_order(
    user_id: str,
    total_amount: Decimal,
    address: dict,
    stripe_session_id: str,
    session: AsyncSession
) -> Order:
    """
    Adds the order row and flushes it without committing, so the caller can
    put the items into the same transaction. A second row for the same
    stripe_session_id violates the unique constraint and raises
    DuplicateOrderError after rolling back.
    """
    order = Order(
        user_id=user_id,
        total_amount=total_amount,
        address=address,
        status=OrderStatus.PREPARING.value,
        stripe_session_id=stripe_session_id,
        items=[],
    )
    session.add(order)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise DuplicateOrderError(stripe_session_id)
    return order

async def add_order_items(
    order: Order,
    lines: Iterable[CartLine],
    products: Dict[str, Product],
    session: AsyncSession
) -> List[OrderItem]:
    # price always comes from the catalog row
    items = [
        OrderItem(
            order_id=order.id,
            product_id=line.product_id,
            quantity=line.quantity,
            price=products[line.product_id].price,
        )
        for line in lines
    ]
    order.items.extend(items)
    await session.flush()
    return items

async def list_orders(
    session: AsyncSession,
    user_id: str | None = None
) -> List[Order]:
    stmt = select(Order).order_by(Order.created_at.desc())
    if user_id is not None:
        stmt = stmt.where(Order.user_id == user_id)
    result = await session.execute(stmt)
    return result.scalars().all()

async def get_order(
    order_id: str,
    session: AsyncSession,
    user_id: str | None = None
) -> Order | None:
    stmt = select(Order).where(Order.id == order_id)
    if user_id is not None:
        stmt = stmt.where(Order.user_id == user_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()

async def update_order_status(
    order_id: str,
    new_status: OrderStatus,
    session: AsyncSession
) -> Order | None:
    """
    Sets the lifecycle status from the seller panel. Transitions are not
    restricted to a fixed sequence.
    """
    order = await session.get(Order, order_id)
    if order is None:
        return None
    order.status = new_status.value
    await session.commit()
    await session.refresh(order)
    logger.info("[Orders] Order %s status updated to %s", order_id, new_status.value)
    return order

# ── Products ─────────────────────────────────────

async def get_products(
    product_ids: Iterable[str],
    session: AsyncSession
) -> Dict[str, Product]:
    """Batched read of catalog rows, keyed by id. Missing ids are simply absent."""
    ids = list(set(product_ids))
    if not ids:
        return {}
    result = await session.execute(select(Product).where(Product.id.in_(ids)))
    return {p.id: p for p in result.scalars().all()}

async def decrement_stock(
    product_id: str,
    quantity: int,
    session: AsyncSession
) -> bool:
    """
    Relative decrement done by the database, floored at zero. Returns False
    when no product row matched.
    """
    result = await session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=case((Product.stock > quantity, Product.stock - quantity), else_=0))
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount > 0

# ── Cart ─────────────────────────────────────────

async def clear_cart(
    user_id: str,
    session: AsyncSession
) -> int:
    result = await session.execute(
        delete(CartItem).where(CartItem.user_id == user_id)
    )
    await session.commit()
    return result.rowcount

import enum
import uuid
from sqlalchemy import Column, ForeignKey, Integer, String, DECIMAL, TIMESTAMP, JSON, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from storefront.db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")

def new_id() -> str:
    return str(uuid.uuid4())

class OrderStatus(str, enum.Enum):
    PREPARING = "Preparing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"

class Product(Base):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(String, nullable=True)
    price = Column(DECIMAL(18, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    image_urls = Column(JSONType, nullable=False, default=list)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

class Address(Base):
    __tablename__ = "addresses"

    id = Column(String(64), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    phone_number = Column(String(32), nullable=True)
    address_line = Column(String, nullable=False)
    city = Column(String(100), nullable=False)
    district = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

class CartItem(Base):
    __tablename__ = "user_cart"
    __table_args__ = (UniqueConstraint("user_id", "product_id"),)

    id = Column(String(64), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    product_id = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

class Order(Base):
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    total_amount = Column(DECIMAL(18, 2), nullable=False)
    # copied at order time, later address edits must not leak into history
    address = Column(JSONType, nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.PREPARING.value)
    stripe_session_id = Column(String(255), nullable=False, unique=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), onupdate=func.now())

    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(64), primary_key=True, default=new_id)
    order_id = Column(String(64), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    # weak reference, products may be deleted later
    product_id = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(DECIMAL(18, 2), nullable=False)

    order = relationship("Order", back_populates="items")

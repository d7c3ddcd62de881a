import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import BigInteger, Integer, String, Text, Boolean, ForeignKey, DateTime, Numeric, Enum as PgEnum, Index, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database.core import Base
from config import config


# SQLite only autoincrements an INTEGER PRIMARY KEY (rowid).
# So dev/test on SQLite uses Integer for PKs while Postgres keeps BigInteger.
PK_INT = Integer if config.IS_SQLITE else BigInteger
MONEY = Numeric(12, 2)

# --- Enums ---
class OrderStatus(str, enum.Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    CANCELLED = "CANCELLED"

# --- Models ---

class OrderSessionRecord(Base):
    __tablename__ = "order_sessions"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    business_id: Mapped[str] = mapped_column(String(50), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    state: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Serialized blobs: cart items, FIFO option-set tasks, FIFO topping tasks
    cart_data: Mapped[str] = mapped_column(Text, nullable=False, default='{"items": []}')
    pending_parents: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    pending_toppings: Mapped[str] = mapped_column(Text, nullable=False, default="[]")

    location_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    restaurant_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    tax_exclusive: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    help_email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    help_phone: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    delivery_method: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    delivery_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivery_contact_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    delivery_charge_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    discount_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_editing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    editing_group_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    editing_quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    edit_children: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    current_pack_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    menu_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    current_category_group: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    current_subcategory: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    small_catalog: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Optimistic concurrency: every save bumps it, a stale save is rejected
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_interaction: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("business_id", "phone_number", name="uq_order_sessions_business_phone"),
        {"comment": "Live ordering conversations"},
    )


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    reference: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    business_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    location_id: Mapped[str] = mapped_column(String(50), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    status: Mapped[OrderStatus] = mapped_column(PgEnum(OrderStatus, name="order_status_enum"), default=OrderStatus.PENDING_PAYMENT, nullable=False, index=True)
    service_type: Mapped[str] = mapped_column(String(20), nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    charges: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    discount_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    discount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    bank_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    account_number: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    account_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    items: Mapped[List["OrderItem"]] = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_orders_business_created", "business_id", "created_at"),
        {"comment": "Confirmed orders (immutable snapshots)"},
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(50), nullable=False)
    item_name: Mapped[str] = mapped_column(String, nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    # Combo membership: parent and its options/toppings share grouping_id
    grouping_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    parent_item_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_topping: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pack_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="items")


class InboundMessage(Base):
    """Provider message ids already accepted; redeliveries are dropped."""
    __tablename__ = "inbound_messages"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    business_id: Mapped[str] = mapped_column(String(50), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)


class CustomerProfile(Base):
    __tablename__ = "customer_profiles"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    business_id: Mapped[str] = mapped_column(String(50), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    # JSON list of saved delivery addresses, most recent first
    saved_addresses: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    contact_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("business_id", "phone_number", name="uq_customer_profiles_business_phone"),
        {"comment": "Saved delivery details per customer"},
    )

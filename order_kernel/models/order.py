"""
Order and OrderItem -- one customer purchase and its line items.

Responsibility:
    Persist the result of order creation: the immutable order number, the
    customer identity, denormalized address snapshots, integer-cent totals,
    payment references and the line items with prices captured at order time.

Architecture position:
    Kernel > Models.  Written by OrderService; status advanced by the
    fulfillment dispatcher, the operator actions and the refund service.

Invariants enforced:
    - ``payment_session_id`` is unique: redelivery of the same checkout can
      never create a second order.
    - ``order_number`` is unique.
    - Exactly one of ``customer_id`` / ``guest_email`` is present.
    - Only ``status`` (and ``updated_at``) may change after insert; enforced
      by db/immutability.py and the PostgreSQL triggers.
    - Order items are immutable.
"""

from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from order_kernel.db.base import TimestampedBase
from order_kernel.db.types import UUIDString, enum_column_type

if TYPE_CHECKING:
    from order_kernel.models.fulfillment import FulfillmentTask


class OrderStatus(str, Enum):
    """Lifecycle status of an order.

    Contract: pending -> paid -> processing -> partially_shipped -> shipped
        -> delivered, with cancelled and refunded as terminal branches.
    """

    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    PARTIALLY_SHIPPED = "partially_shipped"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.CANCELLED, OrderStatus.REFUNDED)


class Order(TimestampedBase):
    """
    One customer purchase.

    Contract:
        Created once, atomically with its items, fulfillment tasks, sale
        ledger entry and audit entry.  Never deleted.

    Guarantees:
        - total_cents == subtotal_cents + shipping_cents.
        - Addresses are snapshots taken at creation, never re-derived.
    """

    __tablename__ = "orders"

    __table_args__ = (
        CheckConstraint(
            "(customer_id IS NULL) <> (guest_email IS NULL)",
            name="ck_order_single_customer_identity",
        ),
        CheckConstraint(
            "total_cents = subtotal_cents + shipping_cents",
            name="ck_order_total",
        ),
        Index("idx_order_payment_intent", "payment_intent_id"),
        Index("idx_order_status", "status"),
    )

    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)

    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    guest_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[OrderStatus] = mapped_column(
        enum_column_type(OrderStatus), default=OrderStatus.PAID, nullable=False
    )

    subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    shipping_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_fee_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="EUR", nullable=False)

    shipping_address: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    billing_address: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    payment_session_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False
    )
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    attribution: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    locale: Mapped[str | None] = mapped_column(String(10), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.position",
        passive_deletes="all",
    )

    fulfillment_tasks: Mapped[list["FulfillmentTask"]] = relationship(
        back_populates="order",
        lazy="selectin",
        passive_deletes="all",
    )

    @property
    def contact_email(self) -> str | None:
        return self.customer_email or self.guest_email

    @property
    def producers(self) -> list[str]:
        """Distinct producers among the items, in first-seen order."""
        seen: dict[str, None] = {}
        for item in self.items:
            seen.setdefault(item.producer, None)
        return list(seen)

    def __repr__(self) -> str:
        return f"<Order {self.order_number} {self.status} {self.total_cents}c>"


class OrderItem(TimestampedBase):
    """
    One order line.

    Contract:
        Prices and descriptive fields are captured at order time and never
        change, even if the catalog does.  ``producer`` is derived from the
        variant's product.
    """

    __tablename__ = "order_items"

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_item_quantity"),
        CheckConstraint(
            "line_total_cents = unit_price_cents * quantity",
            name="ck_order_item_line_total",
        ),
        Index("idx_order_item_order", "order_id"),
        Index("idx_order_item_producer", "order_id", "producer"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    variant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("product_variants.id"), nullable=False
    )
    sku: Mapped[str] = mapped_column(String(50), nullable=False)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    variant_name: Mapped[str] = mapped_column(String(200), nullable=False)
    size_ml: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weight_grams: Mapped[int | None] = mapped_column(Integer, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    line_total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    producer: Mapped[str] = mapped_column(String(50), nullable=False)

    order: Mapped[Order] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<OrderItem {self.quantity}x {self.sku} producer={self.producer}>"

"""
FulfillmentTask and FulfillmentEvent -- producer-scoped shipping work.

Responsibility:
    One FulfillmentTask per distinct producer in an order ("bundle split").
    The task carries the dispatch state machine and the persisted retry
    history; FulfillmentEvent is the append-only timeline of what happened
    to each task.

Architecture position:
    Kernel > Models.  Tasks are created by OrderService (status pending)
    and mutated only by FulfillmentDispatcher and OperatorService.

Invariants enforced:
    - (order_id, producer) is unique: no duplicate producer per order.
    - retry_count is persisted, so a restart never loses retry history.
    - FulfillmentEvent rows are immutable.
"""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from order_kernel.db.base import TimestampedBase
from order_kernel.db.types import UUIDString, enum_column_type

if TYPE_CHECKING:
    from order_kernel.models.order import Order


class FulfillmentStatus(str, Enum):
    """Lifecycle status of a fulfillment task.

    Contract: pending -> sent_to_producer -> confirmed -> shipped -> delivered,
        with failed and cancelled as terminal branches.  failed is terminal
        for automatic dispatch only; an operator retry resets it to pending.
    """

    PENDING = "pending"
    SENT_TO_PRODUCER = "sent_to_producer"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def progress_rank(self) -> int:
        """Position on the forward path; -1 for failed/cancelled."""
        return _PROGRESS_ORDER.get(self, -1)


_PROGRESS_ORDER = {
    FulfillmentStatus.PENDING: 0,
    FulfillmentStatus.SENT_TO_PRODUCER: 1,
    FulfillmentStatus.CONFIRMED: 2,
    FulfillmentStatus.SHIPPED: 3,
    FulfillmentStatus.DELIVERED: 4,
}


class DispatchMethod(str, Enum):
    API = "api"
    EMAIL = "email"


class FulfillmentEventType(str, Enum):
    SENT_TO_PRODUCER = "sent_to_producer"
    DISPATCH_FAILED = "dispatch_failed"
    STATUS_UPDATED = "status_updated"
    STATUS_RECONCILED = "status_reconciled"
    MANUAL_RETRY = "manual_retry"


class FulfillmentTask(TimestampedBase):
    """
    One unit of work sent to one producer for one order.

    Contract:
        ``external_reference`` is derived from the task id at creation and
        sent with every API dispatch, so producer-side retries are idempotent.

    Guarantees:
        - retry_count starts at 0 and only increases.
        - last_error holds the most recent human-readable failure.
    """

    __tablename__ = "fulfillment_tasks"

    __table_args__ = (
        UniqueConstraint("order_id", "producer", name="uq_fulfillment_order_producer"),
        Index("idx_fulfillment_status", "status"),
        Index("idx_fulfillment_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False
    )
    producer: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[FulfillmentStatus] = mapped_column(
        enum_column_type(FulfillmentStatus),
        default=FulfillmentStatus.PENDING,
        nullable=False,
    )
    external_reference: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    external_order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dispatch_method: Mapped[DispatchMethod | None] = mapped_column(
        enum_column_type(DispatchMethod, 10), nullable=True
    )
    tracking_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tracking_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    order: Mapped["Order"] = relationship(back_populates="fulfillment_tasks", lazy="joined")

    events: Mapped[list["FulfillmentEvent"]] = relationship(
        back_populates="task",
        lazy="selectin",
        order_by="FulfillmentEvent.created_at",
        passive_deletes="all",
    )

    def __repr__(self) -> str:
        return (
            f"<FulfillmentTask {self.producer} {self.status} "
            f"retries={self.retry_count}>"
        )


class FulfillmentEvent(TimestampedBase):
    """Append-only timeline entry for a fulfillment task."""

    __tablename__ = "fulfillment_events"

    __table_args__ = (
        Index("idx_fulfillment_event_task", "task_id"),
    )

    task_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("fulfillment_tasks.id"), nullable=False
    )
    event_type: Mapped[FulfillmentEventType] = mapped_column(
        enum_column_type(FulfillmentEventType, 30), nullable=False
    )
    status: Mapped[FulfillmentStatus] = mapped_column(
        enum_column_type(FulfillmentStatus), nullable=False
    )
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    task: Mapped[FulfillmentTask] = relationship(back_populates="events")

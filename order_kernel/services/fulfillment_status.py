"""
Fulfillment status changes and the order status they imply.

Responsibility:
    Applies a status change to one FulfillmentTask (timestamps, tracking,
    fulfillment event, audit entry) and re-derives the owning order's
    status from all of its tasks.  Shared by the dispatcher's
    reconciliation and by operator overrides so both follow one path.

Architecture position:
    Kernel > Services.  Uses ``domain/fulfillment_progress.py`` for the
    pure derivation.

Invariants enforced:
    - Cancelled and failed tasks never move forward through this path;
      only an operator retry leaves ``failed``.
    - Order status never moves backwards and refunded or cancelled orders
      are never advanced.
"""

from typing import Any

from sqlalchemy import select

from order_kernel.domain.fulfillment_progress import derive_order_status
from order_kernel.exceptions import InvalidStatusTransitionError
from order_kernel.logging_config import get_logger
from order_kernel.models.fulfillment import (
    FulfillmentEvent,
    FulfillmentEventType,
    FulfillmentStatus,
    FulfillmentTask,
)
from order_kernel.models.order import Order, OrderStatus
from order_kernel.services.auditor_service import AuditorService
from order_kernel.services.base import BaseService

logger = get_logger("services.fulfillment_status")

_TIMESTAMP_FIELDS = {
    FulfillmentStatus.SENT_TO_PRODUCER: "sent_at",
    FulfillmentStatus.CONFIRMED: "confirmed_at",
    FulfillmentStatus.SHIPPED: "shipped_at",
    FulfillmentStatus.DELIVERED: "delivered_at",
}

# Statuses an operator may set directly.  Pending is reached through retry.
OVERRIDE_TARGETS = frozenset({
    FulfillmentStatus.SENT_TO_PRODUCER,
    FulfillmentStatus.CONFIRMED,
    FulfillmentStatus.SHIPPED,
    FulfillmentStatus.DELIVERED,
    FulfillmentStatus.CANCELLED,
})


def _task_snapshot(task: FulfillmentTask) -> dict[str, Any]:
    return {
        "status": task.status.value,
        "tracking_number": task.tracking_number,
        "tracking_url": task.tracking_url,
    }


class FulfillmentStatusService(BaseService):
    """
    Moves tasks through their status machine.

    Non-goals:
        - Does NOT talk to producers.
        - Does NOT commit.
    """

    def add_event(
        self,
        task: FulfillmentTask,
        event_type: FulfillmentEventType,
        payload: dict[str, Any] | None = None,
    ) -> FulfillmentEvent:
        event = FulfillmentEvent(
            task_id=task.id,
            event_type=event_type,
            status=task.status,
            payload=payload,
            created_at=self.clock.now(),
            updated_at=self.clock.now(),
        )
        self.session.add(event)
        return event

    def apply_status(
        self,
        task: FulfillmentTask,
        new_status: FulfillmentStatus,
        performed_by: str,
        event_type: FulfillmentEventType = FulfillmentEventType.STATUS_UPDATED,
        tracking_number: str | None = None,
        tracking_url: str | None = None,
        notes: str | None = None,
        extra_payload: dict[str, Any] | None = None,
    ) -> FulfillmentTask:
        """
        Set ``new_status`` on ``task`` and record it.

        Raises:
            InvalidStatusTransitionError: If the task is cancelled or
                failed (only a retry leaves failed), if the target is
                pending or failed, or if the target lies behind the
                current status.  Cancelling is allowed from any open
                status.
        """
        current = task.status
        leaves_closed = (
            current in (FulfillmentStatus.CANCELLED, FulfillmentStatus.FAILED)
            and new_status != current
        )
        moves_back = (
            new_status != FulfillmentStatus.CANCELLED
            and new_status.progress_rank < current.progress_rank
        )
        if new_status not in OVERRIDE_TARGETS or leaves_closed or moves_back:
            raise InvalidStatusTransitionError(
                "fulfillment_task", str(task.id), current.value, new_status.value
            )

        before = _task_snapshot(task)
        now = self.clock.now()
        task.status = new_status
        timestamp_field = _TIMESTAMP_FIELDS.get(new_status)
        if timestamp_field and getattr(task, timestamp_field) is None:
            setattr(task, timestamp_field, now)
        if tracking_number:
            task.tracking_number = tracking_number
        if tracking_url:
            task.tracking_url = tracking_url
        if notes:
            task.notes = notes
        task.updated_at = now

        payload = {
            "from_status": current.value,
            "to_status": new_status.value,
            "tracking_number": task.tracking_number,
            "tracking_url": task.tracking_url,
        }
        if notes:
            payload["notes"] = notes
        if extra_payload:
            payload.update(extra_payload)
        self.add_event(task, event_type, payload)
        self.session.flush()

        AuditorService(self.session).record_task_status_updated(
            task.id, before, _task_snapshot(task), performed_by
        )
        logger.info(
            "fulfillment_status_updated",
            extra={
                "task_id": str(task.id),
                "producer": task.producer,
                "from_status": current.value,
                "to_status": new_status.value,
            },
        )

        self.sync_order_status(task.order, performed_by)
        return task

    def sync_order_status(self, order: Order, performed_by: str) -> OrderStatus:
        """Re-derive and store the order status from its tasks."""
        statuses = self.session.execute(
            select(FulfillmentTask.status).where(FulfillmentTask.order_id == order.id)
        ).scalars().all()
        current = order.status
        derived = derive_order_status(current, statuses)
        if derived != current:
            order.status = derived
            order.updated_at = self.clock.now()
            self.session.flush()
            AuditorService(self.session).record_order_status_changed(
                order.id, current.value, derived.value, performed_by
            )
            logger.info(
                "order_status_changed",
                extra={
                    "order_id": str(order.id),
                    "from_status": current.value,
                    "to_status": derived.value,
                },
            )
        return derived

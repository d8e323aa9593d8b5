"""Read access to fulfillment tasks and their event timelines."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select

from order_kernel.exceptions import FulfillmentTaskNotFoundError
from order_kernel.models.fulfillment import (
    DispatchMethod,
    FulfillmentEventType,
    FulfillmentStatus,
    FulfillmentTask,
)
from order_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class FulfillmentEventDTO:
    event_type: FulfillmentEventType
    status: FulfillmentStatus
    payload: dict[str, Any] | None
    created_at: datetime


@dataclass(frozen=True)
class FulfillmentTaskDTO:
    id: UUID
    order_id: UUID
    order_number: str
    producer: str
    status: FulfillmentStatus
    external_reference: str
    external_order_id: str | None
    dispatch_method: DispatchMethod | None
    tracking_number: str | None
    tracking_url: str | None
    retry_count: int
    last_error: str | None
    sent_at: datetime | None
    shipped_at: datetime | None
    delivered_at: datetime | None
    events: tuple[FulfillmentEventDTO, ...] = ()


def _to_dto(task: FulfillmentTask, with_events: bool = False) -> FulfillmentTaskDTO:
    events: tuple[FulfillmentEventDTO, ...] = ()
    if with_events:
        events = tuple(
            FulfillmentEventDTO(
                event_type=e.event_type,
                status=e.status,
                payload=e.payload,
                created_at=e.created_at,
            )
            for e in task.events
        )
    return FulfillmentTaskDTO(
        id=task.id,
        order_id=task.order_id,
        order_number=task.order.order_number,
        producer=task.producer,
        status=task.status,
        external_reference=task.external_reference,
        external_order_id=task.external_order_id,
        dispatch_method=task.dispatch_method,
        tracking_number=task.tracking_number,
        tracking_url=task.tracking_url,
        retry_count=task.retry_count,
        last_error=task.last_error,
        sent_at=task.sent_at,
        shipped_at=task.shipped_at,
        delivered_at=task.delivered_at,
        events=events,
    )


class FulfillmentSelector(BaseSelector):
    def get(self, task_id: UUID) -> FulfillmentTaskDTO:
        """One task with its full event timeline."""
        task = self.session.get(FulfillmentTask, task_id)
        if task is None:
            raise FulfillmentTaskNotFoundError(str(task_id))
        return _to_dto(task, with_events=True)

    def tasks_for_order(self, order_id: UUID) -> list[FulfillmentTaskDTO]:
        tasks = self.session.execute(
            select(FulfillmentTask)
            .where(FulfillmentTask.order_id == order_id)
            .order_by(FulfillmentTask.created_at, FulfillmentTask.producer)
        ).scalars()
        return [_to_dto(t) for t in tasks]

    def tasks_by_status(
        self,
        status: FulfillmentStatus,
        producer: str | None = None,
        limit: int = 100,
    ) -> list[FulfillmentTaskDTO]:
        query = select(FulfillmentTask).where(FulfillmentTask.status == status)
        if producer is not None:
            query = query.where(FulfillmentTask.producer == producer)
        query = query.order_by(FulfillmentTask.created_at).limit(limit)
        return [_to_dto(t) for t in self.session.execute(query).scalars().unique()]

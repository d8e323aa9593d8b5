"""
FulfillmentDispatcher -- forwards fulfillment tasks to producers.

Responsibility:
    For each pending task of an order: builds the producer-scoped payload
    (only that producer's items), resolves the producer client, sends the
    order, and records the outcome on the task.  The same single-task path
    serves the first dispatch, ``dispatch_pending_tasks`` batches and
    operator retries.

Architecture position:
    Kernel > Services.  Runs after the order-creation transaction has
    committed.  Owns its own short transactions through the injected
    session factory.

Invariants enforced:
    - No network call happens inside a database transaction.
    - Each task's outcome is recorded in its own transaction, scoped to
      that task's row; one task's failure never prevents or rolls back
      another task or the order.
    - Retry history is persisted: ``retry_count`` increments on every
      failed attempt and the task becomes ``failed`` when it reaches
      MAX_DISPATCH_ATTEMPTS.  Failed tasks are never retried automatically.

Failure modes:
    - Producer errors, unknown producers and empty payloads become
      recorded task failures and a failed DispatchOutcome.  Nothing is
      raised for partial failure.
    - OrderNotFoundError / FulfillmentTaskNotFoundError for bad ids.
    - ProducerStatusError from ``reconcile_task_status`` propagates.

Audit relevance:
    ``fulfillment_dispatched`` or ``fulfillment_dispatch_failed`` per
    attempt, plus a FulfillmentEvent on the task's timeline.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from order_kernel.db.engine import session_scope
from order_kernel.domain.clock import Clock, SystemClock
from order_kernel.domain.dtos import DispatchOutcome, DispatchSummary
from order_kernel.exceptions import (
    FulfillmentTaskNotFoundError,
    OrderNotFoundError,
    UnknownProducerError,
)
from order_kernel.logging_config import LogContext, get_logger
from order_kernel.models.fulfillment import (
    FulfillmentEventType,
    FulfillmentStatus,
    FulfillmentTask,
)
from order_kernel.models.order import Order
from order_kernel.producers.base import (
    DispatchResult,
    ProducerClient,
    ProducerOrderItem,
    ProducerOrderPayload,
)
from order_kernel.producers.registry import ProducerRegistry
from order_kernel.services.auditor_service import SYSTEM_ACTOR, AuditorService
from order_kernel.services.fulfillment_status import FulfillmentStatusService
from order_kernel.settings import KernelSettings

logger = get_logger("services.dispatcher")


@dataclass(frozen=True)
class _PreparedDispatch:
    task_id: UUID
    producer: str
    order_number: str
    payload: ProducerOrderPayload | None
    client: ProducerClient | None
    error: str | None


def build_payload(order: Order, task: FulfillmentTask) -> ProducerOrderPayload:
    """Producer-scoped payload: only the items assigned to ``task.producer``."""
    items = tuple(
        ProducerOrderItem(
            sku=item.sku,
            product_name=item.product_name,
            variant_name=item.variant_name,
            quantity=item.quantity,
            size_ml=item.size_ml,
            weight_grams=item.weight_grams,
        )
        for item in order.items
        if item.producer == task.producer
    )
    return ProducerOrderPayload(
        task_id=task.id,
        external_reference=task.external_reference,
        order_number=order.order_number,
        items=items,
        shipping_address=dict(order.shipping_address),
        customer_email=order.contact_email,
        notes=order.notes,
    )


class FulfillmentDispatcher:
    """
    Dispatches fulfillment tasks with bounded, persisted retries.

    Contract:
        ``dispatch_pending_tasks(order_id)`` returns one outcome per task
        that was pending when called.  ``dispatch_single_task(task_id)`` is
        the one code path that sends and records.

    Guarantees:
        - Never raises for producer failures.
        - A task reaches ``failed`` exactly when its retry_count reaches
          MAX_DISPATCH_ATTEMPTS.

    Non-goals:
        - No in-process retry loop and no backoff; retries are triggered
          by operators or a scheduler.
    """

    MAX_DISPATCH_ATTEMPTS = 5

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: KernelSettings,
        registry: ProducerRegistry,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._settings = settings
        self._registry = registry
        self._clock = clock or SystemClock()

    def dispatch_pending_tasks(self, order_id: UUID) -> DispatchSummary:
        with session_scope(self._session_factory) as session:
            order = session.get(Order, order_id)
            if order is None:
                raise OrderNotFoundError(str(order_id))
            order_number = order.order_number
            task_ids = session.execute(
                select(FulfillmentTask.id)
                .where(
                    FulfillmentTask.order_id == order_id,
                    FulfillmentTask.status == FulfillmentStatus.PENDING,
                )
                .order_by(FulfillmentTask.created_at, FulfillmentTask.producer)
            ).scalars().all()

        if not task_ids:
            logger.info("dispatch_nothing_pending", extra={"order_id": str(order_id)})
            return DispatchSummary(order_id=order_id)

        outcomes = tuple(self.dispatch_single_task(task_id) for task_id in task_ids)
        summary = DispatchSummary(order_id=order_id, outcomes=outcomes)
        logger.info(
            "dispatch_completed",
            extra={
                "order_id": str(order_id),
                "order_number": order_number,
                "sent": summary.sent_count,
                "failed": summary.failed_count,
            },
        )
        return summary

    def dispatch_single_task(
        self,
        task_id: UUID,
        performed_by: str = SYSTEM_ACTOR,
    ) -> DispatchOutcome:
        """
        Send one pending task to its producer and record the outcome.

        A task that is no longer pending is left alone and reported with
        its current state.
        """
        prepared = self._prepare(task_id)
        if isinstance(prepared, DispatchOutcome):
            return prepared

        with LogContext.bind(order_number=prepared.order_number, producer=prepared.producer):
            if prepared.error is not None:
                result = DispatchResult.failed(None, prepared.error)
            else:
                result = self._send(prepared)
            return self._record(task_id, result, performed_by)

    def reconcile_task_status(
        self,
        task_id: UUID,
        performed_by: str = SYSTEM_ACTOR,
    ) -> FulfillmentStatus:
        """
        Poll the producer for an API-dispatched task and apply forward progress.

        Raises:
            FulfillmentTaskNotFoundError: Unknown task id.
            ProducerStatusError: The producer could not be asked.
        """
        with session_scope(self._session_factory) as session:
            task = session.get(FulfillmentTask, task_id)
            if task is None:
                raise FulfillmentTaskNotFoundError(str(task_id))
            external_id = task.external_order_id
            current = task.status
            if external_id is None or current not in (
                FulfillmentStatus.SENT_TO_PRODUCER,
                FulfillmentStatus.CONFIRMED,
                FulfillmentStatus.SHIPPED,
            ):
                return current
            client = self._registry.resolve(task.producer, session)

        report = client.get_status(external_id)

        with session_scope(self._session_factory) as session:
            task = session.execute(
                select(FulfillmentTask).where(FulfillmentTask.id == task_id).with_for_update()
            ).scalar_one()
            moves_forward = report.status.progress_rank > task.status.progress_rank
            if not (moves_forward or report.status == FulfillmentStatus.CANCELLED):
                if report.tracking_number and not task.tracking_number:
                    task.tracking_number = report.tracking_number
                    task.tracking_url = report.tracking_url or task.tracking_url
                return task.status
            FulfillmentStatusService(session, self._settings, self._clock).apply_status(
                task,
                report.status,
                performed_by,
                event_type=FulfillmentEventType.STATUS_RECONCILED,
                tracking_number=report.tracking_number,
                tracking_url=report.tracking_url,
                extra_payload={"producer_payload": report.raw_payload},
            )
            return task.status

    def _prepare(self, task_id: UUID) -> _PreparedDispatch | DispatchOutcome:
        with session_scope(self._session_factory) as session:
            task = session.get(FulfillmentTask, task_id)
            if task is None:
                raise FulfillmentTaskNotFoundError(str(task_id))
            if task.status != FulfillmentStatus.PENDING:
                logger.info(
                    "dispatch_skipped_not_pending",
                    extra={"task_id": str(task_id), "status": task.status.value},
                )
                return _outcome_from_task(task, success=False, error="Task is not pending")

            order = task.order
            payload = build_payload(order, task)
            client = None
            error = None
            if not payload.items:
                error = f"No items for producer {task.producer} in order {order.order_number}"
            else:
                try:
                    client = self._registry.resolve(task.producer, session)
                except UnknownProducerError as exc:
                    error = str(exc)

            return _PreparedDispatch(
                task_id=task.id,
                producer=task.producer,
                order_number=order.order_number,
                payload=payload,
                client=client,
                error=error,
            )

    def _send(self, prepared: _PreparedDispatch) -> DispatchResult:
        client = prepared.client
        try:
            return client.send_order(prepared.payload)
        except Exception as exc:
            # Clients must not raise; a bug in one must still stay with its task.
            logger.exception(
                "producer_client_raised",
                extra={"task_id": str(prepared.task_id), "producer": prepared.producer},
            )
            return DispatchResult.failed(client.mode, f"Unexpected dispatch error: {exc}")

    def _record(
        self,
        task_id: UUID,
        result: DispatchResult,
        performed_by: str,
    ) -> DispatchOutcome:
        with session_scope(self._session_factory) as session:
            task = session.execute(
                select(FulfillmentTask).where(FulfillmentTask.id == task_id).with_for_update()
            ).scalar_one()
            if task.status != FulfillmentStatus.PENDING:
                logger.warning(
                    "dispatch_outcome_superseded",
                    extra={"task_id": str(task_id), "status": task.status.value},
                )
                return _outcome_from_task(task, success=False, error="Task changed during dispatch")

            status_service = FulfillmentStatusService(session, self._settings, self._clock)
            auditor = AuditorService(session)
            now = self._clock.now()
            method = result.method.value if result.method else None

            if result.success:
                task.status = FulfillmentStatus.SENT_TO_PRODUCER
                task.external_order_id = result.external_order_id
                task.dispatch_method = result.method
                task.sent_at = now
                task.last_error = None
                task.updated_at = now
                status_service.add_event(
                    task,
                    FulfillmentEventType.SENT_TO_PRODUCER,
                    {
                        "method": method,
                        "external_order_id": result.external_order_id,
                        "producer": task.producer,
                    },
                )
                session.flush()
                auditor.record_dispatch(
                    task.id,
                    True,
                    {
                        "producer": task.producer,
                        "method": method,
                        "external_order_id": result.external_order_id,
                        "order_number": task.order.order_number,
                    },
                    performed_by=performed_by,
                )
                status_service.sync_order_status(task.order, performed_by)
                logger.info(
                    "dispatch_sent",
                    extra={"task_id": str(task.id), "method": method},
                )
                return _outcome_from_task(task, success=True)

            task.retry_count += 1
            task.last_error = result.error or "Unknown error"
            if result.method is not None:
                task.dispatch_method = result.method
            marked_failed = task.retry_count >= self.MAX_DISPATCH_ATTEMPTS
            if marked_failed:
                task.status = FulfillmentStatus.FAILED
            task.updated_at = now
            status_service.add_event(
                task,
                FulfillmentEventType.DISPATCH_FAILED,
                {
                    "error": task.last_error,
                    "retry_count": task.retry_count,
                    "marked_failed": marked_failed,
                },
            )
            session.flush()
            auditor.record_dispatch(
                task.id,
                False,
                {"error": task.last_error, "retry_count": task.retry_count},
                performed_by=performed_by,
            )
            logger.warning(
                "dispatch_failed",
                extra={
                    "task_id": str(task.id),
                    "retry_count": task.retry_count,
                    "marked_failed": marked_failed,
                    "error": task.last_error,
                },
            )
            return _outcome_from_task(task, success=False, error=task.last_error)


def _outcome_from_task(
    task: FulfillmentTask,
    success: bool,
    error: str | None = None,
) -> DispatchOutcome:
    return DispatchOutcome(
        task_id=task.id,
        producer=task.producer,
        success=success,
        status=task.status,
        retry_count=task.retry_count,
        method=task.dispatch_method,
        external_order_id=task.external_order_id,
        error=error,
    )

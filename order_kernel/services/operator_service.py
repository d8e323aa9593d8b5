"""
OperatorService -- the write actions available to shop operators.

Responsibility:
    Manual fulfillment retry, fulfillment status override, refunds outside
    the webhook path, the stuck-task check and period report generation.
    Every action re-enters the same services the automatic paths use.

Architecture position:
    Kernel > Services.  Called by ``scripts/operator_cli.py``.  Owns its
    transactions through the injected session factory.

Invariants enforced:
    - The acting operator is an explicit ``performed_by`` argument and is
      written to every audit entry.
    - A retry reuses ``FulfillmentDispatcher.dispatch_single_task``; there
      is no second dispatch path.
    - Only pending or failed tasks can be retried.  A manual retry gets one
      attempt and is counted in ``retry_count``.
"""

from collections.abc import Sequence
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, sessionmaker

from order_kernel.db.engine import session_scope
from order_kernel.domain.clock import Clock, SystemClock
from order_kernel.domain.dtos import DispatchOutcome, RefundRequest, RefundResult
from order_kernel.exceptions import (
    FulfillmentTaskNotFoundError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
)
from order_kernel.logging_config import LogContext, get_logger
from order_kernel.models.fulfillment import (
    FulfillmentEventType,
    FulfillmentStatus,
    FulfillmentTask,
)
from order_kernel.models.order import Order
from order_kernel.services.auditor_service import AuditorService
from order_kernel.services.fulfillment_dispatcher import FulfillmentDispatcher
from order_kernel.services.fulfillment_status import FulfillmentStatusService
from order_kernel.services.notification import (
    LoggingNotificationChannel,
    NotificationChannel,
    StuckTaskAlert,
    notify_safely,
)
from order_kernel.services.refund_service import process_refund_once
from order_kernel.services.reporting_service import PeriodReportSummary, ReportingService
from order_kernel.settings import KernelSettings

logger = get_logger("services.operator")

RETRYABLE_STATUSES = (FulfillmentStatus.PENDING, FulfillmentStatus.FAILED)


def _lock_task(session: Session, task_id: UUID) -> FulfillmentTask:
    task = session.execute(
        select(FulfillmentTask).where(FulfillmentTask.id == task_id).with_for_update()
    ).scalar_one_or_none()
    if task is None:
        raise FulfillmentTaskNotFoundError(str(task_id))
    return task


class OperatorService:
    """
    Operator actions over orders and fulfillment tasks.

    Non-goals:
        - No authentication; callers pass an already-authenticated actor.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: KernelSettings,
        dispatcher: FulfillmentDispatcher,
        notifications: NotificationChannel | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._settings = settings
        self._dispatcher = dispatcher
        self._notifications = notifications or LoggingNotificationChannel()
        self._clock = clock or SystemClock()

    def retry_task(self, task_id: UUID, performed_by: str) -> DispatchOutcome:
        """
        Reset a pending or failed task to pending and dispatch it once.

        Raises:
            FulfillmentTaskNotFoundError: Unknown task id.
            InvalidStatusTransitionError: The task was already sent or closed.
        """
        with LogContext.bind(actor=performed_by):
            with session_scope(self._session_factory) as session:
                task = _lock_task(session, task_id)
                if task.status not in RETRYABLE_STATUSES:
                    raise InvalidStatusTransitionError(
                        "fulfillment_task",
                        str(task_id),
                        task.status.value,
                        FulfillmentStatus.PENDING.value,
                    )
                before = {
                    "status": task.status.value,
                    "retry_count": task.retry_count,
                    "last_error": task.last_error,
                }
                task.status = FulfillmentStatus.PENDING
                task.updated_at = self._clock.now()
                FulfillmentStatusService(session, self._settings, self._clock).add_event(
                    task,
                    FulfillmentEventType.MANUAL_RETRY,
                    {"performed_by": performed_by, **before},
                )
                session.flush()
                AuditorService(session).record_manual_retry(task.id, before, performed_by)
                logger.info(
                    "manual_retry_requested",
                    extra={"task_id": str(task_id), "from_status": before["status"]},
                )

            return self._dispatcher.dispatch_single_task(task_id, performed_by=performed_by)

    def override_task_status(
        self,
        task_id: UUID,
        status: FulfillmentStatus | str,
        performed_by: str,
        tracking_number: str | None = None,
        tracking_url: str | None = None,
        notes: str | None = None,
    ) -> FulfillmentStatus:
        """Set a task's status by hand, e.g. for e-mail producers reporting by phone."""
        new_status = FulfillmentStatus(status)
        with LogContext.bind(actor=performed_by):
            with session_scope(self._session_factory) as session:
                task = _lock_task(session, task_id)
                FulfillmentStatusService(session, self._settings, self._clock).apply_status(
                    task,
                    new_status,
                    performed_by,
                    tracking_number=tracking_number,
                    tracking_url=tracking_url,
                    notes=notes,
                )
                return task.status

    def reconcile_task(self, task_id: UUID, performed_by: str) -> FulfillmentStatus:
        with LogContext.bind(actor=performed_by):
            return self._dispatcher.reconcile_task_status(task_id, performed_by=performed_by)

    def trigger_refund(
        self,
        order_number: str,
        amount_cents: int,
        performed_by: str,
        reason: str | None = None,
        external_refund_id: str | None = None,
    ) -> RefundResult:
        with session_scope(self._session_factory) as session:
            order_id = session.execute(
                select(Order.id).where(Order.order_number == order_number)
            ).scalar_one_or_none()
        if order_id is None:
            raise OrderNotFoundError(order_number)

        with LogContext.bind(actor=performed_by, order_number=order_number):
            return process_refund_once(
                self._session_factory,
                self._settings,
                RefundRequest(
                    order_id=order_id,
                    refund_amount_cents=amount_cents,
                    external_refund_id=external_refund_id,
                    reason=reason or "Operator refund",
                ),
                clock=self._clock,
                performed_by=performed_by,
            )

    def find_stuck_tasks(self, now: datetime | None = None) -> list[StuckTaskAlert]:
        """
        Failed tasks plus tasks pending longer than the configured threshold.

        Sends one operator alert when any are found.
        """
        now = now or self._clock.now()
        cutoff = now - timedelta(minutes=self._settings.stuck_pending_after_minutes)
        with session_scope(self._session_factory) as session:
            tasks = session.execute(
                select(FulfillmentTask)
                .where(
                    or_(
                        FulfillmentTask.status == FulfillmentStatus.FAILED,
                        (FulfillmentTask.status == FulfillmentStatus.PENDING)
                        & (FulfillmentTask.created_at < cutoff),
                    )
                )
                .order_by(FulfillmentTask.created_at)
            ).scalars().all()
            alerts = [
                StuckTaskAlert(
                    task_id=str(task.id),
                    order_number=task.order.order_number,
                    producer=task.producer,
                    status=task.status.value,
                    retry_count=task.retry_count,
                    last_error=task.last_error,
                )
                for task in tasks
            ]

        logger.info("stuck_task_check", extra={"stuck": len(alerts)})
        if alerts:
            notify_safely("stuck_tasks", self._notifications.stuck_tasks, alerts)
        return alerts

    def generate_period_report(
        self,
        period_start: date,
        period_end: date,
        generated_by: str,
    ) -> PeriodReportSummary:
        with LogContext.bind(actor=generated_by):
            with session_scope(self._session_factory) as session:
                return ReportingService(session, self._settings, self._clock).generate_period_report(
                    period_start, period_end, generated_by
                )

    def verify_period_report(self, report_id: UUID) -> bool:
        with session_scope(self._session_factory) as session:
            return ReportingService(session, self._settings, self._clock).verify_report(report_id)


def format_alerts(alerts: Sequence[StuckTaskAlert]) -> list[str]:
    return [
        f"{a.order_number} {a.producer} {a.status} retries={a.retry_count} {a.last_error or ''}".rstrip()
        for a in alerts
    ]

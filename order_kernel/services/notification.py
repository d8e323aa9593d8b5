"""
Notification side channel -- order confirmations, dispatch summaries and
operator alerts.

Everything here is best-effort.  ``notify_safely`` logs and drops any
exception, so a failing channel can never change the outcome of a
webhook, a dispatch or an operator action.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from order_kernel.domain.dtos import DispatchSummary, OrderCreated
from order_kernel.exceptions import MailDeliveryError
from order_kernel.logging_config import get_logger
from order_kernel.producers.email import Mailer, OutgoingEmail

logger = get_logger("services.notification")


@dataclass(frozen=True)
class StuckTaskAlert:
    task_id: str
    order_number: str
    producer: str
    status: str
    retry_count: int
    last_error: str | None


class NotificationChannel(ABC):
    @abstractmethod
    def order_created(self, order: OrderCreated, contact_email: str | None) -> None:
        ...

    @abstractmethod
    def dispatch_completed(self, order_number: str, summary: DispatchSummary) -> None:
        ...

    @abstractmethod
    def stuck_tasks(self, alerts: Sequence[StuckTaskAlert]) -> None:
        ...


class LoggingNotificationChannel(NotificationChannel):
    """Default channel: writes one structured log record per notification."""

    def order_created(self, order: OrderCreated, contact_email: str | None) -> None:
        logger.info(
            "notify_order_created",
            extra={
                "order_number": order.order_number,
                "has_contact_email": contact_email is not None,
                "fulfillment_task_count": len(order.fulfillment_task_ids),
            },
        )

    def dispatch_completed(self, order_number: str, summary: DispatchSummary) -> None:
        logger.info(
            "notify_dispatch_completed",
            extra={
                "order_number": order_number,
                "sent": summary.sent_count,
                "failed": summary.failed_count,
            },
        )

    def stuck_tasks(self, alerts: Sequence[StuckTaskAlert]) -> None:
        logger.warning(
            "notify_stuck_tasks",
            extra={"count": len(alerts), "task_ids": [a.task_id for a in alerts]},
        )


class OperatorEmailChannel(LoggingNotificationChannel):
    """Logs like the default channel and also e-mails stuck-task alerts."""

    def __init__(self, mailer: Mailer, operator_email: str, subject_tag: str = "[AIGG]"):
        self._mailer = mailer
        self._operator_email = operator_email
        self._subject_tag = subject_tag

    def stuck_tasks(self, alerts: Sequence[StuckTaskAlert]) -> None:
        super().stuck_tasks(alerts)
        lines = [f"{len(alerts)} Fulfillment-Aufträge benötigen Aufmerksamkeit:", ""]
        for alert in alerts:
            lines.append(
                f"- {alert.order_number} / {alert.producer}: {alert.status}, "
                f"Versuche: {alert.retry_count}"
                + (f", Fehler: {alert.last_error}" if alert.last_error else "")
            )
        email = OutgoingEmail(
            to=self._operator_email,
            subject=f"{self._subject_tag} {len(alerts)} hängende Fulfillment-Aufträge",
            body="\n".join(lines),
        )
        if not self._mailer.send(email):
            raise MailDeliveryError(self._operator_email, "mail provider did not accept the alert")


def notify_safely(name: str, send: Callable[..., None], *args: Any) -> bool:
    """Call one channel method; log and drop any failure."""
    try:
        send(*args)
    except Exception:
        logger.warning("notification_failed", extra={"notification": name}, exc_info=True)
        return False
    return True

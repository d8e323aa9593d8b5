"""
AuditorService -- append-only audit log writer.

Responsibility:
    Creates one immutable ``AuditLogEntry`` for every state-changing action
    in the kernel: order creation, refunds, dispatch outcomes, status
    changes, manual retries, webhook errors, commissions and reports.

Architecture position:
    Kernel > Services -- called by every write service.

Invariants enforced:
    - Append-only: entries are never modified or deleted (ORM listener and
      PostgreSQL trigger on ``audit_log``).
    - The acting identity is an explicit argument, never ambient state.

Audit relevance:
    This IS the audit service.  The read path is owned by operator
    tooling, not by the kernel.
"""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from order_kernel.logging_config import get_logger
from order_kernel.models.audit_log import AuditAction, AuditLogEntry

logger = get_logger("services.auditor")

SYSTEM_ACTOR = "system"


class AuditorService:
    """
    Writes audit entries into the caller's transaction.

    Contract:
        Each ``record_*`` method adds one AuditLogEntry and flushes.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT query the audit log.
    """

    def __init__(self, session: Session):
        self._session = session

    def record(
        self,
        entity_type: str,
        entity_id: UUID | str,
        action: AuditAction,
        performed_by: str = SYSTEM_ACTOR,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        """Add one audit entry.  Values must be JSON-serializable."""
        entry = AuditLogEntry(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            old_values=old_values,
            new_values=new_values,
            performed_by=performed_by,
        )
        self._session.add(entry)
        self._session.flush()

        logger.info(
            "audit_entry_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "performed_by": performed_by,
            },
        )
        return entry

    # Domain-specific recording methods

    def record_order_created(
        self,
        order_id: UUID,
        new_values: dict[str, Any],
        performed_by: str = SYSTEM_ACTOR,
    ) -> AuditLogEntry:
        return self.record("order", order_id, AuditAction.ORDER_CREATED, performed_by,
                           new_values=new_values)

    def record_order_status_changed(
        self,
        order_id: UUID,
        old_status: str,
        new_status: str,
        performed_by: str = SYSTEM_ACTOR,
    ) -> AuditLogEntry:
        return self.record(
            "order",
            order_id,
            AuditAction.ORDER_STATUS_CHANGED,
            performed_by,
            old_values={"status": old_status},
            new_values={"status": new_status},
        )

    def record_refund(
        self,
        order_id: UUID,
        new_values: dict[str, Any],
        performed_by: str = SYSTEM_ACTOR,
    ) -> AuditLogEntry:
        return self.record("order", order_id, AuditAction.REFUND_PROCESSED, performed_by,
                           new_values=new_values)

    def record_dispatch(
        self,
        task_id: UUID,
        success: bool,
        new_values: dict[str, Any],
        performed_by: str = SYSTEM_ACTOR,
    ) -> AuditLogEntry:
        action = (
            AuditAction.FULFILLMENT_DISPATCHED
            if success
            else AuditAction.FULFILLMENT_DISPATCH_FAILED
        )
        return self.record("fulfillment_task", task_id, action, performed_by,
                           new_values=new_values)

    def record_task_status_updated(
        self,
        task_id: UUID,
        old_values: dict[str, Any],
        new_values: dict[str, Any],
        performed_by: str,
    ) -> AuditLogEntry:
        return self.record(
            "fulfillment_task",
            task_id,
            AuditAction.FULFILLMENT_STATUS_UPDATED,
            performed_by,
            old_values=old_values,
            new_values=new_values,
        )

    def record_manual_retry(
        self,
        task_id: UUID,
        old_values: dict[str, Any],
        performed_by: str,
    ) -> AuditLogEntry:
        return self.record(
            "fulfillment_task",
            task_id,
            AuditAction.MANUAL_RETRY,
            performed_by,
            old_values=old_values,
            new_values={"status": "pending"},
        )

    def record_webhook_error(
        self,
        event_id: str,
        event_type: str,
        error: str,
    ) -> AuditLogEntry:
        return self.record(
            "webhook_event",
            event_id,
            AuditAction.WEBHOOK_ERROR,
            new_values={"event_type": event_type, "error": error},
        )

"""
AuditLogEntry -- immutable record of every state-changing action.

Write-only from the kernel's point of view: services append, nothing in
the core reads it back.  Rows are never updated or deleted.
"""

from enum import Enum
from typing import Any

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from order_kernel.db.base import TimestampedBase
from order_kernel.db.types import enum_column_type


class AuditAction(str, Enum):
    """Actions recorded in the audit log."""

    ORDER_CREATED = "order_created"
    ORDER_STATUS_CHANGED = "order_status_changed"
    REFUND_PROCESSED = "refund_processed"
    FULFILLMENT_DISPATCHED = "fulfillment_dispatched"
    FULFILLMENT_DISPATCH_FAILED = "fulfillment_dispatch_failed"
    FULFILLMENT_STATUS_UPDATED = "fulfillment_status_updated"
    MANUAL_RETRY = "manual_retry"
    WEBHOOK_ERROR = "webhook_error"
    COMMISSION_CREATED = "commission_created"
    COMMISSION_PAID = "commission_paid"
    REPORT_GENERATED = "report_generated"


class AuditLogEntry(TimestampedBase):
    """One audited action with before/after snapshots and the acting identity."""

    __tablename__ = "audit_log"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[AuditAction] = mapped_column(
        enum_column_type(AuditAction, 50), nullable=False
    )
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    performed_by: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLogEntry {self.action} {self.entity_type}:{self.entity_id}>"

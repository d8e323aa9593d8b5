"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

The ledger, the audit log and the dedup table are history.  A refund is a
new negative entry, never an edit of the sale; a superseded period report
is archived, never overwritten.  This module stops application code from
breaking that rule:

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications through Python/SQLAlchemy code
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/sql/*.sql (PostgreSQL triggers, see db/triggers.py)
    - Catches raw SQL, bulk UPDATE statements, direct psql access

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                  | Rule
------------------------|------------------------------------------------------
LedgerEntry             | never updated, never deleted
AuditLogEntry           | never updated, never deleted
ProcessedExternalEvent  | never updated, never deleted
FulfillmentEvent        | never updated, never deleted
OrderItem               | never updated, never deleted
Order                   | only ``status`` may change; never deleted
PeriodReport            | only generated -> archived (+ archived_at); never deleted
PartnerCommission       | only payout fields may change; never deleted
FulfillmentTask         | order, producer, external reference fixed; never deleted

``updated_at`` is metadata and may always change.

===============================================================================
USAGE
===============================================================================

Registered by db.engine.create_session_factory().  To temporarily disable
(TESTS ONLY):

    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect

from order_kernel.exceptions import ImmutabilityViolationError
from order_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_METADATA_COLUMNS = frozenset({"updated_at"})

# Columns that may change after insert, per entity.
_MUTABLE_COLUMNS: dict[str, frozenset[str]] = {
    "Order": frozenset({"status"}),
    "PeriodReport": frozenset({"status", "archived_at"}),
    "PartnerCommission": frozenset({"status", "transfer_reference", "paid_at"}),
}

# Columns fixed at insert; everything else may change.
_FROZEN_COLUMNS: dict[str, frozenset[str]] = {
    "FulfillmentTask": frozenset({"order_id", "producer", "external_reference"}),
}

_registered = False


def _changed_columns(target) -> set[str]:
    state = inspect(target)
    changed = set()
    for attr in state.mapper.column_attrs:
        if state.attrs[attr.key].history.has_changes():
            changed.add(attr.key)
    return changed


def _block(target, operation: str, reason: str) -> None:
    entity_type = type(target).__name__
    entity_id = str(getattr(target, "id", "unknown"))
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(entity_type, entity_id, reason)


def _check_append_only_update(mapper, connection, target):
    changed = _changed_columns(target) - _METADATA_COLUMNS
    if changed:
        _block(target, "UPDATE", f"append-only record, attempted to change {sorted(changed)}")


def _check_no_delete(mapper, connection, target):
    _block(target, "DELETE", "record may never be deleted")


def _check_restricted_update(mapper, connection, target):
    allowed = _MUTABLE_COLUMNS[type(target).__name__]
    changed = _changed_columns(target) - _METADATA_COLUMNS
    forbidden = changed - allowed
    if forbidden:
        _block(target, "UPDATE", f"columns {sorted(forbidden)} are immutable")


def _check_frozen_columns(mapper, connection, target):
    frozen = _changed_columns(target) & _FROZEN_COLUMNS[type(target).__name__]
    if frozen:
        _block(target, "UPDATE", f"columns {sorted(frozen)} are fixed at creation")


def _check_period_report_update(mapper, connection, target):
    from order_kernel.models.period_report import ReportStatus

    _check_restricted_update(mapper, connection, target)

    history = inspect(target).attrs["status"].history
    if not history.has_changes():
        return
    old = history.deleted[0] if history.deleted else None
    new = history.added[0] if history.added else None
    if not (old == ReportStatus.GENERATED and new == ReportStatus.ARCHIVED):
        _block(target, "UPDATE", f"report status may only move generated -> archived, not {old} -> {new}")


def _check_commission_update(mapper, connection, target):
    from order_kernel.models.commission import CommissionStatus

    _check_restricted_update(mapper, connection, target)

    history = inspect(target).attrs["status"].history
    if history.has_changes():
        old = history.deleted[0] if history.deleted else None
        if old != CommissionStatus.PENDING:
            _block(target, "UPDATE", f"commission in status {old} is settled")


def _listeners():
    from order_kernel.models.audit_log import AuditLogEntry
    from order_kernel.models.commission import PartnerCommission
    from order_kernel.models.fulfillment import FulfillmentEvent, FulfillmentTask
    from order_kernel.models.ledger import LedgerEntry
    from order_kernel.models.order import Order, OrderItem
    from order_kernel.models.period_report import PeriodReport
    from order_kernel.models.processed_event import ProcessedExternalEvent

    listeners = []
    for model in (LedgerEntry, AuditLogEntry, ProcessedExternalEvent, FulfillmentEvent, OrderItem):
        listeners.append((model, "before_update", _check_append_only_update))
    for model in (
        LedgerEntry,
        AuditLogEntry,
        ProcessedExternalEvent,
        FulfillmentEvent,
        OrderItem,
        Order,
        PeriodReport,
        PartnerCommission,
        FulfillmentTask,
    ):
        listeners.append((model, "before_delete", _check_no_delete))
    listeners.append((Order, "before_update", _check_restricted_update))
    listeners.append((PeriodReport, "before_update", _check_period_report_update))
    listeners.append((PartnerCommission, "before_update", _check_commission_update))
    listeners.append((FulfillmentTask, "before_update", _check_frozen_columns))
    return listeners


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    global _registered
    if _registered:
        return
    for model, name, fn in _listeners():
        event.listen(model, name, fn)
    _registered = True
    logger.debug("immutability_listeners_registered")


def unregister_immutability_listeners() -> None:
    """Remove all immutability listeners. FOR TESTING ONLY."""
    global _registered
    if not _registered:
        return
    for model, name, fn in _listeners():
        if event.contains(model, name, fn):
            event.remove(model, name, fn)
    _registered = False

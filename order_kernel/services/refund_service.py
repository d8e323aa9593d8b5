"""
RefundService -- reverses a sale by appending a negative ledger entry.

Responsibility:
    Books a partial or full refund against an order.  The original sale
    entry is the proportion base; every cost field of the refund entry is
    the rounded proportional negative of the sale's field, and revenue is
    exactly the negative refund amount.

Architecture position:
    Kernel > Services.  Called by the webhook processor
    (``charge.refunded``) and by OperatorService.trigger_refund.

Invariants enforced:
    - History is never mutated: no prior ledger entry is updated or deleted.
    - A refund never exceeds the order's current net revenue; exceeding
      it is rejected, never clamped.
    - An external refund id is applied at most once per order
      (lookup first, unique constraint as the concurrency guard).
    - Only a full refund moves the order to ``refunded``; fulfillment
      tasks are never touched.

Failure modes:
    - InvalidRefundAmountError / NonIntegerAmountError -- bad amount.
    - OrderNotFoundError, OriginalSaleNotFoundError -- nothing to reverse.
    - NothingToRefundError -- net revenue is already zero.
    - RefundExceedsRevenueError -- amount above current net revenue.
    - RefundAlreadyAppliedError -- concurrent insert of the same refund id;
      the owner rolls back and returns the stored result.

Audit relevance:
    ``refund_processed`` for every refund, plus ``order_status_changed``
    when a full refund moves the order to ``refunded``.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from order_kernel.db.engine import session_scope
from order_kernel.domain.accounting import compute_refund_amounts, require_cents
from order_kernel.domain.clock import Clock
from order_kernel.domain.dtos import RefundRequest, RefundResult
from order_kernel.exceptions import (
    InvalidRefundAmountError,
    NothingToRefundError,
    OrderNotFoundError,
    OriginalSaleNotFoundError,
    RefundAlreadyAppliedError,
    RefundExceedsRevenueError,
)
from order_kernel.logging_config import LogContext, get_logger
from order_kernel.models.ledger import LedgerEntry, LedgerEntryType
from order_kernel.models.order import Order, OrderStatus
from order_kernel.services.auditor_service import SYSTEM_ACTOR, AuditorService
from order_kernel.services.base import BaseService
from order_kernel.services.ledger_service import LedgerService, costs_of, split_of
from order_kernel.settings import KernelSettings

logger = get_logger("services.refund")


def _result_from_entry(entry: LedgerEntry, already_processed: bool) -> RefundResult:
    return RefundResult(
        ledger_entry_id=entry.id,
        entry_type=entry.entry_type,
        refund_amount_cents=-entry.revenue_cents,
        reversed_split=split_of(entry),
        already_processed=already_processed,
    )


def refund_notes(external_refund_id: str | None, reason: str | None) -> str:
    head = f"Refund {external_refund_id}" if external_refund_id else "Refund"
    return f"{head}: {reason}" if reason else head


class RefundService(BaseService):
    """
    Books refunds.

    Contract:
        ``process_refund()`` appends one refund entry (or returns the
        earlier one for a repeated refund id) and flushes.

    Guarantees:
        - The sale entry and prior refunds are read, never written.

    Non-goals:
        - Does NOT cancel fulfillment tasks.
        - Does NOT commit.
    """

    def __init__(self, session: Session, settings: KernelSettings, clock: Clock | None = None):
        super().__init__(session, settings, clock)
        self._ledger = LedgerService(session, settings, self.clock)
        self._auditor = AuditorService(session)

    def find_applied(self, order_id: UUID, external_refund_id: str) -> RefundResult | None:
        entry = self._ledger.entry_for_refund_id(order_id, external_refund_id)
        return _result_from_entry(entry, already_processed=True) if entry else None

    def process_refund(
        self,
        request: RefundRequest,
        performed_by: str = SYSTEM_ACTOR,
    ) -> RefundResult:
        """
        Append a refund entry for ``request.order_id``.

        Raises:
            InvalidRefundAmountError, NonIntegerAmountError,
            OrderNotFoundError, OriginalSaleNotFoundError,
            NothingToRefundError, RefundExceedsRevenueError,
            RefundAlreadyAppliedError.
        """
        amount = require_cents("refund_amount_cents", request.refund_amount_cents)
        if amount <= 0:
            raise InvalidRefundAmountError(amount)

        order = self.session.execute(
            select(Order).where(Order.id == request.order_id).with_for_update()
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(str(request.order_id))

        with LogContext.bind(order_number=order.order_number):
            if request.external_refund_id:
                applied = self.find_applied(order.id, request.external_refund_id)
                if applied is not None:
                    logger.info(
                        "refund_already_applied",
                        extra={
                            "external_refund_id": request.external_refund_id,
                            "ledger_entry_id": str(applied.ledger_entry_id),
                        },
                    )
                    return applied

            sale = self._ledger.sale_entry(order.id)
            if sale is None:
                raise OriginalSaleNotFoundError(str(order.id))

            net = self._ledger.net_for_order(order.id)
            if net.revenue_cents <= 0:
                raise NothingToRefundError(str(order.id))
            if amount > net.revenue_cents:
                raise RefundExceedsRevenueError(str(order.id), amount, net.revenue_cents)

            is_full = amount == net.revenue_cents
            entry_type = LedgerEntryType.FULL_REFUND if is_full else LedgerEntryType.PARTIAL_REFUND
            amounts = compute_refund_amounts(
                costs_of(sale),
                net.costs,
                net.split,
                amount,
                self.settings.technology_take_percent,
            )

            try:
                entry = self._ledger.append(
                    order,
                    entry_type,
                    amounts,
                    created_by=performed_by,
                    external_refund_id=request.external_refund_id,
                    notes=refund_notes(request.external_refund_id, request.reason),
                )
            except IntegrityError as exc:
                raise RefundAlreadyAppliedError(
                    str(order.id), request.external_refund_id or ""
                ) from exc

            if is_full and order.status != OrderStatus.REFUNDED:
                old_status = order.status
                order.status = OrderStatus.REFUNDED
                order.updated_at = self.clock.now()
                self.session.flush()
                self._auditor.record_order_status_changed(
                    order.id, old_status.value, OrderStatus.REFUNDED.value, performed_by
                )

            self._auditor.record_refund(
                order.id,
                {
                    "ledger_entry_id": str(entry.id),
                    "entry_type": entry_type.value,
                    "refund_amount_cents": amount,
                    "external_refund_id": request.external_refund_id,
                    "reason": request.reason,
                    "net_revenue_before_cents": net.revenue_cents,
                    "net_revenue_after_cents": net.revenue_cents - amount,
                },
                performed_by=performed_by,
            )

            logger.info(
                "refund_processed",
                extra={
                    "order_id": str(order.id),
                    "entry_type": entry_type.value,
                    "refund_amount_cents": amount,
                    "external_refund_id": request.external_refund_id,
                },
            )

        return _result_from_entry(entry, already_processed=False)


def process_refund_once(
    session_factory: sessionmaker[Session],
    settings: KernelSettings,
    request: RefundRequest,
    clock: Clock | None = None,
    performed_by: str = SYSTEM_ACTOR,
) -> RefundResult:
    """
    Apply a refund in its own transaction.

    A concurrent insert of the same external refund id is resolved to the
    stored entry instead of failing.
    """
    try:
        with session_scope(session_factory) as session:
            return RefundService(session, settings, clock).process_refund(
                request, performed_by=performed_by
            )
    except RefundAlreadyAppliedError:
        with session_scope(session_factory) as session:
            applied = RefundService(session, settings, clock).find_applied(
                request.order_id, request.external_refund_id or ""
            )
        if applied is None:
            raise
        return applied

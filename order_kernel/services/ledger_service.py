"""
LedgerService -- the only writer of LedgerEntry rows.

Responsibility:
    Appends sale and refund entries for an order, computes an order's
    running net (sum of all its entries), and checks the ledger invariants
    before every insert.

Architecture position:
    Kernel > Services.  Called by OrderService (sale) and RefundService
    (partial_refund / full_refund).  Pure math lives in
    ``domain/accounting.py``; this module adds persistence and checks.

Invariants enforced:
    - Append-only: entries are inserted, never updated or deleted (ORM
      listener plus PostgreSQL trigger on ``ledger_entries``).
    - gross_profit equals revenue minus the five cost fields.
    - technology + partner + company shares equal gross_profit exactly.
    - An order's net revenue after the insert stays within [0, total].
    - At most one sale per order (partial unique index).

Failure modes:
    - LedgerInvariantError -- any check above fails.  The caller's
      transaction must roll back; this signals financial corruption risk
      and is never swallowed.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select

from order_kernel.domain.accounting import (
    CostBreakdown,
    LedgerAmounts,
    ProfitSplit,
    compute_gross_profit,
)
from order_kernel.exceptions import LedgerInvariantError
from order_kernel.logging_config import get_logger
from order_kernel.models.ledger import LedgerEntry, LedgerEntryType
from order_kernel.models.order import Order
from order_kernel.services.base import BaseService

logger = get_logger("services.ledger")


@dataclass(frozen=True)
class OrderLedgerNet:
    """Sum of every ledger entry booked for one order."""

    costs: CostBreakdown
    split: ProfitSplit
    entry_count: int

    @property
    def revenue_cents(self) -> int:
        return self.costs.revenue_cents


def costs_of(entry: LedgerEntry) -> CostBreakdown:
    return CostBreakdown(
        revenue_cents=entry.revenue_cents,
        producer_cost_cents=entry.producer_cost_cents,
        packaging_cents=entry.packaging_cents,
        shipping_cents=entry.shipping_cents,
        payment_fee_cents=entry.payment_fee_cents,
        customs_cents=entry.customs_cents,
    )


def split_of(entry: LedgerEntry) -> ProfitSplit:
    return ProfitSplit(
        technology_share_cents=entry.technology_share_cents,
        partner_share_cents=entry.partner_share_cents,
        company_share_cents=entry.company_share_cents,
    )


class LedgerService(BaseService):
    """
    Appends ledger entries after validating them.

    Contract:
        ``append()`` validates and inserts one entry in the caller's
        transaction and flushes.

    Guarantees:
        - No entry that violates a ledger invariant is ever flushed.

    Non-goals:
        - Does NOT decide refund proportions (RefundService does).
        - Does NOT commit.
    """

    def net_for_order(self, order_id: UUID) -> OrderLedgerNet:
        """Running totals of all entries for ``order_id`` (zeros if none)."""
        columns = (
            LedgerEntry.revenue_cents,
            LedgerEntry.producer_cost_cents,
            LedgerEntry.packaging_cents,
            LedgerEntry.shipping_cents,
            LedgerEntry.payment_fee_cents,
            LedgerEntry.customs_cents,
            LedgerEntry.technology_share_cents,
            LedgerEntry.partner_share_cents,
            LedgerEntry.company_share_cents,
        )
        row = self.session.execute(
            select(
                *(func.coalesce(func.sum(col), 0) for col in columns),
                func.count(LedgerEntry.id),
            ).where(LedgerEntry.order_id == order_id)
        ).one()
        values = [int(v) for v in row]
        return OrderLedgerNet(
            costs=CostBreakdown(*values[:6]),
            split=ProfitSplit(*values[6:9]),
            entry_count=values[9],
        )

    def sale_entry(self, order_id: UUID) -> LedgerEntry | None:
        return self.session.execute(
            select(LedgerEntry).where(
                LedgerEntry.order_id == order_id,
                LedgerEntry.entry_type == LedgerEntryType.SALE,
            )
        ).scalar_one_or_none()

    def entry_for_refund_id(self, order_id: UUID, external_refund_id: str) -> LedgerEntry | None:
        return self.session.execute(
            select(LedgerEntry).where(
                LedgerEntry.order_id == order_id,
                LedgerEntry.external_refund_id == external_refund_id,
            )
        ).scalar_one_or_none()

    def append(
        self,
        order: Order,
        entry_type: LedgerEntryType,
        amounts: LedgerAmounts,
        created_by: str,
        external_refund_id: str | None = None,
        notes: str | None = None,
    ) -> LedgerEntry:
        """
        Validate and insert one ledger entry.

        Raises:
            LedgerInvariantError: If the entry or the resulting net breaks
                an invariant.
        """
        self._validate_amounts(order.id, amounts)
        self._validate_running_net(order, entry_type, amounts)

        costs = amounts.costs
        split = amounts.split
        entry = LedgerEntry(
            order_id=order.id,
            entry_type=entry_type,
            revenue_cents=costs.revenue_cents,
            producer_cost_cents=costs.producer_cost_cents,
            packaging_cents=costs.packaging_cents,
            shipping_cents=costs.shipping_cents,
            payment_fee_cents=costs.payment_fee_cents,
            customs_cents=costs.customs_cents,
            gross_profit_cents=amounts.gross_profit_cents,
            technology_share_cents=split.technology_share_cents,
            partner_share_cents=split.partner_share_cents,
            company_share_cents=split.company_share_cents,
            external_refund_id=external_refund_id,
            notes=notes,
            created_by=created_by,
            created_at=self.clock.now(),
            updated_at=self.clock.now(),
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "ledger_entry_appended",
            extra={
                "order_id": str(order.id),
                "ledger_entry_id": str(entry.id),
                "entry_type": entry_type.value,
                "revenue_cents": costs.revenue_cents,
                "gross_profit_cents": amounts.gross_profit_cents,
            },
        )
        return entry

    def _validate_amounts(self, order_id: UUID, amounts: LedgerAmounts) -> None:
        expected_gross = compute_gross_profit(amounts.costs)
        if amounts.gross_profit_cents != expected_gross:
            raise LedgerInvariantError(
                str(order_id),
                f"gross profit {amounts.gross_profit_cents} != computed {expected_gross}",
            )
        if amounts.split.total_cents != amounts.gross_profit_cents:
            raise LedgerInvariantError(
                str(order_id),
                f"split total {amounts.split.total_cents} != gross profit "
                f"{amounts.gross_profit_cents}",
            )

    def _validate_running_net(
        self,
        order: Order,
        entry_type: LedgerEntryType,
        amounts: LedgerAmounts,
    ) -> None:
        current = self.net_for_order(order.id)
        if entry_type == LedgerEntryType.SALE and current.entry_count > 0:
            raise LedgerInvariantError(str(order.id), "order already has ledger entries")
        if entry_type.is_refund and amounts.costs.revenue_cents >= 0:
            raise LedgerInvariantError(str(order.id), "refund entry must carry negative revenue")

        new_net = current.revenue_cents + amounts.costs.revenue_cents
        if new_net < 0 or new_net > order.total_cents:
            raise LedgerInvariantError(
                str(order.id),
                f"net revenue {new_net} outside [0, {order.total_cents}]",
            )

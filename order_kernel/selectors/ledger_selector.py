"""
Read access to the ledger.

Order balances are always derived from the entries at query time; there
are no stored balances.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from order_kernel.models.ledger import LedgerEntry, LedgerEntryType
from order_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class LedgerEntryDTO:
    id: UUID
    order_id: UUID
    entry_type: LedgerEntryType
    revenue_cents: int
    producer_cost_cents: int
    packaging_cents: int
    shipping_cents: int
    payment_fee_cents: int
    customs_cents: int
    gross_profit_cents: int
    technology_share_cents: int
    partner_share_cents: int
    company_share_cents: int
    external_refund_id: str | None
    notes: str | None
    created_by: str
    created_at: datetime


@dataclass(frozen=True)
class OrderBalance:
    """Net of all entries of one order."""

    order_id: UUID
    entry_count: int
    revenue_cents: int
    gross_profit_cents: int
    technology_share_cents: int
    partner_share_cents: int
    company_share_cents: int


def _to_dto(entry: LedgerEntry) -> LedgerEntryDTO:
    return LedgerEntryDTO(
        id=entry.id,
        order_id=entry.order_id,
        entry_type=entry.entry_type,
        revenue_cents=entry.revenue_cents,
        producer_cost_cents=entry.producer_cost_cents,
        packaging_cents=entry.packaging_cents,
        shipping_cents=entry.shipping_cents,
        payment_fee_cents=entry.payment_fee_cents,
        customs_cents=entry.customs_cents,
        gross_profit_cents=entry.gross_profit_cents,
        technology_share_cents=entry.technology_share_cents,
        partner_share_cents=entry.partner_share_cents,
        company_share_cents=entry.company_share_cents,
        external_refund_id=entry.external_refund_id,
        notes=entry.notes,
        created_by=entry.created_by,
        created_at=entry.created_at,
    )


class LedgerSelector(BaseSelector):
    """Ledger queries, ordered by creation time."""

    def entries_for_order(self, order_id: UUID) -> list[LedgerEntryDTO]:
        entries = self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.order_id == order_id)
            .order_by(LedgerEntry.created_at, LedgerEntry.id)
        ).scalars()
        return [_to_dto(e) for e in entries]

    def entries_between(self, start: datetime, end: datetime) -> list[LedgerEntryDTO]:
        """Entries with ``start <= created_at < end``."""
        entries = self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.created_at >= start, LedgerEntry.created_at < end)
            .order_by(LedgerEntry.created_at, LedgerEntry.id)
        ).scalars()
        return [_to_dto(e) for e in entries]

    def balance_for_order(self, order_id: UUID) -> OrderBalance:
        entries = self.entries_for_order(order_id)
        return OrderBalance(
            order_id=order_id,
            entry_count=len(entries),
            revenue_cents=sum(e.revenue_cents for e in entries),
            gross_profit_cents=sum(e.gross_profit_cents for e in entries),
            technology_share_cents=sum(e.technology_share_cents for e in entries),
            partner_share_cents=sum(e.partner_share_cents for e in entries),
            company_share_cents=sum(e.company_share_cents for e in entries),
        )

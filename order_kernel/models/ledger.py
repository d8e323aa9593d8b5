"""
LedgerEntry -- one immutable financial fact about an order.

Responsibility:
    Store the signed cost breakdown of a sale or refund, the derived gross
    profit and the three-way profit split, all in integer cents.

Architecture position:
    Kernel > Models.  Written only through LedgerService, which is called by
    OrderService (sale) and RefundService (partial_refund / full_refund).

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listeners + PostgreSQL triggers).
    - gross_profit = revenue - producer_cost - packaging - shipping
      - payment_fee - customs (CHECK constraint).
    - technology + partner + company shares == gross_profit (CHECK constraint).
    - At most one sale entry per order (partial unique index).
    - (order_id, external_refund_id) is unique: a refund id is booked once.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from order_kernel.db.base import TimestampedBase
from order_kernel.db.types import UUIDString, enum_column_type


class LedgerEntryType(str, Enum):
    SALE = "sale"
    PARTIAL_REFUND = "partial_refund"
    FULL_REFUND = "full_refund"
    ADJUSTMENT = "adjustment"

    @property
    def is_refund(self) -> bool:
        return self in (LedgerEntryType.PARTIAL_REFUND, LedgerEntryType.FULL_REFUND)


class LedgerEntry(TimestampedBase):
    """
    Immutable ledger row.

    Contract:
        Sale entries carry positive amounts; refund entries carry the
        proportional negative amounts ("amount to claw back").  Shares of a
        refund are negative.

    Guarantees:
        - Rows are never updated or deleted.
        - The arithmetic invariants hold at the database level.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint(
            "order_id", "external_refund_id", name="uq_ledger_order_refund_id"
        ),
        Index(
            "uq_ledger_one_sale_per_order",
            "order_id",
            unique=True,
            postgresql_where=text("entry_type = 'sale'"),
            sqlite_where=text("entry_type = 'sale'"),
        ),
        Index("idx_ledger_order", "order_id"),
        Index("idx_ledger_created_at", "created_at"),
        CheckConstraint(
            "gross_profit_cents = revenue_cents - producer_cost_cents"
            " - packaging_cents - shipping_cents - payment_fee_cents - customs_cents",
            name="ck_ledger_gross_profit",
        ),
        CheckConstraint(
            "technology_share_cents + partner_share_cents + company_share_cents"
            " = gross_profit_cents",
            name="ck_ledger_split_sum",
        ),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False
    )
    entry_type: Mapped[LedgerEntryType] = mapped_column(
        enum_column_type(LedgerEntryType), nullable=False
    )

    revenue_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    producer_cost_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    packaging_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    shipping_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    customs_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    gross_profit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    technology_share_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    partner_share_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    company_share_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    external_refund_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {self.entry_type} revenue={self.revenue_cents}c "
            f"gross={self.gross_profit_cents}c>"
        )

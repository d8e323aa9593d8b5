"""
PeriodReport -- aggregated ledger figures for a closed date range.

Invariants enforced:
    - Report figures and content_hash never change after insert.
    - The only permitted update is status generated -> archived (plus
      archived_at), used when a newer report supersedes this one.
    - At most one ``generated`` report per (period_start, period_end).
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Date, DateTime, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from order_kernel.db.base import TimestampedBase
from order_kernel.db.types import enum_column_type


class ReportStatus(str, Enum):
    GENERATED = "generated"
    ARCHIVED = "archived"


class PeriodReport(TimestampedBase):
    """
    Tamper-evident period aggregate.

    Contract:
        ``content_hash`` is the SHA-256 of the canonical JSON of the period,
        the totals, the ordered ledger entry ids and the generation time.
        Recomputing it from the ledger detects any later tampering.
    """

    __tablename__ = "period_reports"

    __table_args__ = (
        Index("idx_report_period", "period_start", "period_end"),
        Index(
            "uq_report_one_generated_per_period",
            "period_start",
            "period_end",
            unique=True,
            postgresql_where=text("status = 'generated'"),
            sqlite_where=text("status = 'generated'"),
        ),
    )

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[ReportStatus] = mapped_column(
        enum_column_type(ReportStatus),
        default=ReportStatus.GENERATED,
        nullable=False,
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

    entry_count: Mapped[int] = mapped_column(Integer, nullable=False)
    entry_type_counts: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    generated_by: Mapped[str] = mapped_column(String(100), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PeriodReport {self.period_start}..{self.period_end} "
            f"{self.status} {self.content_hash[:12]}>"
        )

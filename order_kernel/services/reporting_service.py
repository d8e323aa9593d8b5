"""
ReportingService -- tamper-evident period reports over the ledger.

Responsibility:
    Aggregates every LedgerEntry created within a closed date range into
    an immutable PeriodReport with a SHA-256 content hash.  Regenerating a
    report for the same period archives the previous one; nothing is ever
    overwritten.

Architecture position:
    Kernel > Services.  Called by OperatorService and the operator CLI.

Invariants enforced:
    - Only closed periods: ``period_end`` must be before the clock's date.
    - Report figures and the hash are written once; the only later change
      is generated -> archived.
    - At most one ``generated`` report per period.
    - The hash covers the period, the totals, the ordered entry ids and
      the generation time, so ``verify_report`` can recompute it.

Audit relevance:
    Every generated report writes a ``report_generated`` audit entry.
"""

from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select

from order_kernel.domain.accounting import COST_FIELDS
from order_kernel.domain.clock import day_window
from order_kernel.exceptions import PeriodNotClosedError
from order_kernel.logging_config import get_logger
from order_kernel.models.audit_log import AuditAction
from order_kernel.models.ledger import LedgerEntry
from order_kernel.models.period_report import PeriodReport, ReportStatus
from order_kernel.services.auditor_service import AuditorService
from order_kernel.services.base import BaseService
from order_kernel.utils.hashing import hash_payload

logger = get_logger("services.reporting")

TOTAL_FIELDS = (
    "revenue_cents",
    *COST_FIELDS,
    "gross_profit_cents",
    "technology_share_cents",
    "partner_share_cents",
    "company_share_cents",
)


@dataclass(frozen=True)
class PeriodReportSummary:
    report_id: UUID
    period_start: date
    period_end: date
    totals: dict[str, int]
    entry_count: int
    entry_type_counts: dict[str, int]
    content_hash: str
    archived_report_ids: tuple[UUID, ...] = ()


def compute_report_hash(
    period_start: date,
    period_end: date,
    totals: dict[str, int],
    entry_ids: list[str],
    generated_at: datetime,
) -> str:
    return hash_payload({
        "period_start": period_start.isoformat(),
        "period_end": period_end.isoformat(),
        "totals": totals,
        "entry_ids": entry_ids,
        "generated_at": generated_at,
    })


class ReportingService(BaseService):
    """Generates and verifies period reports.  Flush-only."""

    def _entries_in_period(self, period_start: date, period_end: date) -> list[LedgerEntry]:
        start, end = day_window(period_start, period_end)
        return list(
            self.session.execute(
                select(LedgerEntry)
                .where(LedgerEntry.created_at >= start, LedgerEntry.created_at < end)
                .order_by(LedgerEntry.created_at, LedgerEntry.id)
            ).scalars()
        )

    def generate_period_report(
        self,
        period_start: date,
        period_end: date,
        generated_by: str,
    ) -> PeriodReportSummary:
        """
        Aggregate the ledger for ``[period_start, period_end]`` (inclusive).

        Raises:
            PeriodNotClosedError: The range is inverted or has not ended.
        """
        if period_start > period_end or period_end >= self.clock.today():
            raise PeriodNotClosedError(period_start.isoformat(), period_end.isoformat())

        entries = self._entries_in_period(period_start, period_end)
        totals = {name: sum(getattr(e, name) for e in entries) for name in TOTAL_FIELDS}
        type_counts = dict(sorted(Counter(e.entry_type.value for e in entries).items()))
        entry_ids = [str(e.id) for e in entries]
        now = self.clock.now()
        content_hash = compute_report_hash(period_start, period_end, totals, entry_ids, now)

        previous = self.session.execute(
            select(PeriodReport).where(
                PeriodReport.period_start == period_start,
                PeriodReport.period_end == period_end,
                PeriodReport.status == ReportStatus.GENERATED,
            )
        ).scalars().all()
        for old in previous:
            old.status = ReportStatus.ARCHIVED
            old.archived_at = now
            old.updated_at = now
        self.session.flush()

        report = PeriodReport(
            period_start=period_start,
            period_end=period_end,
            status=ReportStatus.GENERATED,
            entry_count=len(entries),
            entry_type_counts=type_counts,
            content_hash=content_hash,
            generated_by=generated_by,
            generated_at=now,
            created_at=now,
            updated_at=now,
            **totals,
        )
        self.session.add(report)
        self.session.flush()

        AuditorService(self.session).record(
            "period_report",
            report.id,
            AuditAction.REPORT_GENERATED,
            generated_by,
            new_values={
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
                "entry_count": len(entries),
                "content_hash": content_hash,
                "archived_report_ids": [str(old.id) for old in previous],
            },
        )
        logger.info(
            "period_report_generated",
            extra={
                "report_id": str(report.id),
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
                "entry_count": len(entries),
                "archived": len(previous),
            },
        )
        return PeriodReportSummary(
            report_id=report.id,
            period_start=period_start,
            period_end=period_end,
            totals=totals,
            entry_count=len(entries),
            entry_type_counts=type_counts,
            content_hash=content_hash,
            archived_report_ids=tuple(old.id for old in previous),
        )

    def verify_report(self, report_id: UUID) -> bool:
        """Recompute a report's hash from the ledger; False means tampering or drift."""
        report = self.session.get(PeriodReport, report_id)
        if report is None:
            return False
        entries = self._entries_in_period(report.period_start, report.period_end)
        totals = {name: sum(getattr(e, name) for e in entries) for name in TOTAL_FIELDS}
        stored: dict[str, Any] = {name: getattr(report, name) for name in TOTAL_FIELDS}
        if totals != stored:
            return False
        expected = compute_report_hash(
            report.period_start,
            report.period_end,
            totals,
            [str(e.id) for e in entries],
            report.generated_at,
        )
        return expected == report.content_hash

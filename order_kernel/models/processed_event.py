"""
ProcessedExternalEvent -- dedup marker for external payment events.

Existence of a row for an event id means "do not reprocess"; absence means
"process now, then insert".  The row is written last, after the handler
succeeded, so a crash mid-handling leads to a safe redelivery.
"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from order_kernel.db.base import Base


class ProcessedExternalEvent(Base):
    """Immutable dedup row keyed by the external event id."""

    __tablename__ = "processed_external_events"

    event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ProcessedExternalEvent {self.event_id} {self.event_type}>"

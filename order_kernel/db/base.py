"""
Module: order_kernel.db.base
Responsibility: Declarative base for the order kernel's models.
Architecture position: Kernel > DB.  Imported by every model file; MUST NOT
    import from models/, services/, selectors/ or outer layers.

Invariants enforced:
    - Every row has a uuid4 primary key.
    - Python ``int`` columns are BigInteger.  Money is integer cents
      everywhere; there is no float or Numeric money column.
    - Timestamps are timezone-aware.

Audit relevance:
    Services write ``created_at``/``updated_at`` from the injected Clock, so
    ledger timestamps and period windows are reproducible.  The server
    defaults only cover rows inserted outside the services.  ``updated_at``
    is the one column the immutability listeners treat as metadata.
"""

from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID, uuid4

from sqlalchemy import JSON, BigInteger, DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from order_kernel.db.types import UUIDString


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
        dict[str, Any]: JSON,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TimestampedBase(Base):
    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

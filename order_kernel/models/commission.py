"""
Partner commission models.

PartnerConfig holds the commission rate for an attribution partner;
PartnerCommission is the per-order commission owed to that partner.
Commission rows are immutable except for the payout fields (status,
transfer_reference, paid_at), which move pending -> paid exactly once.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from order_kernel.db.base import TimestampedBase
from order_kernel.db.types import UUIDString, enum_column_type


class CommissionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    WAIVED = "waived"


class PartnerConfig(TimestampedBase):
    """Attribution partner and its commission percentage."""

    __tablename__ = "partner_configs"

    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    commission_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class PartnerCommission(TimestampedBase):
    """
    Commission owed to a partner for one attributed order.

    Guarantees:
        - (partner_config_id, order_id) is unique.
        - commission_cents = round_half_up(order_total_cents * percent / 100).
    """

    __tablename__ = "partner_commissions"

    __table_args__ = (
        UniqueConstraint(
            "partner_config_id", "order_id", name="uq_commission_partner_order"
        ),
        Index("idx_commission_order", "order_id"),
    )

    partner_config_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("partner_configs.id"), nullable=False
    )
    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False
    )
    order_number: Mapped[str] = mapped_column(String(32), nullable=False)
    order_total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    commission_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    commission_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[CommissionStatus] = mapped_column(
        enum_column_type(CommissionStatus),
        default=CommissionStatus.PENDING,
        nullable=False,
    )
    transfer_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    partner: Mapped[PartnerConfig] = relationship(lazy="joined")

"""
CommissionService -- partner commissions for attributed orders.

Responsibility:
    Records a PartnerCommission when an order's attribution carries the
    configured campaign marker, and marks commissions paid when the
    payment provider confirms the payment.

Architecture position:
    Kernel > Services.  Called by the webhook processor after the order
    transaction has committed, in a transaction of its own.

Invariants enforced:
    - commission_cents = round_half_up(order total * percent / 100).
    - One commission per (partner, order); a repeat is skipped.
    - Commissions are never deleted; only payout fields change, and only
      from ``pending``.

Failure modes:
    - Missing or inactive partner config: logged, nothing recorded.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select

from order_kernel.logging_config import get_logger
from order_kernel.models.audit_log import AuditAction
from order_kernel.models.commission import CommissionStatus, PartnerCommission, PartnerConfig
from order_kernel.models.order import Order
from order_kernel.services.auditor_service import SYSTEM_ACTOR, AuditorService
from order_kernel.services.base import BaseService

logger = get_logger("services.commission")


def compute_commission_cents(order_total_cents: int, percent: Decimal) -> int:
    raw = Decimal(order_total_cents) * Decimal(percent) / Decimal(100)
    return int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))


class CommissionService(BaseService):
    """Partner commission bookkeeping.  Flush-only."""

    def partner_code_for(self, attribution: dict[str, Any] | None) -> str | None:
        """The partner an order is attributed to, or None for direct sales."""
        if not attribution:
            return None
        campaign = attribution.get("utm_campaign") or ""
        if self.settings.attribution_campaign_marker in str(campaign):
            return self.settings.commission_partner_code
        return None

    def record_for_order(
        self,
        order_id: UUID,
        performed_by: str = SYSTEM_ACTOR,
    ) -> PartnerCommission | None:
        order = self.session.get(Order, order_id)
        if order is None:
            return None
        partner_code = self.partner_code_for(order.attribution)
        if partner_code is None:
            return None

        partner = self.session.execute(
            select(PartnerConfig).where(PartnerConfig.code == partner_code)
        ).scalar_one_or_none()
        if partner is None or not partner.is_active:
            logger.warning(
                "commission_partner_unavailable",
                extra={"partner_code": partner_code, "order_number": order.order_number},
            )
            return None

        existing = self.session.execute(
            select(PartnerCommission).where(
                PartnerCommission.partner_config_id == partner.id,
                PartnerCommission.order_id == order.id,
            )
        ).scalar_one_or_none()
        if existing is not None:
            logger.info(
                "commission_already_recorded",
                extra={"partner_code": partner_code, "order_number": order.order_number},
            )
            return existing

        percent = Decimal(partner.commission_percent)
        commission_cents = compute_commission_cents(order.total_cents, percent)
        status = CommissionStatus.PENDING if commission_cents > 0 else CommissionStatus.WAIVED
        now = self.clock.now()
        commission = PartnerCommission(
            partner_config_id=partner.id,
            order_id=order.id,
            order_number=order.order_number,
            order_total_cents=order.total_cents,
            commission_percent=percent,
            commission_cents=commission_cents,
            status=status,
            created_at=now,
            updated_at=now,
        )
        self.session.add(commission)
        self.session.flush()

        AuditorService(self.session).record(
            "partner_commission",
            commission.id,
            AuditAction.COMMISSION_CREATED,
            performed_by,
            new_values={
                "partner_code": partner_code,
                "order_number": order.order_number,
                "order_total_cents": order.total_cents,
                "commission_percent": str(percent),
                "commission_cents": commission_cents,
                "status": status.value,
            },
        )
        logger.info(
            "commission_recorded",
            extra={
                "partner_code": partner_code,
                "order_number": order.order_number,
                "commission_cents": commission_cents,
                "status": status.value,
            },
        )
        return commission

    def mark_paid_for_payment_intent(
        self,
        payment_intent_id: str,
        transfer_reference: str | None,
        performed_by: str = SYSTEM_ACTOR,
    ) -> list[PartnerCommission]:
        """Mark the pending commissions of the order paid by ``payment_intent_id``."""
        pending = self.session.execute(
            select(PartnerCommission)
            .join(Order, Order.id == PartnerCommission.order_id)
            .where(
                Order.payment_intent_id == payment_intent_id,
                PartnerCommission.status == CommissionStatus.PENDING,
            )
        ).scalars().all()

        auditor = AuditorService(self.session)
        now = self.clock.now()
        for commission in pending:
            commission.status = CommissionStatus.PAID
            commission.transfer_reference = transfer_reference
            commission.paid_at = now
            commission.updated_at = now
            self.session.flush()
            auditor.record(
                "partner_commission",
                commission.id,
                AuditAction.COMMISSION_PAID,
                performed_by,
                old_values={"status": CommissionStatus.PENDING.value},
                new_values={
                    "status": CommissionStatus.PAID.value,
                    "transfer_reference": transfer_reference,
                    "payment_intent_id": payment_intent_id,
                },
            )
            logger.info(
                "commission_paid",
                extra={
                    "order_number": commission.order_number,
                    "commission_cents": commission.commission_cents,
                },
            )
        return list(pending)

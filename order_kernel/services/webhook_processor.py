"""
WebhookProcessor -- drives order creation, refunds and commission payouts
from payment events exactly once per event id.

Responsibility:
    Takes one verified external event, skips it when its id has been
    processed before, routes it by type, and records it as processed only
    after its handler returned.

Architecture position:
    Kernel > Services.  The outermost core entry point, called by the
    HTTP layer (``order_api``) after signature verification.  Owns its
    transactions through the injected session factory.

Invariants enforced:
    - The ProcessedExternalEvent row is inserted last.  A failure anywhere
      before it leaves the event unrecorded, so the sender's redelivery
      retries it.
    - Duplicate deliveries are detected by event id before any handler
      runs, in addition to the payment-session and refund-id guards of
      order creation and refunds.
    - Dispatch, commission and notifications run after the order commit
      and never change the event outcome.

Failure modes:
    - Handler errors produce a FAILED result and a ``webhook_error`` audit
      entry written in its own transaction.  The event is not recorded.

Audit relevance:
    Order, refund and commission services write their own audit entries.
    This module adds ``webhook_error`` for failed events.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from order_kernel.db.engine import session_scope
from order_kernel.domain.accounting import require_cents
from order_kernel.domain.clock import Clock, SystemClock
from order_kernel.domain.dtos import Address, CartLine, OrderCreated, OrderInput, RefundRequest
from order_kernel.exceptions import InvalidWebhookPayloadError, OrderNotFoundError
from order_kernel.logging_config import LogContext, get_logger
from order_kernel.models.order import Order
from order_kernel.models.processed_event import ProcessedExternalEvent
from order_kernel.services.auditor_service import AuditorService
from order_kernel.services.commission_service import CommissionService
from order_kernel.services.fulfillment_dispatcher import FulfillmentDispatcher
from order_kernel.services.notification import (
    LoggingNotificationChannel,
    NotificationChannel,
    notify_safely,
)
from order_kernel.services.order_service import create_order_once
from order_kernel.services.refund_service import process_refund_once
from order_kernel.settings import KernelSettings

logger = get_logger("services.webhook")

PAYMENT_ACTOR = "payment_provider"

CHECKOUT_COMPLETED = "checkout.session.completed"
CHARGE_REFUNDED = "charge.refunded"
PAYMENT_SUCCEEDED = "payment_intent.succeeded"

ATTRIBUTION_KEYS = (
    "source",
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
    "referrer",
)


class WebhookStatus(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True)
class ExternalEvent:
    """One payment event: unique id, type and the event's data object."""

    event_id: str
    event_type: str
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, body: bytes | str) -> "ExternalEvent":
        try:
            document = json.loads(body)
        except (TypeError, ValueError):
            raise InvalidWebhookPayloadError("unknown", "Body is not valid JSON") from None
        if not isinstance(document, dict):
            raise InvalidWebhookPayloadError("unknown", "Body is not a JSON object")

        event_type = document.get("type")
        event_id = document.get("id")
        if not isinstance(event_type, str) or not event_type:
            raise InvalidWebhookPayloadError("unknown", "Missing event type")
        if not isinstance(event_id, str) or not event_id:
            raise InvalidWebhookPayloadError(event_type, "Missing event id")

        envelope = document.get("data", {})
        data = envelope.get("object", {}) if isinstance(envelope, dict) else None
        if not isinstance(data, dict):
            raise InvalidWebhookPayloadError(event_type, "data.object is not an object")
        return cls(event_id=event_id, event_type=event_type, data=data)


@dataclass(frozen=True)
class WebhookResult:
    event_id: str
    event_type: str
    status: WebhookStatus
    action: str | None = None
    order_number: str | None = None
    error: str | None = None

    @property
    def acknowledged(self) -> bool:
        """True when the sender must not redeliver."""
        return self.status != WebhookStatus.FAILED


def _required(data: dict[str, Any], key: str, event_type: str) -> Any:
    value = data.get(key)
    if value in (None, ""):
        raise InvalidWebhookPayloadError(event_type, f"Missing {key}")
    return value


def _address(raw: Any, event_type: str, label: str) -> Address:
    if not isinstance(raw, dict):
        raise InvalidWebhookPayloadError(event_type, f"Missing {label}")
    try:
        return Address.from_dict(raw)
    except KeyError as exc:
        raise InvalidWebhookPayloadError(event_type, f"{label} lacks {exc.args[0]}") from None


def _cart_lines(raw: Any, event_type: str) -> tuple[CartLine, ...]:
    if not isinstance(raw, list):
        raise InvalidWebhookPayloadError(event_type, "Missing line_items")
    lines = []
    for item in raw:
        if not isinstance(item, dict):
            raise InvalidWebhookPayloadError(event_type, "Line item is not an object")
        try:
            variant_id = UUID(str(item["variant_id"]))
        except (KeyError, ValueError):
            raise InvalidWebhookPayloadError(event_type, "Line item lacks a valid variant_id") from None
        lines.append(CartLine(variant_id=variant_id, quantity=item.get("quantity", 1)))
    return tuple(lines)


def order_input_from_checkout(data: dict[str, Any]) -> OrderInput:
    """Translate a completed checkout session into an ``OrderInput``."""
    event_type = CHECKOUT_COMPLETED
    metadata = data.get("metadata") or {}
    attribution = {key: metadata[key] for key in ATTRIBUTION_KEYS if metadata.get(key)}
    customer_id = data.get("customer_id") or None
    customer_email = data.get("customer_email") or None
    billing = data.get("billing_address")

    return OrderInput(
        payment_session_id=_required(data, "id", event_type),
        payment_intent_id=_required(data, "payment_intent", event_type),
        lines=_cart_lines(data.get("line_items"), event_type),
        shipping_address=_address(data.get("shipping_address"), event_type, "shipping_address"),
        billing_address=_address(billing, event_type, "billing_address") if billing else None,
        shipping_cents=require_cents("shipping_cents", data.get("shipping_cents", 0)),
        payment_fee_cents=require_cents("payment_fee_cents", data.get("payment_fee_cents", 0)),
        customer_id=customer_id,
        guest_email=None if customer_id else customer_email,
        customer_email=customer_email,
        attribution=attribution or None,
        locale=data.get("locale") or None,
        notes=data.get("notes") or None,
    )


class WebhookProcessor:
    """
    Exactly-once application of payment events.

    Contract:
        ``process(event)`` never raises for handler failures; it returns a
        result whose ``acknowledged`` flag tells the transport whether the
        sender should redeliver.

    Guarantees:
        - A PROCESSED or DUPLICATE result means the event's effects are
          committed and the event id is recorded (or was recorded before).
        - A FAILED result means the event id is not recorded.

    Non-goals:
        - Does NOT verify signatures; see ``WebhookVerifier``.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: KernelSettings,
        dispatcher: FulfillmentDispatcher,
        notifications: NotificationChannel | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._settings = settings
        self._dispatcher = dispatcher
        self._notifications = notifications or LoggingNotificationChannel()
        self._clock = clock or SystemClock()
        self._handlers = {
            CHECKOUT_COMPLETED: self._handle_checkout_completed,
            CHARGE_REFUNDED: self._handle_charge_refunded,
            PAYMENT_SUCCEEDED: self._handle_payment_succeeded,
        }

    def process(self, event: ExternalEvent) -> WebhookResult:
        with LogContext.bind(event_id=event.event_id, actor=PAYMENT_ACTOR):
            logger.info("webhook_received", extra={"event_type": event.event_type})

            if self._already_processed(event.event_id):
                logger.info("webhook_duplicate", extra={"event_type": event.event_type})
                return WebhookResult(event.event_id, event.event_type, WebhookStatus.DUPLICATE)

            handler = self._handlers.get(event.event_type)
            try:
                if handler is None:
                    logger.info("webhook_unhandled_type", extra={"event_type": event.event_type})
                    action, order_number = "ignored", None
                else:
                    action, order_number = handler(event.data)
                recorded = self._mark_processed(event)
            except Exception as exc:
                logger.error(
                    "webhook_failed",
                    extra={"event_type": event.event_type, "error": str(exc)},
                    exc_info=True,
                )
                self._record_failure(event, exc)
                return WebhookResult(
                    event.event_id,
                    event.event_type,
                    WebhookStatus.FAILED,
                    error=str(exc),
                )

            status = WebhookStatus.PROCESSED if recorded else WebhookStatus.DUPLICATE
            logger.info(
                "webhook_processed",
                extra={
                    "event_type": event.event_type,
                    "action": action,
                    "status": status.value,
                },
            )
            return WebhookResult(
                event.event_id,
                event.event_type,
                status,
                action=action,
                order_number=order_number,
            )

    # -- dedup -------------------------------------------------------------

    def _already_processed(self, event_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            return session.execute(
                select(ProcessedExternalEvent.id).where(ProcessedExternalEvent.event_id == event_id)
            ).first() is not None

    def _mark_processed(self, event: ExternalEvent) -> bool:
        """Insert the dedup row.  False when a concurrent delivery won."""
        now = self._clock.now()
        try:
            with session_scope(self._session_factory) as session:
                session.add(ProcessedExternalEvent(
                    event_id=event.event_id,
                    event_type=event.event_type,
                    processed_at=now,
                ))
        except IntegrityError:
            logger.info("webhook_recorded_concurrently", extra={"event_type": event.event_type})
            return False
        return True

    def _record_failure(self, event: ExternalEvent, exc: Exception) -> None:
        try:
            with session_scope(self._session_factory) as session:
                AuditorService(session).record_webhook_error(
                    event.event_id, event.event_type, str(exc)
                )
        except Exception:
            # The original failure is what gets reported.
            logger.warning("webhook_error_audit_failed", exc_info=True)

    # -- handlers ----------------------------------------------------------

    def _handle_checkout_completed(self, data: dict[str, Any]) -> tuple[str, str | None]:
        order_input = order_input_from_checkout(data)
        created = create_order_once(
            self._session_factory,
            self._settings,
            order_input,
            clock=self._clock,
            performed_by=PAYMENT_ACTOR,
        )
        with LogContext.bind(order_number=created.order_number):
            self._after_order_created(created, order_input)
        action = "order_exists" if created.already_existed else "order_created"
        return action, created.order_number

    def _after_order_created(self, created: OrderCreated, order_input: OrderInput) -> None:
        """Best-effort follow-ups; each is idempotent so redelivery can resume them."""
        try:
            with session_scope(self._session_factory) as session:
                CommissionService(session, self._settings, self._clock).record_for_order(
                    created.order_id, performed_by=PAYMENT_ACTOR
                )
        except Exception:
            logger.error("commission_failed", exc_info=True)

        if not created.already_existed:
            notify_safely(
                "order_created",
                self._notifications.order_created,
                created,
                order_input.customer_email or order_input.guest_email,
            )

        try:
            summary = self._dispatcher.dispatch_pending_tasks(created.order_id)
        except Exception:
            logger.error("dispatch_error", exc_info=True)
            return
        if summary.outcomes:
            notify_safely(
                "dispatch_completed",
                self._notifications.dispatch_completed,
                created.order_number,
                summary,
            )

    def _handle_charge_refunded(self, data: dict[str, Any]) -> tuple[str, str | None]:
        event_type = CHARGE_REFUNDED
        payment_intent_id = _required(data, "payment_intent", event_type)
        total_refunded = require_cents("amount_refunded", data.get("amount_refunded", 0))
        if total_refunded <= 0:
            logger.info("refund_without_amount", extra={"payment_intent_id": payment_intent_id})
            return "ignored", None

        refunds = (data.get("refunds") or {}).get("data") or []
        if not refunds or not isinstance(refunds[0], dict):
            raise InvalidWebhookPayloadError(event_type, "Missing refund data")
        latest = refunds[0]
        amount = latest.get("amount")
        refund_amount = require_cents("refund.amount", amount if amount is not None else total_refunded)

        with session_scope(self._session_factory) as session:
            order = session.execute(
                select(Order).where(Order.payment_intent_id == payment_intent_id)
            ).scalar_one_or_none()
            if order is None:
                raise OrderNotFoundError(payment_intent_id)
            order_id, order_number = order.id, order.order_number

        with LogContext.bind(order_number=order_number):
            result = process_refund_once(
                self._session_factory,
                self._settings,
                RefundRequest(
                    order_id=order_id,
                    refund_amount_cents=refund_amount,
                    external_refund_id=latest.get("id") or None,
                    reason=latest.get("reason") or "Payment provider refund",
                ),
                clock=self._clock,
                performed_by=PAYMENT_ACTOR,
            )
        action = "refund_exists" if result.already_processed else result.entry_type.value
        return action, order_number

    def _handle_payment_succeeded(self, data: dict[str, Any]) -> tuple[str, str | None]:
        payment_intent_id = _required(data, "id", PAYMENT_SUCCEEDED)
        if not data.get("application_fee_amount"):
            return "ignored", None
        transfer_reference = data.get("transfer") or f"pi_{payment_intent_id}"
        with session_scope(self._session_factory) as session:
            paid = CommissionService(session, self._settings, self._clock).mark_paid_for_payment_intent(
                payment_intent_id, transfer_reference, performed_by=PAYMENT_ACTOR
            )
        return ("commission_paid" if paid else "no_pending_commission"), None

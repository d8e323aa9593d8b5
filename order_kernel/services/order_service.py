"""
OrderService -- atomic order creation with the producer fan-out.

Responsibility:
    Turns a paid checkout into an Order, its OrderItems, one
    FulfillmentTask per distinct producer, one ``sale`` LedgerEntry and
    one audit entry, all inside the caller's transaction.

Architecture position:
    Kernel > Services.  Called by the webhook processor through
    ``create_order_once()``, which owns the transaction and the
    idempotency handling around it.

Invariants enforced:
    - Validation happens before any write: customer identity, non-empty
      cart, positive integer quantities, integer-cent amounts, every
      variant known and active, every SKU with a producer cost.
    - Unit prices come from the catalog, never from the caller.
    - Exactly one fulfillment task per distinct producer among the items.
    - ``payment_session_id`` is unique; a duplicate insert surfaces as
      OrderAlreadyExistsError and is resolved to the existing order.
    - Dispatch to producers is NOT done here; it runs after commit.

Failure modes:
    - ValidationError subclasses -- rejected input, nothing written.
    - UnknownSkuCostError -- a SKU has no producer cost; nothing written.
    - OrderAlreadyExistsError -- unique violation on insert; the session
      must be rolled back by its owner.
    - LedgerInvariantError -- the sale entry failed validation.

Audit relevance:
    Every created order produces an ``order_created`` audit entry with the
    order number, totals, item count and producers.
"""

from collections.abc import Callable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from order_kernel.db.engine import session_scope
from order_kernel.domain.accounting import CostBreakdown, compute_ledger_amounts, require_cents
from order_kernel.domain.clock import Clock
from order_kernel.domain.dtos import OrderCreated, OrderInput
from order_kernel.domain.order_number import generate_order_number
from order_kernel.exceptions import (
    EmptyCartError,
    InvalidQuantityError,
    MissingCustomerError,
    OrderAlreadyExistsError,
    UnknownVariantError,
)
from order_kernel.logging_config import LogContext, get_logger
from order_kernel.models.catalog import ProductVariant
from order_kernel.models.fulfillment import FulfillmentStatus, FulfillmentTask
from order_kernel.models.ledger import LedgerEntry, LedgerEntryType
from order_kernel.models.order import Order, OrderItem, OrderStatus
from order_kernel.services.auditor_service import SYSTEM_ACTOR, AuditorService
from order_kernel.services.base import BaseService
from order_kernel.services.ledger_service import LedgerService
from order_kernel.settings import KernelSettings

logger = get_logger("services.order")

MAX_ORDER_NUMBER_ATTEMPTS = 3


class OrderService(BaseService):
    """
    Creates orders.

    Contract:
        ``create_order()`` writes the whole order graph and flushes; the
        caller commits.

    Guarantees:
        - All-or-nothing when the caller rolls back on any exception.
        - ``fulfillment_task_ids`` follow first-seen producer order.

    Non-goals:
        - Does NOT dispatch tasks to producers.
        - Does NOT commit or roll back.
    """

    def __init__(
        self,
        session: Session,
        settings: KernelSettings,
        clock: Clock | None = None,
        order_number_factory: Callable[[], str] | None = None,
    ):
        super().__init__(session, settings, clock)
        self._auditor = AuditorService(session)
        self._ledger = LedgerService(session, settings, self.clock)
        self._order_number_factory = order_number_factory or (
            lambda: generate_order_number(settings.order_number_prefix, self.clock.now())
        )

    def find_by_payment_session(self, payment_session_id: str) -> OrderCreated | None:
        """The already-created order for a checkout session, if any."""
        order = self.session.execute(
            select(Order).where(Order.payment_session_id == payment_session_id)
        ).scalar_one_or_none()
        if order is None:
            return None
        first_seen = {producer: index for index, producer in enumerate(order.producers)}
        tasks = sorted(order.fulfillment_tasks, key=lambda t: first_seen.get(t.producer, len(first_seen)))
        sale = self.session.execute(
            select(LedgerEntry.id).where(
                LedgerEntry.order_id == order.id,
                LedgerEntry.entry_type == LedgerEntryType.SALE,
            )
        ).scalar_one()
        return OrderCreated(
            order_id=order.id,
            order_number=order.order_number,
            fulfillment_task_ids=tuple(task.id for task in tasks),
            ledger_entry_id=sale,
            already_existed=True,
        )

    def create_order(
        self,
        order_input: OrderInput,
        performed_by: str = SYSTEM_ACTOR,
    ) -> OrderCreated:
        """
        Create the order graph for a paid checkout.

        Preconditions:
            - A customer id or guest e-mail is present.
            - At least one cart line; quantities are integers >= 1.

        Raises:
            MissingCustomerError, EmptyCartError, InvalidQuantityError,
            NonIntegerAmountError, UnknownVariantError, UnknownSkuCostError:
                invalid input; nothing written.
            OrderAlreadyExistsError: unique violation on insert.
        """
        self._validate_input(order_input)
        variants = self._resolve_variants(order_input)

        unit_costs = {
            line.variant_id: self.settings.producer_cost_for(variants[line.variant_id].sku)
            for line in order_input.lines
        }

        now = self.clock.now()
        subtotal = sum(
            variants[line.variant_id].price_cents * line.quantity for line in order_input.lines
        )
        total = subtotal + order_input.shipping_cents

        customer_id = order_input.customer_id or None
        guest_email = None if customer_id else order_input.guest_email
        order = Order(
            order_number=self._order_number_factory(),
            customer_id=customer_id,
            guest_email=guest_email,
            customer_email=order_input.customer_email or order_input.guest_email,
            status=OrderStatus.PAID,
            subtotal_cents=subtotal,
            shipping_cents=order_input.shipping_cents,
            total_cents=total,
            payment_fee_cents=order_input.payment_fee_cents,
            currency=self.settings.currency,
            shipping_address=order_input.shipping_address.to_dict(),
            billing_address=(
                order_input.billing_address.to_dict() if order_input.billing_address else None
            ),
            payment_session_id=order_input.payment_session_id,
            payment_intent_id=order_input.payment_intent_id,
            attribution=order_input.attribution,
            locale=order_input.locale,
            notes=order_input.notes,
            created_at=now,
            updated_at=now,
        )
        self.session.add(order)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise OrderAlreadyExistsError(
                order_input.payment_session_id, order.order_number
            ) from exc

        with LogContext.bind(order_number=order.order_number):
            producers: dict[str, list[OrderItem]] = {}
            for position, line in enumerate(order_input.lines):
                variant = variants[line.variant_id]
                item = OrderItem(
                    order_id=order.id,
                    position=position,
                    variant_id=variant.id,
                    sku=variant.sku,
                    product_name=variant.product.name,
                    variant_name=variant.name,
                    size_ml=variant.size_ml,
                    weight_grams=variant.weight_grams,
                    quantity=line.quantity,
                    unit_price_cents=variant.price_cents,
                    line_total_cents=variant.price_cents * line.quantity,
                    producer=variant.product.producer,
                    created_at=now,
                    updated_at=now,
                )
                self.session.add(item)
                producers.setdefault(item.producer, []).append(item)

            tasks = []
            for producer in producers:
                task_id = uuid4()
                task = FulfillmentTask(
                    id=task_id,
                    order_id=order.id,
                    producer=producer,
                    status=FulfillmentStatus.PENDING,
                    external_reference=f"{self.settings.fulfillment_reference_prefix}-{task_id}",
                    retry_count=0,
                    created_at=now,
                    updated_at=now,
                )
                self.session.add(task)
                tasks.append(task)
            self.session.flush()

            producer_cost = sum(
                unit_costs[line.variant_id] * line.quantity for line in order_input.lines
            )
            costs = CostBreakdown(
                revenue_cents=total,
                producer_cost_cents=producer_cost,
                packaging_cents=order_input.packaging_cents,
                shipping_cents=order_input.shipping_cents,
                payment_fee_cents=order_input.payment_fee_cents,
                customs_cents=order_input.customs_cents,
            )
            amounts = compute_ledger_amounts(costs, self.settings.technology_take_percent)
            sale = self._ledger.append(
                order,
                LedgerEntryType.SALE,
                amounts,
                created_by=performed_by,
                notes=f"Sale {order.order_number}",
            )

            self._auditor.record_order_created(
                order.id,
                {
                    "order_number": order.order_number,
                    "subtotal_cents": subtotal,
                    "shipping_cents": order.shipping_cents,
                    "total_cents": total,
                    "payment_fee_cents": order.payment_fee_cents,
                    "producer_cost_cents": producer_cost,
                    "gross_profit_cents": amounts.gross_profit_cents,
                    "item_count": len(order_input.lines),
                    "producers": list(producers),
                    "fulfillment_task_count": len(tasks),
                },
                performed_by=performed_by,
            )

            logger.info(
                "order_created",
                extra={
                    "order_id": str(order.id),
                    "total_cents": total,
                    "item_count": len(order_input.lines),
                    "producers": list(producers),
                },
            )

        return OrderCreated(
            order_id=order.id,
            order_number=order.order_number,
            fulfillment_task_ids=tuple(task.id for task in tasks),
            ledger_entry_id=sale.id,
        )

    def _validate_input(self, order_input: OrderInput) -> None:
        if not (order_input.customer_id or order_input.guest_email):
            raise MissingCustomerError()
        if not order_input.lines:
            raise EmptyCartError()
        for line in order_input.lines:
            quantity = line.quantity
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise InvalidQuantityError(str(line.variant_id), quantity)
        require_cents("shipping_cents", order_input.shipping_cents)
        require_cents("payment_fee_cents", order_input.payment_fee_cents)
        require_cents("packaging_cents", order_input.packaging_cents)
        require_cents("customs_cents", order_input.customs_cents)

    def _resolve_variants(self, order_input: OrderInput) -> dict[UUID, ProductVariant]:
        wanted = list(dict.fromkeys(line.variant_id for line in order_input.lines))
        found = {
            variant.id: variant
            for variant in self.session.execute(
                select(ProductVariant).where(ProductVariant.id.in_(wanted))
            ).scalars()
        }
        unresolved = [
            str(variant_id)
            for variant_id in wanted
            if variant_id not in found or not found[variant_id].is_purchasable
        ]
        if unresolved:
            raise UnknownVariantError(unresolved)
        return found


def create_order_once(
    session_factory: sessionmaker[Session],
    settings: KernelSettings,
    order_input: OrderInput,
    clock: Clock | None = None,
    performed_by: str = SYSTEM_ACTOR,
) -> OrderCreated:
    """
    Create the order for a checkout exactly once, owning the transaction.

    A checkout session that already has an order returns that order with
    ``already_existed=True``.  A unique violation on insert is resolved by
    looking the session up again: found means a concurrent delivery won
    the race; not found means an order-number collision, which is retried.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            with session_scope(session_factory) as session:
                service = OrderService(session, settings, clock)
                existing = service.find_by_payment_session(order_input.payment_session_id)
                if existing is not None:
                    logger.info(
                        "order_already_exists",
                        extra={
                            "payment_session_id": order_input.payment_session_id,
                            "order_number": existing.order_number,
                        },
                    )
                    return existing
                return service.create_order(order_input, performed_by=performed_by)
        except OrderAlreadyExistsError as exc:
            with session_scope(session_factory) as session:
                existing = OrderService(session, settings, clock).find_by_payment_session(
                    order_input.payment_session_id
                )
            if existing is not None:
                logger.info(
                    "order_created_concurrently",
                    extra={
                        "payment_session_id": order_input.payment_session_id,
                        "order_number": existing.order_number,
                    },
                )
                return existing
            logger.warning(
                "order_number_collision",
                extra={"order_number": exc.order_number, "attempt": attempt},
            )
            if attempt >= MAX_ORDER_NUMBER_ATTEMPTS:
                raise

"""Read access to orders and their line items."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select

from order_kernel.exceptions import OrderNotFoundError
from order_kernel.models.order import Order, OrderStatus
from order_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class OrderItemDTO:
    sku: str
    product_name: str
    variant_name: str
    quantity: int
    unit_price_cents: int
    line_total_cents: int
    producer: str


@dataclass(frozen=True)
class OrderDTO:
    id: UUID
    order_number: str
    status: OrderStatus
    contact_email: str | None
    subtotal_cents: int
    shipping_cents: int
    total_cents: int
    payment_fee_cents: int
    currency: str
    payment_session_id: str
    payment_intent_id: str | None
    shipping_address: dict[str, Any]
    attribution: dict[str, Any] | None
    created_at: datetime
    items: tuple[OrderItemDTO, ...] = ()

    @property
    def producers(self) -> list[str]:
        return list(dict.fromkeys(item.producer for item in self.items))


def _to_dto(order: Order) -> OrderDTO:
    return OrderDTO(
        id=order.id,
        order_number=order.order_number,
        status=order.status,
        contact_email=order.contact_email,
        subtotal_cents=order.subtotal_cents,
        shipping_cents=order.shipping_cents,
        total_cents=order.total_cents,
        payment_fee_cents=order.payment_fee_cents,
        currency=order.currency,
        payment_session_id=order.payment_session_id,
        payment_intent_id=order.payment_intent_id,
        shipping_address=dict(order.shipping_address),
        attribution=dict(order.attribution) if order.attribution else None,
        created_at=order.created_at,
        items=tuple(
            OrderItemDTO(
                sku=item.sku,
                product_name=item.product_name,
                variant_name=item.variant_name,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                line_total_cents=item.line_total_cents,
                producer=item.producer,
            )
            for item in order.items
        ),
    )


class OrderSelector(BaseSelector):
    def get(self, order_id: UUID) -> OrderDTO:
        order = self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return _to_dto(order)

    def get_by_number(self, order_number: str) -> OrderDTO:
        order = self.session.execute(
            select(Order).where(Order.order_number == order_number)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_number)
        return _to_dto(order)

    def find_by_payment_intent(self, payment_intent_id: str) -> OrderDTO | None:
        order = self.session.execute(
            select(Order).where(Order.payment_intent_id == payment_intent_id)
        ).scalar_one_or_none()
        return _to_dto(order) if order is not None else None

    def list_recent(self, status: OrderStatus | None = None, limit: int = 50) -> list[OrderDTO]:
        """Newest first, optionally filtered by status."""
        query = select(Order).order_by(Order.created_at.desc(), Order.order_number.desc())
        if status is not None:
            query = query.where(Order.status == status)
        return [_to_dto(o) for o in self.session.execute(query.limit(limit)).scalars()]

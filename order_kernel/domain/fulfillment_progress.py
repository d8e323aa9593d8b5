"""
Order status derivation from fulfillment task progress.

Pure function used whenever a task changes status.  Refunded and cancelled
orders are terminal and never advanced.
"""

from collections.abc import Iterable

from order_kernel.models.fulfillment import FulfillmentStatus
from order_kernel.models.order import OrderStatus

_SHIPPED_OR_BEYOND = (FulfillmentStatus.SHIPPED, FulfillmentStatus.DELIVERED)
_DISPATCHED = (
    FulfillmentStatus.SENT_TO_PRODUCER,
    FulfillmentStatus.CONFIRMED,
    FulfillmentStatus.SHIPPED,
    FulfillmentStatus.DELIVERED,
)


def derive_order_status(
    current: OrderStatus,
    task_statuses: Iterable[FulfillmentStatus],
) -> OrderStatus:
    """
    Order status implied by its tasks.

    Rules (cancelled tasks are ignored):
        - all delivered                -> delivered
        - all shipped or delivered     -> shipped
        - some shipped or delivered    -> partially_shipped
        - some dispatched              -> processing
        - otherwise                    -> unchanged

    Never moves an order backwards and never touches a terminal order.
    """
    if current.is_terminal:
        return current

    statuses = [FulfillmentStatus(s) for s in task_statuses]
    active = [s for s in statuses if s != FulfillmentStatus.CANCELLED]
    if not active:
        return current

    if all(s == FulfillmentStatus.DELIVERED for s in active):
        derived = OrderStatus.DELIVERED
    elif all(s in _SHIPPED_OR_BEYOND for s in active):
        derived = OrderStatus.SHIPPED
    elif any(s in _SHIPPED_OR_BEYOND for s in active):
        derived = OrderStatus.PARTIALLY_SHIPPED
    elif any(s in _DISPATCHED for s in active):
        derived = OrderStatus.PROCESSING
    else:
        return current

    return derived if _RANK[derived] > _RANK.get(current, -1) else current


_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.PAID: 1,
    OrderStatus.PROCESSING: 2,
    OrderStatus.PARTIALLY_SHIPPED: 3,
    OrderStatus.SHIPPED: 4,
    OrderStatus.DELIVERED: 5,
}

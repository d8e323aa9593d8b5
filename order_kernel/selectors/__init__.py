"""Selectors for the order kernel (read side)."""

from order_kernel.selectors.fulfillment_selector import (
    FulfillmentEventDTO,
    FulfillmentSelector,
    FulfillmentTaskDTO,
)
from order_kernel.selectors.ledger_selector import LedgerEntryDTO, LedgerSelector, OrderBalance
from order_kernel.selectors.order_selector import OrderDTO, OrderItemDTO, OrderSelector

__all__ = [
    "FulfillmentEventDTO",
    "FulfillmentSelector",
    "FulfillmentTaskDTO",
    "LedgerEntryDTO",
    "LedgerSelector",
    "OrderBalance",
    "OrderDTO",
    "OrderItemDTO",
    "OrderSelector",
]

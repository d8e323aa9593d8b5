"""Domain models for the order kernel."""

from order_kernel.models.audit_log import AuditAction, AuditLogEntry
from order_kernel.models.catalog import Producer, ProducerMode, Product, ProductVariant
from order_kernel.models.commission import (
    CommissionStatus,
    PartnerCommission,
    PartnerConfig,
)
from order_kernel.models.fulfillment import (
    DispatchMethod,
    FulfillmentEvent,
    FulfillmentEventType,
    FulfillmentStatus,
    FulfillmentTask,
)
from order_kernel.models.ledger import LedgerEntry, LedgerEntryType
from order_kernel.models.order import Order, OrderItem, OrderStatus
from order_kernel.models.period_report import PeriodReport, ReportStatus
from order_kernel.models.processed_event import ProcessedExternalEvent

__all__ = [
    "AuditAction",
    "AuditLogEntry",
    "CommissionStatus",
    "DispatchMethod",
    "FulfillmentEvent",
    "FulfillmentEventType",
    "FulfillmentStatus",
    "FulfillmentTask",
    "LedgerEntry",
    "LedgerEntryType",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PartnerCommission",
    "PartnerConfig",
    "PeriodReport",
    "ProcessedExternalEvent",
    "Producer",
    "ProducerMode",
    "Product",
    "ProductVariant",
    "ReportStatus",
]

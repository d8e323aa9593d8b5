"""Services for the order kernel (write side)."""

from order_kernel.services.auditor_service import AuditorService
from order_kernel.services.commission_service import CommissionService
from order_kernel.services.fulfillment_dispatcher import FulfillmentDispatcher
from order_kernel.services.fulfillment_status import FulfillmentStatusService
from order_kernel.services.ledger_service import LedgerService, OrderLedgerNet
from order_kernel.services.notification import (
    LoggingNotificationChannel,
    NotificationChannel,
    OperatorEmailChannel,
    StuckTaskAlert,
)
from order_kernel.services.operator_service import OperatorService
from order_kernel.services.order_service import OrderService, create_order_once
from order_kernel.services.refund_service import RefundService, process_refund_once
from order_kernel.services.reporting_service import PeriodReportSummary, ReportingService
from order_kernel.services.webhook_processor import (
    ExternalEvent,
    WebhookProcessor,
    WebhookResult,
    WebhookStatus,
)
from order_kernel.services.webhook_verifier import WebhookVerifier

__all__ = [
    "AuditorService",
    "CommissionService",
    "ExternalEvent",
    "FulfillmentDispatcher",
    "FulfillmentStatusService",
    "LedgerService",
    "LoggingNotificationChannel",
    "NotificationChannel",
    "OperatorEmailChannel",
    "OperatorService",
    "OrderLedgerNet",
    "OrderService",
    "PeriodReportSummary",
    "RefundService",
    "ReportingService",
    "StuckTaskAlert",
    "WebhookProcessor",
    "WebhookResult",
    "WebhookStatus",
    "WebhookVerifier",
    "create_order_once",
    "process_refund_once",
]

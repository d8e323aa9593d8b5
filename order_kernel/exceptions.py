"""
Typed Exception Hierarchy for the Order Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Order processing sits between a payment provider that redelivers events,
producers that fail intermittently, and a ledger that must never drift by a
single cent.  Callers need to tell these situations apart without parsing
message strings:

  - Every error has a TYPED exception class (catch by type, not message)
  - Every exception has a CODE attribute (machine-readable, API-safe)
  - Exceptions carry structured DATA (not just a message string)

Example:
    try:
        result = refund_service.process_refund(request, performed_by="stripe")
    except RefundExceedsRevenueError as e:
        api_response(code=e.code, available=e.available_cents)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    OrderKernelError (base)
    |
    +-- ValidationError                 bad input, rejected before any write
    |   +-- MissingCustomerError
    |   +-- EmptyCartError
    |   +-- InvalidQuantityError
    |   +-- UnknownVariantError
    |   +-- NonIntegerAmountError
    |   +-- UnknownSkuCostError
    |   +-- InvalidRefundAmountError
    |   +-- RefundExceedsRevenueError
    |   +-- NothingToRefundError
    |   +-- InvalidStatusTransitionError
    |   +-- PeriodNotClosedError
    |   +-- InvalidWebhookPayloadError
    |   +-- InvalidSignatureError
    |
    +-- NotFoundError
    |   +-- OrderNotFoundError
    |   +-- OriginalSaleNotFoundError
    |   +-- FulfillmentTaskNotFoundError
    |   +-- UnknownProducerError
    |
    +-- ConflictError                   idempotency signal, "already done"
    |   +-- OrderAlreadyExistsError
    |   +-- RefundAlreadyAppliedError
    |
    +-- ExternalDependencyError         producer / mail provider failures
    |   +-- ProducerStatusError
    |   +-- MailDeliveryError
    |
    +-- DataIntegrityError              fatal, financial corruption risk
    |   +-- LedgerInvariantError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CONFLICTS ARE SUCCESS:

    try:
        result = order_service.create_order(order_input, performed_by="stripe")
    except OrderAlreadyExistsError as e:
        session.rollback()
        result = selector.get_created_order(e.payment_session_id)

2. INTEGRITY ERRORS ARE NEVER SWALLOWED:

    except LedgerInvariantError:
        logger.critical("ledger_invariant_violated", exc_info=True)
        raise

===============================================================================
"""


class OrderKernelError(Exception):
    """
    Base exception for all order kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "ORDER_KERNEL_ERROR"


# Validation errors


class ValidationError(OrderKernelError):
    """Input was rejected before any write took place."""

    code: str = "VALIDATION_ERROR"


class MissingCustomerError(ValidationError):
    """Neither a customer id nor a guest email was supplied."""

    code: str = "MISSING_CUSTOMER"

    def __init__(self):
        super().__init__("Order requires a customer id or a guest email")


class EmptyCartError(ValidationError):
    """Cart has no lines."""

    code: str = "EMPTY_CART"

    def __init__(self):
        super().__init__("Cart must contain at least one line")


class InvalidQuantityError(ValidationError):
    """Cart line quantity is not a positive integer."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, variant_id: str, quantity: object):
        self.variant_id = variant_id
        self.quantity = quantity
        super().__init__(
            f"Invalid quantity {quantity!r} for variant {variant_id}"
        )


class UnknownVariantError(ValidationError):
    """One or more cart lines reference an unknown or inactive variant."""

    code: str = "UNKNOWN_VARIANT"

    def __init__(self, variant_ids: list[str]):
        self.variant_ids = list(variant_ids)
        super().__init__(
            f"Unknown variant(s): {', '.join(self.variant_ids)}"
        )


class NonIntegerAmountError(ValidationError):
    """A cent amount was not a plain integer (floats are never coerced)."""

    code: str = "NON_INTEGER_AMOUNT"

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = value
        super().__init__(
            f"Amount '{field}' must be integer cents, got {type(value).__name__}: {value!r}"
        )


class UnknownSkuCostError(ValidationError):
    """No producer cost is configured for a SKU."""

    code: str = "UNKNOWN_SKU_COST"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"No producer cost configured for SKU: {sku}")


class InvalidRefundAmountError(ValidationError):
    """Refund amount must be a positive number of cents."""

    code: str = "INVALID_REFUND_AMOUNT"

    def __init__(self, amount_cents: int):
        self.amount_cents = amount_cents
        super().__init__(f"Refund amount must be positive, got {amount_cents}")


class RefundExceedsRevenueError(ValidationError):
    """Refund amount is larger than the order's current net revenue."""

    code: str = "REFUND_EXCEEDS_REVENUE"

    def __init__(self, order_id: str, requested_cents: int, available_cents: int):
        self.order_id = order_id
        self.requested_cents = requested_cents
        self.available_cents = available_cents
        super().__init__(
            f"Refund of {requested_cents} cents exceeds net revenue "
            f"{available_cents} cents for order {order_id}"
        )


class NothingToRefundError(ValidationError):
    """Order has no ledger history to refund against."""

    code: str = "NOTHING_TO_REFUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"No ledger entries found for order {order_id}")


class InvalidStatusTransitionError(ValidationError):
    """Requested status change is not allowed from the current status."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, from_status: str, to_status: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"{entity_type} {entity_id} cannot move from {from_status} to {to_status}"
        )


class PeriodNotClosedError(ValidationError):
    """A report was requested for a period that has not ended yet."""

    code: str = "PERIOD_NOT_CLOSED"

    def __init__(self, period_start: str, period_end: str):
        self.period_start = period_start
        self.period_end = period_end
        super().__init__(
            f"Period {period_start}..{period_end} is not closed yet"
        )


class InvalidWebhookPayloadError(ValidationError):
    """External event payload is missing fields or malformed."""

    code: str = "INVALID_WEBHOOK_PAYLOAD"

    def __init__(self, event_type: str, reason: str):
        self.event_type = event_type
        self.reason = reason
        super().__init__(f"Invalid payload for {event_type}: {reason}")


class InvalidSignatureError(ValidationError):
    """Webhook signature header is missing, stale, or does not match."""

    code: str = "INVALID_SIGNATURE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Webhook signature rejected: {reason}")


# Not-found errors


class NotFoundError(OrderKernelError):
    """A referenced record does not exist."""

    code: str = "NOT_FOUND"


class OrderNotFoundError(NotFoundError):
    """Order lookup failed."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Order not found: {reference}")


class OriginalSaleNotFoundError(NotFoundError):
    """Order has ledger entries but no sale entry to use as refund base."""

    code: str = "ORIGINAL_SALE_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"No sale ledger entry for order {order_id}")


class FulfillmentTaskNotFoundError(NotFoundError):
    """Fulfillment task lookup failed."""

    code: str = "FULFILLMENT_TASK_NOT_FOUND"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Fulfillment task not found: {task_id}")


class UnknownProducerError(NotFoundError):
    """Producer key is not registered or the producer is inactive."""

    code: str = "UNKNOWN_PRODUCER"

    def __init__(self, producer: str):
        self.producer = producer
        super().__init__(f'Unknown or inactive producer: "{producer}"')


# Conflict errors


class ConflictError(OrderKernelError):
    """
    A uniqueness guard fired.

    Callers convert these into the idempotent "already done" path.
    """

    code: str = "CONFLICT"


class OrderAlreadyExistsError(ConflictError):
    """An order for this payment session was already created."""

    code: str = "ORDER_ALREADY_EXISTS"

    def __init__(self, payment_session_id: str, order_number: str | None = None):
        self.payment_session_id = payment_session_id
        self.order_number = order_number
        super().__init__(
            f"Order already exists for payment session {payment_session_id}"
        )


class RefundAlreadyAppliedError(ConflictError):
    """A refund with this external id was already booked for the order."""

    code: str = "REFUND_ALREADY_APPLIED"

    def __init__(self, order_id: str, external_refund_id: str):
        self.order_id = order_id
        self.external_refund_id = external_refund_id
        super().__init__(
            f"Refund {external_refund_id} already applied to order {order_id}"
        )


# External dependency errors


class ExternalDependencyError(OrderKernelError):
    """A producer or mail provider call failed."""

    code: str = "EXTERNAL_DEPENDENCY_ERROR"


class ProducerStatusError(ExternalDependencyError):
    """Polling a producer for task status failed."""

    code: str = "PRODUCER_STATUS_ERROR"

    def __init__(self, producer: str, external_id: str, reason: str):
        self.producer = producer
        self.external_id = external_id
        self.reason = reason
        super().__init__(
            f"{producer} status check failed for {external_id}: {reason}"
        )


class MailDeliveryError(ExternalDependencyError):
    """Outbound mail provider rejected or did not accept a message."""

    code: str = "MAIL_DELIVERY_ERROR"

    def __init__(self, recipient: str, reason: str):
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"Mail to {recipient} failed: {reason}")


# Data integrity errors


class DataIntegrityError(OrderKernelError):
    """
    A financial invariant would be violated.

    Always fatal for the enclosing transaction; never swallowed.
    """

    code: str = "DATA_INTEGRITY_ERROR"


class LedgerInvariantError(DataIntegrityError):
    """Ledger entry arithmetic or order revenue bounds are violated."""

    code: str = "LEDGER_INVARIANT_VIOLATION"

    def __init__(self, order_id: str, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Ledger invariant violated for order {order_id}: {reason}")


class ImmutabilityViolationError(DataIntegrityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration errors


class ConfigurationError(OrderKernelError):
    """Configuration document is missing or invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid configuration: {reason}")

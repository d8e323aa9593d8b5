"""
Domain DTOs -- immutable inputs and results crossing the service boundary.

Architecture position:
    Kernel > Domain.  No ORM, no session.  Services accept these as input
    and return them as results so callers never hold live ORM objects
    across transaction boundaries.
"""

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from order_kernel.domain.accounting import ProfitSplit
from order_kernel.models.fulfillment import DispatchMethod, FulfillmentStatus
from order_kernel.models.ledger import LedgerEntryType


@dataclass(frozen=True)
class Address:
    """Postal address snapshot."""

    name: str
    street: str
    city: str
    postal_code: str
    country: str
    street2: str | None = None
    state: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "street": self.street,
            "street2": self.street2,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Address":
        return cls(
            name=data["name"],
            street=data["street"],
            city=data["city"],
            postal_code=data["postal_code"],
            country=data["country"],
            street2=data.get("street2") or None,
            state=data.get("state") or None,
        )


@dataclass(frozen=True)
class CartLine:
    variant_id: UUID
    quantity: int


@dataclass(frozen=True)
class OrderInput:
    """
    Everything needed to create an order after payment confirmation.

    Prices are deliberately absent from cart lines: unit prices always come
    from the catalog.
    """

    payment_session_id: str
    lines: tuple[CartLine, ...]
    shipping_address: Address
    shipping_cents: int
    payment_fee_cents: int
    customer_id: str | None = None
    guest_email: str | None = None
    customer_email: str | None = None
    billing_address: Address | None = None
    payment_intent_id: str | None = None
    packaging_cents: int = 0
    customs_cents: int = 0
    attribution: dict[str, Any] | None = None
    locale: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class OrderCreated:
    """Result of order creation (or of finding the already-created order)."""

    order_id: UUID
    order_number: str
    fulfillment_task_ids: tuple[UUID, ...]
    ledger_entry_id: UUID
    already_existed: bool = False


@dataclass(frozen=True)
class RefundRequest:
    order_id: UUID
    refund_amount_cents: int
    external_refund_id: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class RefundResult:
    """
    Result of a refund.

    ``reversed_split`` holds the negative shares ("amount to claw back").
    ``already_processed`` is True when the external refund id had been
    booked before and nothing was written.
    """

    ledger_entry_id: UUID
    entry_type: LedgerEntryType
    refund_amount_cents: int
    reversed_split: ProfitSplit
    already_processed: bool = False


@dataclass(frozen=True)
class DispatchOutcome:
    """What happened to one fulfillment task during one dispatch attempt."""

    task_id: UUID
    producer: str
    success: bool
    status: FulfillmentStatus
    retry_count: int
    method: DispatchMethod | None = None
    external_order_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class DispatchSummary:
    """Aggregate of per-task outcomes for one order."""

    order_id: UUID
    outcomes: tuple[DispatchOutcome, ...] = field(default_factory=tuple)

    @property
    def sent_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def all_sent(self) -> bool:
        return self.failed_count == 0

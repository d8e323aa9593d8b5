"""
Producer client interface and the values crossing it.

Responsibility:
    Defines the closed capability interface every producer integration
    implements (``send_order`` / ``get_status`` / ``mode``) and the frozen
    payload and result types.  The dispatcher only ever talks to this
    interface; adding a producer is registering one more client.

Architecture position:
    Kernel > Producers.  Imported by producers/clients.py,
    producers/registry.py and services/fulfillment_dispatcher.py.

Invariants enforced:
    - ``send_order`` never raises for ordinary failures (network error,
      non-2xx, missing contact details).  It returns a failed
      ``DispatchResult`` so the caller applies one retry policy.
    - ``get_status`` may raise ``ProducerStatusError``; it is only used
      by reconciliation, never on the dispatch path.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from order_kernel.models.fulfillment import DispatchMethod, FulfillmentStatus


@dataclass(frozen=True)
class ProducerOrderItem:
    sku: str
    product_name: str
    variant_name: str
    quantity: int
    size_ml: int | None = None
    weight_grams: int | None = None


@dataclass(frozen=True)
class ProducerOrderPayload:
    """
    Producer-scoped view of one order: only that producer's items.

    ``external_reference`` is derived from the task id, so a producer that
    receives the same task twice can recognise the duplicate.
    """

    task_id: UUID
    external_reference: str
    order_number: str
    items: tuple[ProducerOrderItem, ...]
    shipping_address: dict[str, Any]
    customer_email: str | None = None
    notes: str | None = None

    @property
    def item_count(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one ``send_order`` call."""

    success: bool
    method: DispatchMethod | None
    external_order_id: str | None = None
    error: str | None = None

    @classmethod
    def sent(cls, method: DispatchMethod, external_order_id: str | None = None) -> "DispatchResult":
        return cls(success=True, method=method, external_order_id=external_order_id)

    @classmethod
    def failed(cls, method: DispatchMethod | None, error: str) -> "DispatchResult":
        return cls(success=False, method=method, error=error)


@dataclass(frozen=True)
class StatusReport:
    """What a producer reports about an order it received."""

    status: FulfillmentStatus
    tracking_number: str | None = None
    tracking_url: str | None = None
    raw_payload: dict[str, Any] | None = None


class ProducerClient(ABC):
    """
    One producer integration.

    Contract:
        ``name`` is the producer slug stored on fulfillment tasks.
        ``mode`` reports API or e-mail transport.

    Guarantees:
        - ``send_order`` returns a ``DispatchResult`` for every ordinary
          failure instead of raising.

    Non-goals:
        - Does NOT touch the database; the dispatcher records outcomes.
    """

    name: str

    @property
    @abstractmethod
    def mode(self) -> DispatchMethod:
        ...

    @property
    def is_api_mode(self) -> bool:
        return self.mode == DispatchMethod.API

    @abstractmethod
    def send_order(self, payload: ProducerOrderPayload) -> DispatchResult:
        ...

    @abstractmethod
    def get_status(self, external_order_id: str) -> StatusReport:
        ...

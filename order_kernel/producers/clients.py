"""
StandardProducerClient -- the one ProducerClient implementation.

Responsibility:
    Sends a producer-scoped order either to the producer's REST API or as
    a structured e-mail, chosen from its ``ProducerSettings``: API URL and
    key both present means API mode, anything else means e-mail mode.
    Built-in producers and table-configured producers are both instances
    of this class with different settings.

Architecture position:
    Kernel > Producers.  Built by ProducerRegistry, called by
    FulfillmentDispatcher.

Invariants enforced:
    - ``send_order`` never raises for ordinary failures; it converts
      transport errors, non-2xx responses and missing contact data into a
      failed DispatchResult with a human-readable error.
    - Every HTTP call has a bounded timeout.

Failure modes:
    - ``get_status`` raises ProducerStatusError when the API is
      unreachable, answers non-2xx, or returns a non-JSON body.
"""

from datetime import datetime
from typing import Any, Callable

import httpx

from order_kernel.exceptions import ProducerStatusError
from order_kernel.logging_config import get_logger
from order_kernel.models.fulfillment import DispatchMethod, FulfillmentStatus
from order_kernel.producers.base import (
    DispatchResult,
    ProducerClient,
    ProducerOrderPayload,
    StatusReport,
)
from order_kernel.producers.email import Mailer, build_order_email
from order_kernel.settings import ProducerSettings

logger = get_logger("producers.client")

_ERROR_BODY_LIMIT = 500

# Producer vocabulary -> fulfillment status.  Anything unknown means the
# producer has the order but reports nothing we can act on.
PRODUCER_STATUS_MAP = {
    "received": FulfillmentStatus.CONFIRMED,
    "processing": FulfillmentStatus.CONFIRMED,
    "packed": FulfillmentStatus.CONFIRMED,
    "confirmed": FulfillmentStatus.CONFIRMED,
    "shipped": FulfillmentStatus.SHIPPED,
    "delivered": FulfillmentStatus.DELIVERED,
    "cancelled": FulfillmentStatus.CANCELLED,
}


def map_producer_status(raw: Any) -> FulfillmentStatus:
    if not isinstance(raw, str):
        return FulfillmentStatus.SENT_TO_PRODUCER
    return PRODUCER_STATUS_MAP.get(raw.strip().lower(), FulfillmentStatus.SENT_TO_PRODUCER)


def build_api_body(payload: ProducerOrderPayload) -> dict[str, Any]:
    """JSON body for ``POST {api_url}/orders``."""
    address = payload.shipping_address
    body: dict[str, Any] = {
        "external_reference": payload.external_reference,
        "order_number": payload.order_number,
        "items": [
            {"sku": item.sku, "quantity": item.quantity, "product_name": item.product_name}
            for item in payload.items
        ],
        "shipping_address": {
            "name": address.get("name"),
            "street": address.get("street"),
            "city": address.get("city"),
            "postal_code": address.get("postal_code"),
            "country": address.get("country"),
        },
    }
    if address.get("street2"):
        body["shipping_address"]["street2"] = address["street2"]
    if payload.customer_email:
        body["customer_email"] = payload.customer_email
    if payload.notes:
        body["notes"] = payload.notes
    return body


class StandardProducerClient(ProducerClient):
    """
    Producer client parameterized by one ``ProducerSettings`` record.

    Contract:
        ``send_order`` in API mode POSTs to ``{api_url}/orders`` with bearer
        auth and reads the producer's id from ``order_id`` or ``id``.  In
        e-mail mode it renders the order summary and hands it to the
        mailer.

    Guarantees:
        - Never raises from ``send_order``.

    Non-goals:
        - No retries of its own; the dispatcher owns retry policy.
    """

    def __init__(
        self,
        settings: ProducerSettings,
        mailer: Mailer,
        http_client: httpx.Client | None = None,
        timeout_seconds: float = 10.0,
        subject_tag: str = "[AIGG]",
        now: Callable[[], datetime] | None = None,
    ):
        self.name = settings.slug
        self._settings = settings
        self._mailer = mailer
        self._http = http_client or httpx.Client(timeout=timeout_seconds)
        self._subject_tag = subject_tag
        self._now = now or datetime.now

    @property
    def settings(self) -> ProducerSettings:
        return self._settings

    @property
    def mode(self) -> DispatchMethod:
        return DispatchMethod.API if self._settings.is_api_mode else DispatchMethod.EMAIL

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.api_key}",
            "Content-Type": "application/json",
        }

    def send_order(self, payload: ProducerOrderPayload) -> DispatchResult:
        if self.is_api_mode:
            return self._send_via_api(payload)
        return self._send_via_email(payload)

    def get_status(self, external_order_id: str) -> StatusReport:
        if not self.is_api_mode:
            # E-mail producers report nothing; operators update status by hand.
            return StatusReport(status=FulfillmentStatus.SENT_TO_PRODUCER)

        url = f"{self._settings.api_url.rstrip('/')}/orders/{external_order_id}/status"
        try:
            response = self._http.get(url, headers=self._headers())
        except httpx.HTTPError as exc:
            raise ProducerStatusError(self.name, external_order_id, f"unreachable: {exc}") from exc

        if not response.is_success:
            raise ProducerStatusError(
                self.name, external_order_id, f"API returned {response.status_code}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ProducerStatusError(self.name, external_order_id, "response is not JSON") from exc
        if not isinstance(data, dict):
            raise ProducerStatusError(self.name, external_order_id, "response is not an object")

        return StatusReport(
            status=map_producer_status(data.get("status")),
            tracking_number=data.get("tracking_number"),
            tracking_url=data.get("tracking_url"),
            raw_payload=data,
        )

    def _send_via_api(self, payload: ProducerOrderPayload) -> DispatchResult:
        url = f"{self._settings.api_url.rstrip('/')}/orders"
        try:
            response = self._http.post(url, json=build_api_body(payload), headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning(
                "producer_api_unreachable",
                extra={"producer": self.name, "error": str(exc)},
            )
            return DispatchResult.failed(
                DispatchMethod.API, f"{self.name} API unreachable: {exc}"
            )

        if not response.is_success:
            body = response.text[:_ERROR_BODY_LIMIT] or "No body"
            return DispatchResult.failed(
                DispatchMethod.API, f"{self.name} API {response.status_code}: {body}"
            )

        external_id = None
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            raw_id = data.get("order_id") or data.get("id")
            external_id = str(raw_id) if raw_id is not None else None

        return DispatchResult.sent(DispatchMethod.API, external_id)

    def _send_via_email(self, payload: ProducerOrderPayload) -> DispatchResult:
        if not self._settings.contact_email:
            return DispatchResult.failed(
                DispatchMethod.EMAIL, f"No contact email configured for {self.name}"
            )

        email = build_order_email(
            payload,
            producer_name=self.name,
            to=self._settings.contact_email,
            now=self._now(),
            subject_tag=self._subject_tag,
        )
        if not self._mailer.send(email):
            return DispatchResult.failed(DispatchMethod.EMAIL, "Email delivery failed")
        return DispatchResult.sent(DispatchMethod.EMAIL)

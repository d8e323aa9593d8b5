"""
Payment webhook signature verification.

Deliveries carry a ``Stripe-Signature`` style header,
``t=<unix seconds>,v1=<hex hmac>[,v1=...]``, checked with
``stripe.WebhookSignature``.  The age check runs here against the injected
Clock rather than inside the library, so it rejects deliveries from the
future as well as stale ones.
"""

import stripe

from order_kernel.domain.clock import Clock, SystemClock
from order_kernel.exceptions import InvalidSignatureError

DEFAULT_TOLERANCE_SECONDS = 300


def _signed_timestamp(header: str) -> int:
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            return int(value)
    raise InvalidSignatureError("Missing timestamp")


class WebhookVerifier:
    """
    Verifies signed webhook deliveries.

    Contract:
        ``verify(body, header)`` returns None for an authentic, fresh
        delivery and raises ``InvalidSignatureError`` otherwise.

    Guarantees:
        - Any matching ``v1`` value is accepted, so secrets can rotate.
        - Deliveries outside ``tolerance_seconds`` of the clock are
          rejected, in both directions.  Zero disables the age check.
    """

    def __init__(
        self,
        signing_secret: str,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        clock: Clock | None = None,
    ):
        self._secret = signing_secret
        self._tolerance = tolerance_seconds
        self._clock = clock or SystemClock()

    def verify(self, body: bytes, header: str | None) -> None:
        if not self._secret:
            raise InvalidSignatureError("Signing secret not configured")
        if not header:
            raise InvalidSignatureError("Missing signature header")
        try:
            payload = body.decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidSignatureError("Body is not UTF-8") from None

        try:
            stripe.WebhookSignature.verify_header(payload, header, self._secret, tolerance=None)
        except stripe.SignatureVerificationError as exc:
            raise InvalidSignatureError(str(exc)) from exc

        age = abs(self._clock.now().timestamp() - _signed_timestamp(header))
        if self._tolerance > 0 and age > self._tolerance:
            raise InvalidSignatureError("Timestamp outside tolerance")

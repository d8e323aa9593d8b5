"""
Producer order e-mail -- rendering and delivery.

Responsibility:
    Renders the plain-text order summary sent to e-mail-mode producers
    and delivers it through a ``Mailer``.  The body is deterministic for a
    given payload and timestamp: no HTML, printable as is.

Architecture position:
    Kernel > Producers.  Used by StandardProducerClient in e-mail mode and
    by the notification channel for operator alerts.

Failure modes:
    - ``HttpMailer.send`` returns False on transport errors and non-2xx
      responses; it never raises.  Callers turn False into a failed
      dispatch result.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

import httpx

from order_kernel.logging_config import get_logger
from order_kernel.producers.base import ProducerOrderPayload

logger = get_logger("producers.email")

RULE = "═" * 47

_MONTHS_DE_AT = (
    "Jänner", "Februar", "März", "April", "Mai", "Juni",
    "Juli", "August", "September", "Oktober", "November", "Dezember",
)


@dataclass(frozen=True)
class OutgoingEmail:
    to: str
    subject: str
    body: str


def _section(title: str) -> str:
    head = f"── {title} "
    return head + "─" * max(0, 45 - len(head))


def format_date_de(moment: datetime) -> str:
    """``15. Jänner 2026, 12:00`` -- Austrian long date with time."""
    return f"{moment.day:02d}. {_MONTHS_DE_AT[moment.month - 1]} {moment.year}, {moment:%H:%M}"


def render_order_email_body(
    payload: ProducerOrderPayload,
    producer_name: str,
    now: datetime,
) -> str:
    lines = [
        RULE,
        "  NEUE BESTELLUNG — AUSTRIA IMPERIAL GREEN GOLD",
        RULE,
        "",
        f"Bestellnummer:    {payload.order_number}",
        f"Fulfillment-ID:   {payload.external_reference}",
        f"Produzent:        {producer_name.upper()}",
        f"Datum:            {format_date_de(now)}",
        "",
        _section("ARTIKEL"),
        "",
    ]

    for item in payload.items:
        details = []
        if item.size_ml:
            details.append(f"Größe: {item.size_ml}ml")
        if item.weight_grams:
            details.append(f"Gewicht: {item.weight_grams}g")
        lines.append(f"  {item.quantity}x  {item.product_name}")
        lines.append(f"       Variante: {item.variant_name} (SKU: {item.sku})")
        if details:
            lines.append("       " + " · ".join(details))
        lines.append("")

    address = payload.shipping_address
    lines.append(_section("LIEFERADRESSE"))
    lines.append("")
    lines.append(f"  {address.get('name', '')}")
    lines.append(f"  {address.get('street', '')}")
    if address.get("street2"):
        lines.append(f"  {address['street2']}")
    lines.append(f"  {address.get('postal_code', '')} {address.get('city', '')}")
    if address.get("state"):
        lines.append(f"  {address['state']}")
    lines.append(f"  {address.get('country', '')}")
    lines.append("")

    if payload.customer_email:
        lines.extend([_section("KUNDENKONTAKT"), f"  E-Mail: {payload.customer_email}", ""])

    if payload.notes:
        lines.extend([_section("ANMERKUNGEN"), f"  {payload.notes}", ""])

    lines.extend([
        RULE,
        "Bitte Trackingnummer nach Versand an uns übermitteln.",
        "Diese Bestellung wurde automatisch generiert.",
        RULE,
    ])
    return "\n".join(lines)


def build_order_email(
    payload: ProducerOrderPayload,
    producer_name: str,
    to: str,
    now: datetime,
    subject_tag: str = "[AIGG]",
) -> OutgoingEmail:
    subject = f"{subject_tag} Neue Bestellung {payload.order_number} — {payload.item_count} Artikel"
    return OutgoingEmail(
        to=to,
        subject=subject,
        body=render_order_email_body(payload, producer_name, now),
    )


class Mailer(ABC):
    """Outbound plain-text mail.  ``send`` reports delivery, never raises."""

    @abstractmethod
    def send(self, email: OutgoingEmail) -> bool:
        ...


class DryRunMailer(Mailer):
    """Logs the message instead of sending it and reports success."""

    def __init__(self) -> None:
        self.sent: list[OutgoingEmail] = []

    def send(self, email: OutgoingEmail) -> bool:
        self.sent.append(email)
        logger.info(
            "mail_dry_run",
            extra={"to": email.to, "subject": email.subject, "body_length": len(email.body)},
        )
        return True


class HttpMailer(Mailer):
    """
    Mail delivery through an HTTP mail API (Resend-compatible JSON body).

    The httpx client is injectable so tests can use ``httpx.MockTransport``.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        from_address: str,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self._api_url = api_url
        self._api_key = api_key
        self._from_address = from_address
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def send(self, email: OutgoingEmail) -> bool:
        try:
            response = self._client.post(
                self._api_url,
                json={
                    "from": self._from_address,
                    "to": [email.to],
                    "subject": email.subject,
                    "text": email.body,
                },
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as exc:
            logger.warning("mail_delivery_failed", extra={"to": email.to, "error": str(exc)})
            return False

        if not response.is_success:
            logger.warning(
                "mail_delivery_failed",
                extra={"to": email.to, "status_code": response.status_code},
            )
            return False

        logger.info("mail_sent", extra={"to": email.to, "subject": email.subject})
        return True

"""Producer integrations: client interface, standard client, registry, e-mail."""

from order_kernel.producers.base import (
    DispatchResult,
    ProducerClient,
    ProducerOrderItem,
    ProducerOrderPayload,
    StatusReport,
)
from order_kernel.producers.clients import StandardProducerClient
from order_kernel.producers.email import DryRunMailer, HttpMailer, Mailer, OutgoingEmail
from order_kernel.producers.registry import ProducerRegistry

__all__ = [
    "DispatchResult",
    "DryRunMailer",
    "HttpMailer",
    "Mailer",
    "OutgoingEmail",
    "ProducerClient",
    "ProducerOrderItem",
    "ProducerOrderPayload",
    "ProducerRegistry",
    "StandardProducerClient",
    "StatusReport",
]

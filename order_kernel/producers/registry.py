"""
ProducerRegistry -- producer slug -> ProducerClient.

Responsibility:
    Resolves the producer stored on a fulfillment task to the client that
    talks to it.  Built-in producers come from ``KernelSettings``; any
    other producer is loaded from the ``producers`` table and wrapped in
    the same StandardProducerClient, so adding a producer never changes
    the dispatcher.

Architecture position:
    Kernel > Producers.  Owned by the composition root, used by
    FulfillmentDispatcher.

Invariants enforced:
    - Unknown or inactive producers raise UnknownProducerError.
    - Table-configured clients are cached for ``registry_cache_ttl_seconds``
      measured by the injected clock; ``invalidate()`` drops the cache.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from order_kernel.domain.clock import Clock, SystemClock
from order_kernel.exceptions import UnknownProducerError
from order_kernel.logging_config import get_logger
from order_kernel.models.catalog import Producer, ProducerMode
from order_kernel.producers.base import ProducerClient
from order_kernel.producers.clients import StandardProducerClient
from order_kernel.producers.email import Mailer
from order_kernel.settings import KernelSettings, ProducerSettings

logger = get_logger("producers.registry")


@dataclass
class _CacheEntry:
    client: ProducerClient
    expires_at: datetime


def producer_settings_from_row(row: Producer) -> ProducerSettings:
    """A row in e-mail mode never uses its API credentials."""
    api_mode = row.mode == ProducerMode.API
    return ProducerSettings(
        slug=row.slug,
        display_name=row.display_name,
        api_url=row.api_url if api_mode else None,
        api_key=row.api_key if api_mode else None,
        contact_email=row.contact_email,
    )


class ProducerRegistry:
    """
    Lookup of producer clients.

    Contract:
        ``resolve(slug, session)`` returns a built-in client if one is
        configured, else a cached or freshly loaded table-configured client.

    Non-goals:
        - Does NOT create or edit producer rows.
    """

    def __init__(
        self,
        settings: KernelSettings,
        mailer: Mailer,
        clock: Clock | None = None,
        http_client: httpx.Client | None = None,
    ):
        self._settings = settings
        self._mailer = mailer
        self._clock = clock or SystemClock()
        self._http = http_client or httpx.Client(timeout=settings.producer_http_timeout_seconds)
        self._ttl = timedelta(seconds=settings.registry_cache_ttl_seconds)
        self._builtin: dict[str, ProducerClient] = {
            producer.slug: self._build_client(producer)
            for producer in settings.builtin_producers
        }
        self._cache: dict[str, _CacheEntry] = {}

    def _build_client(self, producer: ProducerSettings) -> ProducerClient:
        return StandardProducerClient(
            producer,
            mailer=self._mailer,
            http_client=self._http,
            timeout_seconds=self._settings.producer_http_timeout_seconds,
            subject_tag=self._settings.mail_subject_tag,
            now=self._clock.now,
        )

    def register(self, client: ProducerClient) -> None:
        """Add or replace a built-in client."""
        self._builtin[client.name] = client

    @property
    def builtin_names(self) -> list[str]:
        return sorted(self._builtin)

    def resolve(self, slug: str, session: Session | None = None) -> ProducerClient:
        builtin = self._builtin.get(slug)
        if builtin is not None:
            return builtin

        now = self._clock.now()
        cached = self._cache.get(slug)
        if cached is not None and cached.expires_at > now:
            return cached.client

        if session is None:
            raise UnknownProducerError(slug)

        row = session.execute(
            select(Producer).where(Producer.slug == slug)
        ).scalar_one_or_none()
        if row is None or not row.is_active:
            raise UnknownProducerError(slug)

        client = self._build_client(producer_settings_from_row(row))
        self._cache[slug] = _CacheEntry(client=client, expires_at=now + self._ttl)
        logger.info(
            "producer_client_loaded",
            extra={"producer": slug, "mode": client.mode.value},
        )
        return client

    def invalidate(self, slug: str | None = None) -> None:
        if slug is None:
            self._cache.clear()
        else:
            self._cache.pop(slug, None)

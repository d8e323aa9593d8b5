"""
Configuration schema (``order_config.schema``).

Frozen dataclasses mirroring the YAML document in ``sets/``.  Environment
indirections (``*_env`` keys) are resolved by the loader, so every value
here is final; nothing downstream reads the environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class ShopConfig:
    order_number_prefix: str = "AIGG"
    fulfillment_reference_prefix: str = "AIGG-FO"
    currency: str = "EUR"
    default_country: str = "AT"


@dataclass(frozen=True)
class AccountingConfig:
    technology_take_percent: Decimal = Decimal("10")


@dataclass(frozen=True)
class FulfillmentConfig:
    producer_http_timeout_seconds: float = 10.0
    stuck_pending_after_minutes: int = 60
    registry_cache_ttl_seconds: int = 300


@dataclass(frozen=True)
class ProducerDefinition:
    """A built-in producer; credentials resolved from the environment."""

    slug: str
    display_name: str
    api_url_env: str | None = None
    api_key_env: str | None = None
    email_env: str | None = None
    api_url: str | None = None
    api_key: str | None = field(default=None, repr=False)
    contact_email: str | None = None


@dataclass(frozen=True)
class WebhookConfig:
    signing_secret_env: str = "PAYMENT_WEBHOOK_SECRET"
    tolerance_seconds: int = 300
    signing_secret: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class AttributionConfig:
    campaign_marker: str = "auryx_engine"
    partner_code: str = "aigg"


@dataclass(frozen=True)
class MailConfig:
    api_key_env: str = "RESEND_API_KEY"
    api_url: str = "https://api.resend.com/emails"
    from_address: str = "orders@example.invalid"
    subject_tag: str = "[AIGG]"
    operator_alert_email_env: str = "OPERATOR_ALERT_EMAIL"
    api_key: str | None = field(default=None, repr=False)
    operator_alert_email: str | None = None


@dataclass(frozen=True)
class DatabaseConfig:
    url_env: str = "DATABASE_URL"
    default_url: str = "sqlite+pysqlite:///order_kernel.db"
    url: str = "sqlite+pysqlite:///order_kernel.db"


@dataclass(frozen=True)
class OrderKernelConfig:
    """The complete, resolved configuration."""

    shop: ShopConfig
    accounting: AccountingConfig
    fulfillment: FulfillmentConfig
    producer_costs: dict[str, int]
    producers: tuple[ProducerDefinition, ...]
    webhooks: WebhookConfig
    attribution: AttributionConfig
    mail: MailConfig
    database: DatabaseConfig
    source: str = "<inline>"

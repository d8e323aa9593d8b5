"""
Configuration Loader (``order_config.loader``).

Responsibility
--------------
Loads the YAML configuration document and parses it into the frozen
``order_config.schema`` dataclasses, resolving ``*_env`` indirections
against an explicit environment mapping.

Invariants enforced
-------------------
* Every parse problem raises ``ConfigurationError`` naming the key.
* Producer costs are integer cents; floats and strings are rejected.
* Secrets are read from the environment only, never from the YAML file.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ConfigurationError``.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping

import yaml

from order_config.schema import (
    AccountingConfig,
    AttributionConfig,
    DatabaseConfig,
    FulfillmentConfig,
    MailConfig,
    OrderKernelConfig,
    ProducerDefinition,
    ShopConfig,
    WebhookConfig,
)
from order_kernel.exceptions import ConfigurationError

REQUIRED_SECTIONS = ("shop", "accounting", "producer_costs", "fulfillment", "producers")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data or {}


def _env(environ: Mapping[str, str], name: str | None) -> str | None:
    if not name:
        return None
    value = environ.get(name)
    return value or None


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"section '{name}' must be a mapping")
    return value


def _positive_number(section: str, key: str, value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(f"{section}.{key} must be a positive number, got {value!r}")
    return value


def parse_producer_costs(raw: Any) -> dict[str, int]:
    if not isinstance(raw, dict) or not raw:
        raise ConfigurationError("producer_costs must be a non-empty mapping of SKU to cents")
    costs: dict[str, int] = {}
    for sku, cents in raw.items():
        if isinstance(cents, bool) or not isinstance(cents, int) or cents < 0:
            raise ConfigurationError(
                f"producer_costs.{sku} must be non-negative integer cents, got {cents!r}"
            )
        costs[str(sku)] = cents
    return costs


def parse_producers(raw: Any, environ: Mapping[str, str]) -> tuple[ProducerDefinition, ...]:
    if not isinstance(raw, dict):
        raise ConfigurationError("producers must be a mapping keyed by producer slug")
    producers = []
    for slug, entry in raw.items():
        entry = entry or {}
        producers.append(
            ProducerDefinition(
                slug=str(slug),
                display_name=entry.get("display_name", str(slug).title()),
                api_url_env=entry.get("api_url_env"),
                api_key_env=entry.get("api_key_env"),
                email_env=entry.get("email_env"),
                api_url=_env(environ, entry.get("api_url_env")),
                api_key=_env(environ, entry.get("api_key_env")),
                contact_email=_env(environ, entry.get("email_env")),
            )
        )
    return tuple(producers)


def parse_config(
    data: dict[str, Any],
    environ: Mapping[str, str],
    source: str = "<inline>",
) -> OrderKernelConfig:
    """Parse a configuration document into an ``OrderKernelConfig``."""
    missing = [name for name in REQUIRED_SECTIONS if name not in data]
    if missing:
        raise ConfigurationError(f"missing section(s): {', '.join(missing)}")

    shop = _section(data, "shop")
    accounting = _section(data, "accounting")
    fulfillment = _section(data, "fulfillment")
    webhooks = _section(data, "webhooks")
    attribution = _section(data, "attribution")
    mail = _section(data, "mail")
    database = _section(data, "database")

    try:
        take_percent = Decimal(str(accounting.get("technology_take_percent", "10")))
    except InvalidOperation:
        raise ConfigurationError(
            f"accounting.technology_take_percent is not a number: "
            f"{accounting.get('technology_take_percent')!r}"
        ) from None
    if not Decimal(0) <= take_percent <= Decimal(100):
        raise ConfigurationError("accounting.technology_take_percent must be within 0..100")

    webhook_defaults = WebhookConfig()
    mail_defaults = MailConfig()
    db_defaults = DatabaseConfig()

    secret_env = webhooks.get("signing_secret_env", webhook_defaults.signing_secret_env)
    mail_key_env = mail.get("api_key_env", mail_defaults.api_key_env)
    alert_env = mail.get("operator_alert_email_env", mail_defaults.operator_alert_email_env)
    url_env = database.get("url_env", db_defaults.url_env)
    default_url = database.get("default_url", db_defaults.default_url)

    return OrderKernelConfig(
        shop=ShopConfig(
            order_number_prefix=shop.get("order_number_prefix", "AIGG"),
            fulfillment_reference_prefix=shop.get("fulfillment_reference_prefix", "AIGG-FO"),
            currency=shop.get("currency", "EUR"),
            default_country=shop.get("default_country", "AT"),
        ),
        accounting=AccountingConfig(technology_take_percent=take_percent),
        fulfillment=FulfillmentConfig(
            producer_http_timeout_seconds=float(_positive_number(
                "fulfillment", "producer_http_timeout_seconds",
                fulfillment.get("producer_http_timeout_seconds", 10),
            )),
            stuck_pending_after_minutes=int(_positive_number(
                "fulfillment", "stuck_pending_after_minutes",
                fulfillment.get("stuck_pending_after_minutes", 60),
            )),
            registry_cache_ttl_seconds=int(_positive_number(
                "fulfillment", "registry_cache_ttl_seconds",
                fulfillment.get("registry_cache_ttl_seconds", 300),
            )),
        ),
        producer_costs=parse_producer_costs(data.get("producer_costs")),
        producers=parse_producers(data.get("producers"), environ),
        webhooks=WebhookConfig(
            signing_secret_env=secret_env,
            tolerance_seconds=int(_positive_number(
                "webhooks", "tolerance_seconds",
                webhooks.get("tolerance_seconds", webhook_defaults.tolerance_seconds),
            )),
            signing_secret=_env(environ, secret_env),
        ),
        attribution=AttributionConfig(
            campaign_marker=attribution.get("campaign_marker", "auryx_engine"),
            partner_code=attribution.get("partner_code", "aigg"),
        ),
        mail=MailConfig(
            api_key_env=mail_key_env,
            api_url=mail.get("api_url", mail_defaults.api_url),
            from_address=mail.get("from_address", mail_defaults.from_address),
            subject_tag=mail.get("subject_tag", mail_defaults.subject_tag),
            operator_alert_email_env=alert_env,
            api_key=_env(environ, mail_key_env),
            operator_alert_email=_env(environ, alert_env),
        ),
        database=DatabaseConfig(
            url_env=url_env,
            default_url=default_url,
            url=_env(environ, url_env) or default_url,
        ),
        source=source,
    )


def load_config_file(path: Path, environ: Mapping[str, str]) -> OrderKernelConfig:
    return parse_config(load_yaml_file(path), environ, source=str(path))

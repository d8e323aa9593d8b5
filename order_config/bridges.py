"""
Config -> Kernel Bridges.

Functions that convert an ``OrderKernelConfig`` into kernel-compatible
inputs.  These live in order_config because the kernel must NEVER import
order_config.

Usage:
    from order_config.bridges import kernel_settings_from_config

    config = get_active_config()
    settings = kernel_settings_from_config(config)
"""

from __future__ import annotations

from order_config.schema import OrderKernelConfig, ProducerDefinition
from order_kernel.settings import KernelSettings, ProducerSettings


def producer_settings_from_definition(definition: ProducerDefinition) -> ProducerSettings:
    return ProducerSettings(
        slug=definition.slug,
        display_name=definition.display_name,
        api_url=definition.api_url,
        api_key=definition.api_key,
        contact_email=definition.contact_email,
    )


def kernel_settings_from_config(config: OrderKernelConfig) -> KernelSettings:
    """Build the frozen ``KernelSettings`` the services consume."""
    return KernelSettings(
        order_number_prefix=config.shop.order_number_prefix,
        fulfillment_reference_prefix=config.shop.fulfillment_reference_prefix,
        currency=config.shop.currency,
        technology_take_percent=config.accounting.technology_take_percent,
        producer_costs=dict(config.producer_costs),
        producer_http_timeout_seconds=config.fulfillment.producer_http_timeout_seconds,
        stuck_pending_after_minutes=config.fulfillment.stuck_pending_after_minutes,
        registry_cache_ttl_seconds=config.fulfillment.registry_cache_ttl_seconds,
        builtin_producers=tuple(
            producer_settings_from_definition(p) for p in config.producers
        ),
        attribution_campaign_marker=config.attribution.campaign_marker,
        commission_partner_code=config.attribution.partner_code,
        mail_subject_tag=config.mail.subject_tag,
        mail_from_address=config.mail.from_address,
        operator_alert_email=config.mail.operator_alert_email,
    )

"""
KernelSettings -- the runtime values the kernel needs, as one frozen value.

The kernel never reads files or environment variables.  ``order_config``
builds a KernelSettings from YAML + environment and hands it in; tests
construct one directly.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from order_kernel.domain.accounting import require_cents
from order_kernel.exceptions import UnknownSkuCostError


@dataclass(frozen=True)
class ProducerSettings:
    """
    Connection details for one producer.

    API mode when both ``api_url`` and ``api_key`` are present, otherwise
    e-mail mode to ``contact_email``.
    """

    slug: str
    display_name: str
    api_url: str | None = None
    api_key: str | None = field(default=None, repr=False)
    contact_email: str | None = None

    @property
    def is_api_mode(self) -> bool:
        return bool(self.api_url and self.api_key)


@dataclass(frozen=True)
class KernelSettings:
    order_number_prefix: str = "AIGG"
    fulfillment_reference_prefix: str = "AIGG-FO"
    currency: str = "EUR"
    technology_take_percent: Decimal = Decimal("10")
    producer_costs: Mapping[str, int] = field(default_factory=dict)
    producer_http_timeout_seconds: float = 10.0
    stuck_pending_after_minutes: int = 60
    registry_cache_ttl_seconds: int = 300
    builtin_producers: tuple[ProducerSettings, ...] = ()
    attribution_campaign_marker: str = "auryx_engine"
    commission_partner_code: str = "aigg"
    mail_subject_tag: str = "[AIGG]"
    mail_from_address: str = "orders@example.invalid"
    operator_alert_email: str | None = None

    def __post_init__(self) -> None:
        costs = {sku: require_cents(f"producer_costs[{sku}]", cents)
                 for sku, cents in dict(self.producer_costs).items()}
        object.__setattr__(self, "producer_costs", MappingProxyType(costs))
        object.__setattr__(self, "technology_take_percent", Decimal(self.technology_take_percent))

    def producer_cost_for(self, sku: str) -> int:
        """Unit producer cost for ``sku``; unknown SKUs are a hard error."""
        try:
            return self.producer_costs[sku]
        except KeyError:
            raise UnknownSkuCostError(sku) from None

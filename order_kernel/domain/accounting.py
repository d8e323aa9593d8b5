"""
Ledger accounting -- gross profit, profit split and refund proportions.

Responsibility:
    Pure integer-cent arithmetic for ledger entries.  No I/O, no clock,
    no session.  Every function is deterministic.

Architecture position:
    Kernel > Domain -- pure functional core.  Called by LedgerService,
    OrderService, RefundService and ReportingService.

Invariants enforced:
    - gross_profit = revenue - producer_cost - packaging - shipping
      - payment_fee - customs.  No clamping; a loss is negative.
    - technology + partner + company shares == gross_profit, exactly.
    - Amounts are ``int`` only.  ``float``, ``Decimal`` and ``bool`` are
      rejected with NonIntegerAmountError; financial math never coerces.

Order of operations for the split (not commutative with rounding):
    1. technology take = round_half_up(take_percent / 100 * net_basis),
       where net_basis = revenue - payment_fee.  Rounding is away from
       zero at .5, so a negated basis yields exactly the negated take.
    2. remainder = gross_profit - technology take (not clamped).
    3. partner share = remainder / 2 truncated toward zero.
    4. company share = remainder - partner share; it absorbs the odd cent.
    Truncation toward zero makes the split odd-symmetric: the split of a
    negated entry is the negated split, so a full refund mirrors its sale.

Refund proportions:
    Each cost field of a refund is -round_half_up(sale_field * refund / sale_revenue),
    capped at what the order has not reversed yet.  Revenue is exactly
    -refund.  A refund that closes the order reverses the remaining amounts
    and shares exactly, so the order nets to zero in every column.
"""

from dataclasses import dataclass, fields
from decimal import ROUND_HALF_UP, Decimal

from order_kernel.exceptions import NonIntegerAmountError

COST_FIELDS = (
    "producer_cost_cents",
    "packaging_cents",
    "shipping_cents",
    "payment_fee_cents",
    "customs_cents",
)


def require_cents(name: str, value: object) -> int:
    """Return ``value`` if it is a plain int, otherwise raise."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise NonIntegerAmountError(name, value)
    return value


def round_half_up_ratio(numerator: int, denominator: int) -> int:
    """
    Round ``numerator / denominator`` to the nearest integer, halves away
    from zero, using exact integer arithmetic.
    """
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    magnitude = (2 * abs(numerator) + denominator) // (2 * denominator)
    return magnitude if numerator >= 0 else -magnitude


@dataclass(frozen=True)
class CostBreakdown:
    """The six signed cost fields of one ledger entry."""

    revenue_cents: int
    producer_cost_cents: int = 0
    packaging_cents: int = 0
    shipping_cents: int = 0
    payment_fee_cents: int = 0
    customs_cents: int = 0

    def __post_init__(self) -> None:
        for f in fields(self):
            require_cents(f.name, getattr(self, f.name))

    @property
    def net_revenue_basis_cents(self) -> int:
        """Revenue after payment fees -- the basis of the technology take."""
        return self.revenue_cents - self.payment_fee_cents

    def negated(self) -> "CostBreakdown":
        return CostBreakdown(**{f.name: -getattr(self, f.name) for f in fields(self)})

    def __add__(self, other: "CostBreakdown") -> "CostBreakdown":
        return CostBreakdown(
            **{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)}
        )


ZERO_COSTS = CostBreakdown(revenue_cents=0)


@dataclass(frozen=True)
class ProfitSplit:
    """Three-way split of a gross profit."""

    technology_share_cents: int
    partner_share_cents: int
    company_share_cents: int

    @property
    def total_cents(self) -> int:
        return (
            self.technology_share_cents
            + self.partner_share_cents
            + self.company_share_cents
        )

    def negated(self) -> "ProfitSplit":
        return ProfitSplit(
            technology_share_cents=-self.technology_share_cents,
            partner_share_cents=-self.partner_share_cents,
            company_share_cents=-self.company_share_cents,
        )

    def __add__(self, other: "ProfitSplit") -> "ProfitSplit":
        return ProfitSplit(
            technology_share_cents=self.technology_share_cents + other.technology_share_cents,
            partner_share_cents=self.partner_share_cents + other.partner_share_cents,
            company_share_cents=self.company_share_cents + other.company_share_cents,
        )


ZERO_SPLIT = ProfitSplit(0, 0, 0)


@dataclass(frozen=True)
class LedgerAmounts:
    """Everything a ledger row stores about money."""

    costs: CostBreakdown
    gross_profit_cents: int
    split: ProfitSplit


def compute_gross_profit(costs: CostBreakdown) -> int:
    """Revenue minus the five cost fields.  May be negative."""
    return costs.revenue_cents - sum(getattr(costs, name) for name in COST_FIELDS)


def compute_technology_take(net_basis_cents: int, take_percent: Decimal) -> int:
    """``take_percent`` % of the net revenue basis, rounded half away from zero."""
    require_cents("net_basis_cents", net_basis_cents)
    raw = Decimal(net_basis_cents) * Decimal(take_percent) / Decimal(100)
    return int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def split_remainder(remainder_cents: int) -> tuple[int, int]:
    """
    Split between partner and company.

    Partner gets half truncated toward zero; company gets the rest.
    """
    require_cents("remainder_cents", remainder_cents)
    half = abs(remainder_cents) // 2
    partner = half if remainder_cents >= 0 else -half
    return partner, remainder_cents - partner


def compute_profit_split(
    gross_profit_cents: int,
    net_basis_cents: int | None = None,
    take_percent: Decimal = Decimal(0),
) -> ProfitSplit:
    """
    Split ``gross_profit_cents`` into technology, partner and company shares.

    Without a net basis (or with a zero take percent) the technology share
    is zero and the split is two-way.
    """
    require_cents("gross_profit_cents", gross_profit_cents)
    take = 0
    if net_basis_cents is not None and Decimal(take_percent) != 0:
        take = compute_technology_take(net_basis_cents, take_percent)
    partner, company = split_remainder(gross_profit_cents - take)
    return ProfitSplit(
        technology_share_cents=take,
        partner_share_cents=partner,
        company_share_cents=company,
    )


def compute_ledger_amounts(costs: CostBreakdown, take_percent: Decimal) -> LedgerAmounts:
    """Gross profit and split for a cost breakdown."""
    gross = compute_gross_profit(costs)
    split = compute_profit_split(gross, costs.net_revenue_basis_cents, take_percent)
    return LedgerAmounts(costs=costs, gross_profit_cents=gross, split=split)


def compute_refund_costs(
    sale: CostBreakdown,
    net: CostBreakdown,
    refund_cents: int,
) -> CostBreakdown:
    """
    Proportional negative cost breakdown for a partial refund.

    Args:
        sale: The original sale entry (proportion base).
        net: Sum of all entries booked so far for the order.
        refund_cents: Positive refund amount.
    """
    require_cents("refund_cents", refund_cents)
    values = {"revenue_cents": -refund_cents}
    for name in COST_FIELDS:
        share = round_half_up_ratio(getattr(sale, name) * refund_cents, sale.revenue_cents)
        remaining = max(getattr(net, name), 0)
        values[name] = -min(share, remaining)
    return CostBreakdown(**values)


def compute_refund_amounts(
    sale: CostBreakdown,
    net: CostBreakdown,
    net_split: ProfitSplit,
    refund_cents: int,
    take_percent: Decimal,
) -> LedgerAmounts:
    """
    Ledger amounts for a refund entry.

    A refund equal to the current net revenue closes the order: it reverses
    exactly the remaining costs and shares.  Any smaller refund is
    proportional to the sale and split like any other entry.
    """
    if refund_cents == net.revenue_cents:
        costs = net.negated()
        return LedgerAmounts(
            costs=costs,
            gross_profit_cents=compute_gross_profit(costs),
            split=net_split.negated(),
        )
    return compute_ledger_amounts(compute_refund_costs(sale, net, refund_cents), take_percent)

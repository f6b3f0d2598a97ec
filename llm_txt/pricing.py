"""
Tiered pricing: free-tier classification, estimate fingerprints, prices.

The client SDK and the server import this same module, so the client's
optimistic free-tier check and the server's enforcement cannot drift.
"""
from dataclasses import dataclass, field
from decimal import ROUND_UP, Decimal
from typing import Callable, Dict, Optional, Tuple

from .models import Estimate, Provider, RequestParams

FREE_PRICE = "$0"
PRICE_QUANTUM = Decimal("0.0001")


@dataclass(frozen=True)
class PricingRule:
    """A named predicate; when it holds, the request is paid."""
    name: str
    applies: Callable[[RequestParams, "PricingTable"], bool]


@dataclass(frozen=True)
class PricingTable:
    """
    Declarative pricing policy for one provider.

    ``paid_rules`` are evaluated in order; a request is free only when
    none of them applies. ``flags`` lists the boolean extras that are
    price-relevant, with the one-character code used in fingerprints.
    """
    provider: Provider
    paid_rules: Tuple[PricingRule, ...]
    flags: Tuple[Tuple[str, str], ...]
    default_limit: Optional[int] = None
    free_cap: Optional[int] = None
    unit_price: Decimal = Decimal("0.0001")
    min_price: Decimal = Decimal("0.001")
    surcharges: Dict[str, Decimal] = field(default_factory=dict)
    assumed_count: int = 1000

    @property
    def paged(self) -> bool:
        """Whether item count is part of the price."""
        return self.default_limit is not None

    def effective_limit(self, params: RequestParams) -> Optional[int]:
        if not self.paged:
            return None
        return params.limit if params.limit is not None else self.default_limit


def _over_free_cap(params: RequestParams, table: PricingTable) -> bool:
    return table.free_cap is not None and table.effective_limit(params) > table.free_cap


def _flag_rule(attr: str) -> PricingRule:
    return PricingRule(attr, lambda params, table: bool(getattr(params, attr)))


OVER_FREE_CAP = PricingRule("limit_over_free_cap", _over_free_cap)
FETCH_ALL = _flag_rule("fetch_all")


RULE_TABLES: Dict[Provider, PricingTable] = {
    Provider.FARCASTER: PricingTable(
        provider=Provider.FARCASTER,
        default_limit=50,
        free_cap=10,
        paid_rules=(
            OVER_FREE_CAP,
            FETCH_ALL,
            _flag_rule("include_replies"),
            _flag_rule("include_parents"),
        ),
        # Reactions add no upstream calls, so they never make a request paid
        flags=(("include_replies", "r"), ("include_parents", "p"), ("include_reactions", "x")),
        unit_price=Decimal("0.0001"),
        surcharges={"include_replies": Decimal("1.5"), "include_parents": Decimal("2")},
    ),
    Provider.BLUESKY: PricingTable(
        provider=Provider.BLUESKY,
        default_limit=50,
        free_cap=10,
        paid_rules=(
            OVER_FREE_CAP,
            FETCH_ALL,
            _flag_rule("include_replies"),
            _flag_rule("include_parents"),
        ),
        flags=(("include_replies", "r"), ("include_parents", "p"), ("include_reactions", "x")),
        unit_price=Decimal("0.0001"),
        surcharges={"include_replies": Decimal("1.5"), "include_parents": Decimal("2")},
    ),
    Provider.RSS: PricingTable(
        provider=Provider.RSS,
        default_limit=10,
        free_cap=5,
        paid_rules=(
            OVER_FREE_CAP,
            FETCH_ALL,
            _flag_rule("include_content"),
        ),
        flags=(("include_content", "c"),),
        unit_price=Decimal("0.0002"),
        surcharges={"include_content": Decimal("2")},
        assumed_count=100,
    ),
    Provider.GIT: PricingTable(
        provider=Provider.GIT,
        paid_rules=(
            _flag_rule("include_content"),
            _flag_rule("include_tree"),
        ),
        flags=(("include_tree", "t"), ("include_content", "c")),
        unit_price=Decimal("0.00005"),
        surcharges={"include_content": Decimal("10")},
        assumed_count=500,
    ),
}


def get_rule_table(provider: Provider) -> PricingTable:
    return RULE_TABLES[provider]


def is_free_tier(params: RequestParams, table: Optional[PricingTable] = None) -> bool:
    """
    Decide whether a request needs no payment.

    Pure: depends only on ``params`` and the rule table.
    """
    table = table or get_rule_table(params.provider)
    return not any(rule.applies(params, table) for rule in table.paid_rules)


def paid_reasons(params: RequestParams, table: Optional[PricingTable] = None) -> Tuple[str, ...]:
    """Names of the rules that make this request paid (empty when free)."""
    table = table or get_rule_table(params.provider)
    return tuple(rule.name for rule in table.paid_rules if rule.applies(params, table))


def fingerprint(params: RequestParams, table: Optional[PricingTable] = None) -> str:
    """
    Build the estimate cache key from the price-relevant params only.

    Defaults are filled in first, so an omitted limit and an explicit
    limit equal to the default fingerprint identically. Sort order is
    not price-relevant and never appears.
    """
    table = table or get_rule_table(params.provider)
    parts = [f"{params.identifier_field}={params.identifier}"]
    if table.paged:
        parts.append("all" if params.fetch_all else str(table.effective_limit(params)))
    for attr, code in table.flags:
        parts.append(code if getattr(params, attr) else "")
    if params.provider == Provider.GIT:
        parts.append(params.branch or "")
        parts.append(";".join(sorted(set(params.include_patterns))))
        parts.append(";".join(sorted(set(params.exclude_patterns))))
    return "|".join(parts)


def _format_price(amount: Decimal) -> str:
    return f"${amount.quantize(PRICE_QUANTUM, rounding=ROUND_UP)}"


def billable_units(
    params: RequestParams,
    table: PricingTable,
    count_hint: Optional[int] = None,
) -> int:
    """Number of items the request is charged for."""
    if table.paged and not params.fetch_all:
        limit = table.effective_limit(params)
        return min(limit, count_hint) if count_hint is not None else limit
    return count_hint if count_hint is not None else table.assumed_count


def estimate_price(
    params: RequestParams,
    count_hint: Optional[int] = None,
    table: Optional[PricingTable] = None,
) -> Estimate:
    """
    Compute the price of a request.

    Args:
        params: Request parameters
        count_hint: Known size of the result set (post count, file
            count), if the server looked it up
        table: Rule table override

    Returns:
        Estimate with a dollar price string such as "$0.0015"
    """
    table = table or get_rule_table(params.provider)
    if is_free_tier(params, table):
        return Estimate(price=FREE_PRICE, is_free=True, count_hint=count_hint)

    amount = Decimal(billable_units(params, table, count_hint)) * table.unit_price
    for attr, multiplier in table.surcharges.items():
        if getattr(params, attr):
            amount *= multiplier
    amount = max(amount, table.min_price)
    return Estimate(price=_format_price(amount), is_free=False, count_hint=count_hint)


def price_to_atomic(price: str, decimals: int = 6) -> str:
    """Convert "$0.0015" to the token's smallest unit (USDC: 6 decimals)."""
    amount = Decimal(price.lstrip("$") or "0")
    return str(int((amount * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_UP)))

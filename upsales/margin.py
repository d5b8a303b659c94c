"""
Margin and compensation arithmetic.

Pure functions, no side effects. Amounts are floats in UAH; every rounding
goes through `round2`, which rounds half-up on the decimal representation
of the value so results do not depend on binary float noise
(175.01 * 55% is 96.26, not 96.25).
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple, Union

from upsales.config import TierConfig

Number = Union[int, float, Decimal]

_CENT = Decimal("0.01")
_HUNDRED = Decimal(100)


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(repr(float(value or 0)))


def round2(value: Number) -> float:
    """Round to 2 decimal places, half-up."""
    return float(_to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP))


def add2(*values: Number) -> float:
    """Sum and round to cents."""
    total = sum((_to_decimal(v) for v in values), Decimal(0))
    return round2(total)


def percent_of(amount: Number, pct: Number) -> float:
    """round2(amount * pct / 100), computed in decimal."""
    return round2(_to_decimal(amount) * _to_decimal(pct) / _HUNDRED)


def exact_item_margin(sale_price: Number, purchased_price: Number, quantity: Number, discount_part: Number = 0) -> Decimal:
    """(sale - cost) * quantity - attributed order discount, unrounded."""
    return (
        (_to_decimal(sale_price) - _to_decimal(purchased_price)) * _to_decimal(quantity)
        - _to_decimal(discount_part)
    )


def decimal_sum(values: Iterable[Number]) -> Decimal:
    return sum((_to_decimal(v) for v in values), Decimal(0))


def sum_exact(values: Iterable[Number]) -> float:
    """Sum at full precision, rounding once at the end."""
    return round2(decimal_sum(values))


def order_discount(total_item_value: Number, grand_total: Number) -> Decimal:
    """
    Order-level discount implied by grand_total.

    grand_total already includes the order discount, so the discount is
    whatever the items are worth above it; never negative.
    """
    return max(_to_decimal(total_item_value) - _to_decimal(grand_total), Decimal(0))


def discount_share(total_item_value: Number, grand_total: Number, item_value: Number) -> Decimal:
    """Unrounded share of the order discount attributed to one item by its value."""
    total = _to_decimal(total_item_value)
    if total <= 0:
        return Decimal(0)
    return order_discount(total, grand_total) * _to_decimal(item_value) / total


def bonus_for_tier(margin: float, tier: TierConfig) -> float:
    """Bonus for one tier; zero unless margin is strictly above the threshold."""
    if margin > tier.threshold:
        return percent_of(margin, tier.bonus_pct)
    return 0.0


def rate_for_tier(margin: float, tier: TierConfig) -> float:
    """Base rate for one tier; no threshold."""
    return percent_of(margin, tier.rate_pct)


def bonuses_for_all_tiers(margin: float, tiers: Iterable[TierConfig]) -> Tuple[float, ...]:
    """Bonus at every tier, all from the same margin."""
    return tuple(bonus_for_tier(margin, tier) for tier in tiers)


def rates_for_all_tiers(margin: float, tiers: Iterable[TierConfig]) -> Tuple[float, ...]:
    """Rate at every tier, all from the same margin."""
    return tuple(rate_for_tier(margin, tier) for tier in tiers)


def add_amounts(left: Iterable[float], right: Iterable[float]) -> Tuple[float, ...]:
    """Element-wise cent-rounded sum of two per-tier tuples."""
    return tuple(add2(a, b) for a, b in zip(left, right))

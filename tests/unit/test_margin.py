"""
Tests for upsales.margin module.
"""
from decimal import Decimal

import pytest

from upsales.config import DEFAULT_TIERS
from upsales.margin import (
    add2,
    add_amounts,
    bonus_for_tier,
    bonuses_for_all_tiers,
    discount_share,
    exact_item_margin,
    order_discount,
    percent_of,
    rate_for_tier,
    rates_for_all_tiers,
    round2,
    sum_exact,
)
L1, L2, L3 = DEFAULT_TIERS


class TestRounding:
    """Tests for round2 and add2."""

    @pytest.mark.parametrize("value,expected", [
        (2.675, 2.68),
        (1.005, 1.01),
        (96.2555, 96.26),
        (-1.005, -1.01),
        (0, 0.0),
        (None, 0.0),
    ])
    def test_round_half_up(self, value, expected):
        assert round2(value) == expected

    def test_add2_has_no_float_noise(self):
        assert add2(0.1, 0.2) == 0.3
        assert add2() == 0.0

    def test_percent_of(self):
        """175.01 * 55% is 96.2555, rounded up to 96.26."""
        assert percent_of(175.01, 55) == 96.26


class TestItemMargin:
    """Tests for per-item margin and discount proration."""

    def test_plain_margin(self):
        assert exact_item_margin(200, 120, 1) == 80.0

    def test_quantity(self):
        assert exact_item_margin(150, 40, 2) == 220.0

    def test_discount_part_subtracted(self):
        assert exact_item_margin(100, 60, 1, 10) == 30.0

    def test_order_discount(self):
        assert order_discount(150, 135) == 15
        assert order_discount(150, 200) == 0.0

    def test_order_discount_without_float_noise(self):
        assert order_discount(20, 18.99) == Decimal("1.01")

    def test_share_by_value(self):
        assert discount_share(150, 135, 100) == 10
        assert discount_share(150, 135, 50) == 5

    def test_share_zero_total(self):
        assert discount_share(0, 0, 0) == 0

    def test_share_not_rounded(self):
        """Half of a 1.01 discount stays 0.505 until the order is summed."""
        assert discount_share(20, 18.99, 10) == Decimal("0.505")

    def test_uneven_split_sums_to_order_margin(self):
        """Each item margin shows as 9.50, yet the order margin is 18.99."""
        share = discount_share(20, 18.99, 10)
        margins = [exact_item_margin(10, 0, 1, share), exact_item_margin(10, 0, 1, share)]
        assert [round2(m) for m in margins] == [9.5, 9.5]
        assert sum_exact(margins) == 18.99

    def test_no_discount_when_grand_total_higher(self):
        """A grand total above the item value (e.g. shipping) is not a discount."""
        assert discount_share(150, 200, 100) == 0


class TestTierFormulas:
    """Tests for bonus and rate formulas."""

    def test_rates(self):
        assert rates_for_all_tiers(80, DEFAULT_TIERS) == (2.4, 3.2, 4.0)

    def test_rate_has_no_threshold(self):
        assert rate_for_tier(1, L1) == 0.03

    def test_bonus_below_threshold(self):
        assert bonuses_for_all_tiers(45, DEFAULT_TIERS) == (0.0, 0.0, 0.0)

    def test_bonus_at_threshold_is_zero(self):
        """Threshold comparison is strict."""
        assert bonus_for_tier(150, L1) == 0.0
        assert bonus_for_tier(175, L2) == 0.0
        assert bonus_for_tier(200, L3) == 0.0

    def test_bonus_just_above_threshold(self):
        assert bonus_for_tier(175.01, L2) == 96.26
        assert bonus_for_tier(150.01, L1) > 0
        assert bonus_for_tier(200.01, L3) > 0

    def test_bonus_between_thresholds(self):
        assert bonuses_for_all_tiers(180, DEFAULT_TIERS) == (90.0, 99.0, 0.0)

    @pytest.mark.parametrize("margin", [200.01, 420, 1000.55, 25000])
    def test_bonus_non_decreasing_above_all_thresholds(self, margin):
        bonuses = bonuses_for_all_tiers(margin, DEFAULT_TIERS)
        assert bonuses[0] <= bonuses[1] <= bonuses[2]

    @pytest.mark.parametrize("margin", [1, 10, 80, 333.34, 1000.55])
    def test_rate_strictly_increasing(self, margin):
        rates = rates_for_all_tiers(margin, DEFAULT_TIERS)
        assert rates[0] < rates[1] < rates[2]

    def test_add_amounts(self):
        assert add_amounts((1.0, 2.0, 0.1), (0.5, 0.25, 0.2)) == (1.5, 2.25, 0.3)

"""
Tests for tiered volume pricing (coop_kernel.domain.pricing).

Covers:
- Tier selection for quantities below, at and above each minimum
- Equal-minimum ties resolve to the lowest price
- Accepted schedule shapes and malformed schedules
- The ascending tier ladder
- Properties: the resolved price never exceeds the base price when every
  tier is a discount, and is monotone non-increasing in quantity
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from coop_kernel.domain.pricing import (
    PriceTier,
    describe_tiers,
    parse_tier_schedule,
    resolve_unit_price,
)
from coop_kernel.exceptions import InvalidTierScheduleError, ValidationError

SCHEDULE = {"10": "90.00", "50": "80.00", "100": "70.00"}


class TestTierSelection:

    @pytest.mark.parametrize(
        "quantity, expected",
        [
            (5, Decimal("100.00")),
            (9, Decimal("100.00")),
            (10, Decimal("90.00")),
            (49, Decimal("90.00")),
            (50, Decimal("80.00")),
            (60, Decimal("80.00")),
            (100, Decimal("70.00")),
            (150, Decimal("70.00")),
        ],
    )
    def test_quantity_selects_highest_qualifying_tier(self, quantity, expected):
        result = resolve_unit_price(Decimal("100.00"), SCHEDULE, quantity)
        assert result.unit_price == expected

    def test_no_tier_means_base_price_and_no_saving(self):
        result = resolve_unit_price(Decimal("100.00"), SCHEDULE, 5)
        assert result.applied_tier is None
        assert result.is_discounted is False
        assert result.savings_per_unit == Decimal("0.00")

    def test_applied_tier_and_saving_reported(self):
        result = resolve_unit_price(Decimal("100.00"), SCHEDULE, 60)
        assert result.applied_tier == PriceTier(50, Decimal("80.00"))
        assert result.savings_per_unit == Decimal("20.00")
        assert result.is_discounted is True

    def test_empty_and_missing_schedules_use_base_price(self):
        assert resolve_unit_price(Decimal("12.50"), {}, 1000).unit_price == Decimal("12.50")
        assert resolve_unit_price(Decimal("12.50"), None, 1000).unit_price == Decimal("12.50")

    def test_equal_minimums_resolve_to_lowest_price(self):
        # "10" and "010" are the same minimum once parsed
        schedule = {"10": "95.00", "010": "85.00"}
        result = resolve_unit_price(Decimal("100.00"), schedule, 10)
        assert result.unit_price == Decimal("85.00")

    def test_tier_above_base_price_gives_negative_saving(self):
        result = resolve_unit_price(Decimal("100.00"), {"10": "110.00"}, 20)
        assert result.unit_price == Decimal("110.00")
        assert result.savings_per_unit == Decimal("-10.00")

    def test_accepts_numeric_keys_and_float_prices(self):
        result = resolve_unit_price(Decimal("100"), {10: 89.9}, 10)
        assert result.unit_price == Decimal("89.90")

    def test_accepts_price_tier_list(self):
        tiers = [PriceTier(20, Decimal("75.00")), PriceTier(5, Decimal("95.00"))]
        assert resolve_unit_price(Decimal("100.00"), tiers, 7).unit_price == Decimal("95.00")
        assert resolve_unit_price(Decimal("100.00"), tiers, 20).unit_price == Decimal("75.00")

    def test_does_not_mutate_schedule(self):
        schedule = dict(SCHEDULE)
        resolve_unit_price(Decimal("100.00"), schedule, 60)
        assert schedule == SCHEDULE


class TestInvalidInput:

    @pytest.mark.parametrize(
        "schedule",
        [
            {"ten": "90.00"},
            {"0": "90.00"},
            {"-5": "90.00"},
            {"2.5": "90.00"},
            {"\u00b2": "90.00"},
            {"\u0661\u0660": "90.00"},
            {"10": "abc"},
            {"10": "0"},
            {"10": "-1.00"},
            {True: "90.00"},
        ],
    )
    def test_malformed_schedule_rejected(self, schedule):
        with pytest.raises(InvalidTierScheduleError) as exc_info:
            resolve_unit_price(Decimal("100.00"), schedule, 10)
        assert exc_info.value.code == "INVALID_TIER_SCHEDULE"
        assert isinstance(exc_info.value, ValidationError)

    @pytest.mark.parametrize("quantity", [0, -1, True, 2.5])
    def test_quantity_must_be_positive_integer(self, quantity):
        with pytest.raises(ValidationError) as exc_info:
            resolve_unit_price(Decimal("100.00"), SCHEDULE, quantity)
        assert exc_info.value.field == "quantity"

    def test_base_price_must_be_positive(self):
        with pytest.raises(ValidationError) as exc_info:
            resolve_unit_price(Decimal("0"), SCHEDULE, 10)
        assert exc_info.value.field == "unit_price"


class TestScheduleParsing:

    def test_sorted_descending_by_minimum(self):
        tiers = parse_tier_schedule({"10": "90", "100": "70", "50": "80"})
        assert [t.min_quantity for t in tiers] == [100, 50, 10]

    def test_ladder_is_ascending_with_savings(self):
        ladder = describe_tiers(Decimal("100.00"), SCHEDULE)
        assert [step.min_quantity for step in ladder] == [10, 50, 100]
        assert [step.unit_price for step in ladder] == [
            Decimal("90.00"), Decimal("80.00"), Decimal("70.00"),
        ]
        assert ladder[0].savings_per_unit == Decimal("10.00")
        assert ladder[2].savings_percent == Decimal("30.00")

    def test_ladder_keeps_cheapest_duplicate(self):
        ladder = describe_tiers(Decimal("100.00"), {"10": "95.00", "010": "85.00"})
        assert len(ladder) == 1
        assert ladder[0].unit_price == Decimal("85.00")


discount_schedules = st.dictionaries(
    keys=st.integers(min_value=1, max_value=1000),
    values=st.decimals(min_value=Decimal("0.01"), max_value=Decimal("100.00"), places=2),
    max_size=6,
)


class TestPricingProperties:

    @given(schedule=discount_schedules, quantity=st.integers(min_value=1, max_value=2000))
    @settings(max_examples=200)
    def test_price_never_above_base_when_tiers_are_discounts(self, schedule, quantity):
        result = resolve_unit_price(Decimal("100.00"), schedule, quantity)
        assert result.unit_price <= Decimal("100.00")
        assert result.savings_per_unit == Decimal("100.00") - result.unit_price

    @given(
        schedule=discount_schedules,
        quantity=st.integers(min_value=1, max_value=2000),
        extra=st.integers(min_value=0, max_value=500),
    )
    @settings(max_examples=200)
    def test_more_quantity_never_costs_more_with_decreasing_tiers(self, schedule, quantity, extra):
        # Make prices non-increasing in min_quantity, as real ladders are
        ordered = sorted(schedule.items())
        monotone = {}
        floor = Decimal("100.00")
        for min_qty, price in ordered:
            floor = min(floor, price)
            monotone[min_qty] = floor

        small = resolve_unit_price(Decimal("100.00"), monotone, quantity)
        large = resolve_unit_price(Decimal("100.00"), monotone, quantity + extra)
        assert large.unit_price <= small.unit_price

    @given(schedule=discount_schedules, quantity=st.integers(min_value=1, max_value=2000))
    def test_applied_tier_is_the_largest_qualifying_minimum(self, schedule, quantity):
        result = resolve_unit_price(Decimal("100.00"), schedule, quantity)
        qualifying = [m for m in schedule if m <= quantity]
        if not qualifying:
            assert result.applied_tier is None
        else:
            assert result.applied_tier.min_quantity == max(qualifying)

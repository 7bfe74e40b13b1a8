"""
Tests for the tariff pricing algorithm (pure, no database).
"""

from datetime import date
from decimal import Decimal

import pytest

from terminal_backend.app.core.exceptions import InvalidArgumentError, InvalidStateError
from terminal_backend.app.domain.tariffs.pricing import (
    apply_discount_policy,
    calculate_tariff_price,
    price_tiers,
)
from terminal_backend.app.domain.tariffs.structures import DiscountPolicy, RateTier
from terminal_backend.app.models.tariff_enums import PricingModel, TariffStatus

TODAY = date(2024, 6, 15)

TEN_PERCENT_STACKABLE = {
    "volume_discounts": [
        {
            "discount_id": "VD-1",
            "discount_name": "Volume 5+",
            "threshold_quantity": "5",
            "discount_type": "percentage",
            "discount_value": "10",
            "stackable": True,
        }
    ]
}

STANDARD_TIERS = {
    "model": "tiered",
    "tiers": [
        {"tier_name": "first", "min_quantity": "1", "max_quantity": "10", "price_per_unit": "5"},
        {"tier_name": "rest", "min_quantity": "11", "price_per_unit": "3"},
    ],
}


def test_variable_price_with_stackable_discount(make_tariff):
    tariff = make_tariff(discount_policy=TEN_PERCENT_STACKABLE)

    result = calculate_tariff_price(tariff, 5, today=TODAY)

    assert result.base_amount == Decimal("500.00")
    assert result.discount_amount == Decimal("50.00")
    assert result.tax_amount == Decimal("0")
    assert result.total_amount == Decimal("450.00")
    assert [d.discount_id for d in result.applied_discounts] == ["VD-1"]
    assert result.tariff_code == "TR-ST-2024-001"


def test_tax_applies_to_discounted_amount(make_tariff):
    tariff = make_tariff(
        discount_policy=TEN_PERCENT_STACKABLE,
        tax_information={"taxable": True, "tax_rate": "10", "tax_jurisdiction": "PT"},
    )

    result = calculate_tariff_price(tariff, 5, today=TODAY)

    assert result.tax_amount == Decimal("45.00")
    assert result.total_amount == Decimal("495.00")


def test_non_taxable_tariff_has_no_tax(make_tariff):
    tariff = make_tariff(tax_information={"taxable": False, "tax_rate": "20"})

    result = calculate_tariff_price(tariff, 2, today=TODAY)

    assert result.tax_amount == Decimal("0")
    assert result.total_amount == Decimal("200.00")


def test_tax_rounds_half_up_to_cents(make_tariff):
    tariff = make_tariff(
        base_price=Decimal("1.11"),
        tax_information={"taxable": True, "tax_rate": "7.5"},
    )

    result = calculate_tariff_price(tariff, 3, today=TODAY)

    # 3.33 * 7.5% = 0.24975
    assert result.base_amount == Decimal("3.33")
    assert result.tax_amount == Decimal("0.25")
    assert result.total_amount == Decimal("3.58")


def test_fixed_price_ignores_quantity(make_tariff):
    tariff = make_tariff(pricing_model=PricingModel.FIXED, base_price=Decimal("75.00"))

    assert calculate_tariff_price(tariff, 1, today=TODAY).base_amount == Decimal("75.00")
    assert calculate_tariff_price(tariff, 40, today=TODAY).base_amount == Decimal("75.00")


def test_tiered_price_walks_tiers(make_tariff):
    tariff = make_tariff(pricing_model=PricingModel.TIERED, pricing_structure=STANDARD_TIERS)

    result = calculate_tariff_price(tariff, 15, today=TODAY)

    assert result.base_amount == Decimal("65.00")
    tiers = result.calculation.tiers
    assert [(t.tier_name, t.quantity) for t in tiers] == [("first", Decimal("10")), ("rest", Decimal("5"))]


@pytest.mark.parametrize("quantity", [1, 7, 10, 11, 250])
def test_tier_consumption_covers_quantity_within_capacity(quantity):
    tiers = [RateTier(**t) for t in STANDARD_TIERS["tiers"]]

    _, charges = price_tiers(tiers, Decimal(quantity))

    assert sum(c.quantity for c in charges) == quantity
    for charge, tier in zip(charges, sorted(tiers, key=lambda t: t.min_quantity)):
        assert tier.capacity is None or charge.quantity <= tier.capacity


def test_tiers_are_sorted_and_flat_fee_charged_once_per_touched_tier():
    tiers = [
        RateTier(tier_name="bulk", min_quantity=Decimal("6"), price_per_unit=Decimal("1"), flat_fee=Decimal("20")),
        RateTier(tier_name="base", min_quantity=Decimal("1"), max_quantity=Decimal("5"),
                 price_per_unit=Decimal("2"), flat_fee=Decimal("10")),
    ]

    total, charges = price_tiers(tiers, Decimal("3"))
    assert total == Decimal("16")
    assert [c.tier_name for c in charges] == ["base"]

    total, charges = price_tiers(tiers, Decimal("8"))
    # base: 5 * 2 + 10, bulk: 3 * 1 + 20
    assert total == Decimal("43")
    assert [c.tier_name for c in charges] == ["base", "bulk"]


def test_tiers_that_cannot_cover_quantity_are_rejected():
    tiers = [RateTier(tier_name="only", min_quantity=Decimal("1"), max_quantity=Decimal("10"),
                      price_per_unit=Decimal("5"))]

    with pytest.raises(InvalidArgumentError):
        price_tiers(tiers, Decimal("11"))


def test_volume_based_applies_only_first_matching_band(make_tariff):
    tariff = make_tariff(
        pricing_model=PricingModel.VOLUME_BASED,
        pricing_structure={
            "model": "volume_based",
            "volume_bands": [
                {"discount_name": "10+", "min_volume": "10", "max_volume": "49",
                 "discount_type": "percentage", "discount_value": "10"},
                {"discount_name": "20+", "min_volume": "20",
                 "discount_type": "fixed_amount", "discount_value": "50"},
            ],
        },
    )

    result = calculate_tariff_price(tariff, 25, today=TODAY)

    assert result.base_amount == Decimal("2250.00")
    assert result.calculation.volume_band == "10+"


def test_volume_based_fixed_band_subtracts(make_tariff):
    tariff = make_tariff(
        pricing_model=PricingModel.VOLUME_BASED,
        pricing_structure={
            "model": "volume_based",
            "volume_bands": [
                {"discount_name": "big", "min_volume": "50", "discount_type": "fixed_amount", "discount_value": "500"},
            ],
        },
    )

    assert calculate_tariff_price(tariff, 60, today=TODAY).base_amount == Decimal("5500.00")
    assert calculate_tariff_price(tariff, 10, today=TODAY).base_amount == Decimal("1000.00")


def test_time_based_uses_slot_multiplier(make_tariff):
    tariff = make_tariff(
        pricing_model=PricingModel.TIME_BASED,
        pricing_structure={
            "model": "time_based",
            "time_slots": [
                {"slot_name": "night", "start_time": "22:00", "end_time": "06:00", "price_multiplier": "1.5"},
            ],
        },
    )

    night = calculate_tariff_price(tariff, 2, time_slot="night", today=TODAY)
    unknown = calculate_tariff_price(tariff, 2, time_slot="weekend", today=TODAY)

    assert night.base_amount == Decimal("300.00")
    assert night.calculation.price_multiplier == Decimal("1.5")
    assert unknown.base_amount == Decimal("200.00")


def test_weight_based_requires_weight(make_tariff):
    tariff = make_tariff(pricing_model=PricingModel.WEIGHT_BASED)

    with pytest.raises(InvalidArgumentError):
        calculate_tariff_price(tariff, 1, today=TODAY)

    result = calculate_tariff_price(tariff, 1, weight="2.5", today=TODAY)
    assert result.base_amount == Decimal("250.00")


def test_minimum_charge_clamp_is_recorded(make_tariff):
    tariff = make_tariff(base_price=Decimal("10.00"), minimum_charge=Decimal("50.00"))

    result = calculate_tariff_price(tariff, 1, today=TODAY)

    assert result.base_amount == Decimal("50.00")
    adjustment = result.calculation.adjustments[0]
    assert adjustment.type == "minimum_charge"
    assert adjustment.amount == Decimal("40.00")


def test_maximum_charge_clamp_is_recorded(make_tariff):
    tariff = make_tariff(maximum_charge=Decimal("250.00"))

    result = calculate_tariff_price(tariff, 5, today=TODAY)

    assert result.base_amount == Decimal("250.00")
    assert result.calculation.adjustments[0].type == "maximum_charge"
    assert result.calculation.adjustments[0].amount == Decimal("-250.00")


def test_pricing_is_deterministic(make_tariff):
    tariff = make_tariff(minimum_charge=Decimal("50.00"), maximum_charge=Decimal("250.00"))

    first = calculate_tariff_price(tariff, 3, today=TODAY)
    second = calculate_tariff_price(tariff, 3, today=TODAY)

    assert first == second


def test_discounts_stop_after_first_matching_non_stackable_rule():
    policy = DiscountPolicy.model_validate({
        "volume_discounts": [
            {"discount_id": "A", "threshold_quantity": "1", "discount_type": "percentage",
             "discount_value": "5", "stackable": True},
            {"discount_id": "SKIP", "threshold_quantity": "100", "discount_type": "percentage",
             "discount_value": "50", "stackable": False},
            {"discount_id": "B", "threshold_quantity": "2", "discount_type": "fixed_amount",
             "discount_value": "10", "stackable": False},
            {"discount_id": "C", "threshold_quantity": "3", "discount_type": "percentage",
             "discount_value": "20", "stackable": True},
        ]
    })

    total, applied = apply_discount_policy(policy, Decimal("200.00"), Decimal("5"))

    assert [d.discount_id for d in applied] == ["A", "B"]
    assert total == Decimal("20.00")


def test_discount_is_capped_by_max_discount_amount():
    policy = DiscountPolicy.model_validate({
        "volume_discounts": [
            {"discount_id": "CAP", "threshold_quantity": "1", "discount_type": "percentage",
             "discount_value": "50", "max_discount_amount": "30", "stackable": True},
        ]
    })

    total, applied = apply_discount_policy(policy, Decimal("200.00"), Decimal("2"))

    assert total == Decimal("30.00")
    assert applied[0].applied_amount == Decimal("30.00")


def test_discount_below_threshold_does_not_apply(make_tariff):
    tariff = make_tariff(discount_policy=TEN_PERCENT_STACKABLE)

    result = calculate_tariff_price(tariff, 4, today=TODAY)

    assert result.discount_amount == Decimal("0")
    assert result.applied_discounts == []


def test_discount_never_takes_total_below_minimum_charge(make_tariff):
    tariff = make_tariff(
        base_price=Decimal("10.00"),
        minimum_charge=Decimal("20.00"),
        discount_policy={
            "volume_discounts": [
                {"discount_id": "BIG", "threshold_quantity": "1", "discount_type": "fixed_amount",
                 "discount_value": "15", "stackable": True},
            ]
        },
    )

    result = calculate_tariff_price(tariff, 3, today=TODAY)

    assert result.base_amount == Decimal("30.00")
    assert result.discount_amount == Decimal("10.00")
    assert result.total_amount == Decimal("20.00")
    assert result.calculation.adjustments[-1].type == "discount_limit"


@pytest.mark.parametrize("status", [TariffStatus.DRAFT, TariffStatus.INACTIVE, TariffStatus.EXPIRED])
def test_pricing_requires_active_status(make_tariff, status):
    tariff = make_tariff(status=status)

    with pytest.raises(InvalidStateError) as exc_info:
        calculate_tariff_price(tariff, 1, today=TODAY)

    assert exc_info.value.details["tariff_code"] == "TR-ST-2024-001"


def test_pricing_requires_date_inside_validity_window(make_tariff):
    tariff = make_tariff(effective_date=date(2024, 1, 1), expiry_date=date(2024, 3, 31))

    with pytest.raises(InvalidStateError):
        calculate_tariff_price(tariff, 1, today=TODAY)

    # expiry date itself is inclusive
    assert calculate_tariff_price(tariff, 1, today=date(2024, 3, 31)).total_amount == Decimal("100.00")


def test_negative_quantity_is_rejected(make_tariff):
    with pytest.raises(InvalidArgumentError):
        calculate_tariff_price(make_tariff(), -1, today=TODAY)


def test_discount_limit_is_taken_back_from_applied_rules(make_tariff):
    tariff = make_tariff(
        minimum_charge=Decimal("480.00"),
        discount_policy={
            "volume_discounts": [
                {"discount_id": "FIXED", "threshold_quantity": "1", "discount_type": "fixed_amount",
                 "discount_value": "15", "stackable": True},
                {"discount_id": "PCT", "threshold_quantity": "3", "discount_type": "percentage",
                 "discount_value": "10", "stackable": True},
            ]
        },
    )

    result = calculate_tariff_price(tariff, 5, today=TODAY)

    assert result.base_amount == Decimal("500.00")
    assert result.discount_amount == Decimal("20.00")
    assert result.total_amount == Decimal("480.00")
    assert [d.applied_amount for d in result.applied_discounts] == [Decimal("15.00"), Decimal("5.00")]
    assert sum(d.applied_amount for d in result.applied_discounts) == result.discount_amount

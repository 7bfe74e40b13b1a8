"""
Tariff Pricing.

Turns a billable quantity into a cost breakdown for one tariff.

Flow:
1. Check the tariff is active today
2. Subtotal by pricing model (fixed / variable / tiered / volume / time / weight)
3. Clamp to minimum / maximum charge
4. Apply the ordered discount policy (stackable rules accumulate)
5. Tax on the discounted amount

All money is Decimal. Each step's result is rounded to cents (half up)
before the next step consumes it.
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from terminal_backend.app.core.exceptions import InvalidArgumentError, InvalidStateError
from terminal_backend.app.domain.tariffs.structures import DiscountPolicy, RateTier, TaxInformation
from terminal_backend.app.models.tariff import Tariff, utc_today
from terminal_backend.app.models.tariff_enums import DiscountType, PricingModel

CENTS = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_money(value) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


class TierCharge(BaseModel):
    tier_name: str
    quantity: Decimal
    price_per_unit: Decimal
    flat_fee: Decimal = ZERO
    amount: Decimal


class Adjustment(BaseModel):
    type: str
    description: str
    amount: Decimal


class AppliedDiscount(BaseModel):
    discount_id: str
    discount_name: str
    discount_type: DiscountType
    discount_value: Decimal
    stackable: bool
    applied_amount: Decimal


class CalculationDetail(BaseModel):
    pricing_model: PricingModel
    base_price: Decimal
    quantity: Decimal
    weight: Optional[Decimal] = None
    model_subtotal: Decimal = ZERO
    subtotal: Decimal = ZERO
    tiers: List[TierCharge] = Field(default_factory=list)
    volume_band: Optional[str] = None
    time_slot: Optional[str] = None
    price_multiplier: Optional[Decimal] = None
    adjustments: List[Adjustment] = Field(default_factory=list)


class PriceBreakdown(BaseModel):
    tariff_id: str
    tariff_code: str
    currency: str
    base_amount: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    applied_discounts: List[AppliedDiscount] = Field(default_factory=list)
    calculation: CalculationDetail


def price_tiers(tiers: List[RateTier], quantity: Decimal) -> Tuple[Decimal, List[TierCharge]]:
    """
    Walk tiers in ascending min_quantity order, filling each up to its capacity.

    A flat fee is charged once for every tier that absorbs units.
    Raises InvalidArgumentError when the tiers cannot absorb the whole quantity.
    """
    total = ZERO
    remaining = quantity
    charges = []

    for tier in sorted(tiers, key=lambda t: t.min_quantity):
        if remaining <= 0:
            break

        capacity = tier.capacity
        consumed = remaining if capacity is None else min(remaining, capacity)
        flat_fee = tier.flat_fee or ZERO
        amount = consumed * tier.price_per_unit + flat_fee

        charges.append(TierCharge(
            tier_name=tier.tier_name,
            quantity=consumed,
            price_per_unit=tier.price_per_unit,
            flat_fee=flat_fee,
            amount=amount
        ))
        total += amount
        remaining -= consumed

    if remaining > 0:
        raise InvalidArgumentError(
            f"Quantity {quantity} exceeds the capacity of the configured rate tiers",
            details={"quantity": str(quantity), "uncovered": str(remaining)}
        )

    return total, charges


def apply_discount_policy(
    policy: Optional[DiscountPolicy],
    subtotal: Decimal,
    quantity: Decimal,
) -> Tuple[Decimal, List[AppliedDiscount]]:
    """
    Evaluate discount rules in order.

    Every rule whose threshold is met contributes; evaluation stops right
    after the first matching rule that is not stackable.
    """
    total = ZERO
    applied = []
    if policy is None:
        return total, applied

    for rule in policy.volume_discounts:
        if quantity < rule.threshold_quantity:
            continue

        if rule.discount_type == DiscountType.PERCENTAGE:
            amount = subtotal * rule.discount_value / HUNDRED
        else:
            amount = rule.discount_value

        if rule.max_discount_amount is not None:
            amount = min(amount, rule.max_discount_amount)

        amount = to_money(amount)
        total += amount
        applied.append(AppliedDiscount(
            discount_id=rule.discount_id,
            discount_name=rule.discount_name,
            discount_type=rule.discount_type,
            discount_value=rule.discount_value,
            stackable=rule.stackable,
            applied_amount=amount
        ))

        if not rule.stackable:
            break

    return total, applied


def _limit_applied_discounts(applied: List[AppliedDiscount], excess: Decimal) -> None:
    # Take the excess back from the last applied rule first
    for discount in reversed(applied):
        if excess <= ZERO:
            break
        cut = min(discount.applied_amount, excess)
        discount.applied_amount -= cut
        excess -= cut


def calculate_tax(tax: Optional[TaxInformation], taxable_amount: Decimal) -> Decimal:
    if tax is None or not tax.taxable or not tax.tax_rate:
        return ZERO
    return to_money(taxable_amount * tax.tax_rate / HUNDRED)


def _model_subtotal(
    tariff: Tariff,
    quantity: Decimal,
    weight: Optional[Decimal],
    time_slot: Optional[str],
    detail: CalculationDetail,
) -> Decimal:
    base_price = Decimal(tariff.base_price)
    model = tariff.pricing_model

    if model == PricingModel.FIXED:
        return base_price

    if model == PricingModel.TIERED:
        subtotal, detail.tiers = price_tiers(tariff.pricing.tiers, quantity)
        return subtotal

    if model == PricingModel.VOLUME_BASED:
        subtotal = base_price * quantity
        # Only the first band containing the quantity applies
        band = next((b for b in tariff.pricing.volume_bands if b.contains(quantity)), None)
        if band is not None:
            detail.volume_band = band.discount_name
            if band.discount_type == DiscountType.PERCENTAGE:
                subtotal *= 1 - band.discount_value / HUNDRED
            else:
                subtotal -= band.discount_value
        return max(subtotal, ZERO)

    if model == PricingModel.TIME_BASED:
        subtotal = base_price * quantity
        slot = tariff.pricing.find_slot(time_slot)
        if slot is not None:
            detail.time_slot = slot.slot_name
            detail.price_multiplier = slot.price_multiplier
            subtotal *= slot.price_multiplier
        return subtotal

    if model == PricingModel.WEIGHT_BASED:
        if weight is None:
            raise InvalidArgumentError(
                "Weight is required for weight-based pricing",
                details={"tariff_code": tariff.tariff_code}
            )
        return base_price * weight

    # VARIABLE, DISTANCE_BASED
    return base_price * quantity


def _apply_charge_limits(tariff: Tariff, subtotal: Decimal, detail: CalculationDetail) -> Decimal:
    if tariff.minimum_charge is not None and subtotal < tariff.minimum_charge:
        minimum = Decimal(tariff.minimum_charge)
        detail.adjustments.append(Adjustment(
            type="minimum_charge",
            description="Minimum charge applied",
            amount=minimum - subtotal
        ))
        subtotal = minimum

    if tariff.maximum_charge is not None and subtotal > tariff.maximum_charge:
        maximum = Decimal(tariff.maximum_charge)
        detail.adjustments.append(Adjustment(
            type="maximum_charge",
            description="Maximum charge applied",
            amount=maximum - subtotal
        ))
        subtotal = maximum

    return subtotal


def calculate_tariff_price(
    tariff: Tariff,
    quantity,
    weight=None,
    time_slot: Optional[str] = None,
    today: Optional[date] = None,
) -> PriceBreakdown:
    """
    Price `quantity` units against `tariff`.

    Args:
        tariff: Tariff to price against (must be active on `today`)
        quantity: Billable quantity in the tariff's unit of measure
        weight: Required for weight-based tariffs
        time_slot: Name of a configured time slot (time-based tariffs)
        today: Reference date for the active check (defaults to UTC today)

    Returns:
        PriceBreakdown with base, discount, tax and total amounts

    Raises:
        InvalidStateError: Tariff is not active today
        InvalidArgumentError: Missing weight, negative input, uncovered tier quantity
    """
    today = today or utc_today()
    if not tariff.is_active_on(today):
        raise InvalidStateError(
            f"Tariff {tariff.tariff_code} is not currently active",
            tariff_code=tariff.tariff_code,
            details={"status": tariff.status.value}
        )

    quantity = Decimal(str(quantity))
    if quantity < 0:
        raise InvalidArgumentError("Quantity must not be negative", details={"quantity": str(quantity)})
    if weight is not None:
        weight = Decimal(str(weight))
        if weight < 0:
            raise InvalidArgumentError("Weight must not be negative", details={"weight": str(weight)})

    detail = CalculationDetail(
        pricing_model=tariff.pricing_model,
        base_price=Decimal(tariff.base_price),
        quantity=quantity,
        weight=weight
    )

    subtotal = to_money(_model_subtotal(tariff, quantity, weight, time_slot, detail))
    detail.model_subtotal = subtotal
    subtotal = _apply_charge_limits(tariff, subtotal, detail)
    detail.subtotal = subtotal

    discount_amount, applied_discounts = apply_discount_policy(tariff.discounts, subtotal, quantity)

    # Discounts never take the charge below the minimum charge (or zero)
    floor = Decimal(tariff.minimum_charge) if tariff.minimum_charge is not None else ZERO
    allowed = max(subtotal - floor, ZERO)
    if discount_amount > allowed:
        detail.adjustments.append(Adjustment(
            type="discount_limit",
            description="Discount limited by minimum charge",
            amount=allowed - discount_amount
        ))
        _limit_applied_discounts(applied_discounts, discount_amount - allowed)
        discount_amount = allowed

    tax_amount = calculate_tax(tariff.tax, subtotal - discount_amount)

    return PriceBreakdown(
        tariff_id=tariff.id,
        tariff_code=tariff.tariff_code,
        currency=tariff.currency,
        base_amount=subtotal,
        discount_amount=discount_amount,
        tax_amount=tax_amount,
        total_amount=subtotal - discount_amount + tax_amount,
        applied_discounts=applied_discounts,
        calculation=detail
    )

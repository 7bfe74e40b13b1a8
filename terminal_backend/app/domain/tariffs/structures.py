"""
Typed tariff configuration.

The pricing structure, discount policy, tax information and applicability
conditions are persisted as JSON columns. These models are the single parser
for those blobs: they validate on the way in (API / engine boundary) and
re-validate on the way out of the database so the pricing algorithm always
works on typed values.

The pricing structure is a tagged union discriminated by `model`:

    tiered        -> TieredPricing (rate tiers)
    time_based    -> TimeBasedPricing (named time slots)
    volume_based  -> VolumeBasedPricing (volume discount bands)
    flat          -> FlatPricing (fixed, variable, weight and distance based)
"""

from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator

from terminal_backend.app.core.exceptions import InvalidArgumentError
from terminal_backend.app.models.tariff_enums import DiscountType, PricingModel, ThresholdPeriod

HH_MM = r"^([01]\d|2[0-3]):[0-5]\d$"


class RateTier(BaseModel):
    tier_name: str = ""
    min_quantity: Decimal = Field(..., ge=0)
    max_quantity: Optional[Decimal] = Field(None, ge=0)
    price_per_unit: Decimal = Field(..., ge=0)
    flat_fee: Optional[Decimal] = Field(None, ge=0)

    @model_validator(mode="after")
    def check_bounds(self):
        if self.max_quantity is not None and self.max_quantity < self.min_quantity:
            raise ValueError("max_quantity must not be below min_quantity")
        return self

    @property
    def capacity(self) -> Optional[Decimal]:
        """Units this tier can absorb; None for an open-ended tier."""
        if self.max_quantity is None:
            return None
        return self.max_quantity - self.min_quantity + 1


class TimeSlot(BaseModel):
    slot_name: str = Field(..., min_length=1)
    start_time: str = Field("00:00", pattern=HH_MM)
    end_time: str = Field("23:59", pattern=HH_MM)
    days: List[str] = Field(default_factory=list)
    price_multiplier: Decimal = Field(..., gt=0)


class VolumeBand(BaseModel):
    discount_name: str = ""
    min_volume: Decimal = Field(..., ge=0)
    max_volume: Optional[Decimal] = Field(None, ge=0)
    discount_type: DiscountType
    discount_value: Decimal = Field(..., ge=0)

    def contains(self, quantity: Decimal) -> bool:
        if quantity < self.min_volume:
            return False
        return self.max_volume is None or quantity <= self.max_volume


class FlatPricing(BaseModel):
    model: Literal["flat"] = "flat"


class TieredPricing(BaseModel):
    model: Literal["tiered"] = "tiered"
    tiers: List[RateTier] = Field(..., min_length=1)


class TimeBasedPricing(BaseModel):
    model: Literal["time_based"] = "time_based"
    time_slots: List[TimeSlot] = Field(default_factory=list)

    def find_slot(self, slot_name: Optional[str]) -> Optional[TimeSlot]:
        if not slot_name:
            return None
        return next((slot for slot in self.time_slots if slot.slot_name == slot_name), None)


class VolumeBasedPricing(BaseModel):
    model: Literal["volume_based"] = "volume_based"
    volume_bands: List[VolumeBand] = Field(default_factory=list)


PricingStructure = Annotated[
    Union[FlatPricing, TieredPricing, TimeBasedPricing, VolumeBasedPricing],
    Field(discriminator="model"),
]

pricing_structure_adapter = TypeAdapter(PricingStructure)

# Which structure variant each pricing model expects
STRUCTURE_KIND_BY_MODEL: Dict[PricingModel, str] = {
    PricingModel.FIXED: "flat",
    PricingModel.VARIABLE: "flat",
    PricingModel.TIERED: "tiered",
    PricingModel.VOLUME_BASED: "volume_based",
    PricingModel.TIME_BASED: "time_based",
    PricingModel.WEIGHT_BASED: "flat",
    PricingModel.DISTANCE_BASED: "flat",
}


class VolumeDiscountRule(BaseModel):
    discount_id: str = ""
    discount_name: str = ""
    threshold_quantity: Decimal = Field(..., ge=0)
    threshold_period: ThresholdPeriod = ThresholdPeriod.MONTHLY
    discount_type: DiscountType
    discount_value: Decimal = Field(..., ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0)
    stackable: bool = False


class DiscountPolicy(BaseModel):
    """Ordered discount rules; evaluated in list order."""
    volume_discounts: List[VolumeDiscountRule] = Field(default_factory=list)


class TaxInformation(BaseModel):
    taxable: bool = False
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    tax_type: Optional[str] = None
    tax_jurisdiction: Optional[str] = None


class WeightLimits(BaseModel):
    min_weight: Optional[Decimal] = Field(None, ge=0)
    max_weight: Optional[Decimal] = Field(None, ge=0)
    weight_unit: Literal["kg", "ton"] = "kg"


class ServiceWindow(BaseModel):
    start: str = Field(..., pattern=HH_MM)
    end: str = Field(..., pattern=HH_MM)


class ServiceHours(BaseModel):
    weekdays: ServiceWindow
    weekends: Optional[ServiceWindow] = None
    holidays: bool = False


class ApplicableConditions(BaseModel):
    container_types: Optional[List[str]] = None
    container_sizes: Optional[List[str]] = None
    cargo_types: Optional[List[str]] = None
    service_hours: Optional[ServiceHours] = None
    weight_limits: Optional[WeightLimits] = None
    special_conditions: Optional[List[str]] = None

    def allows_container_type(self, container_type: str) -> bool:
        return self.container_types is None or container_type in self.container_types


def default_structure(pricing_model: PricingModel):
    """Structure used when a tariff is created without one."""
    kind = STRUCTURE_KIND_BY_MODEL[pricing_model]
    if kind == "tiered":
        raise InvalidArgumentError(
            "Tiered pricing requires at least one rate tier",
            details={"pricing_model": pricing_model.value}
        )
    return pricing_structure_adapter.validate_python({"model": kind})


def check_structure_matches(pricing_model: PricingModel, structure) -> None:
    expected = STRUCTURE_KIND_BY_MODEL[pricing_model]
    if structure.model != expected:
        raise InvalidArgumentError(
            f"Pricing model '{pricing_model.value}' requires a '{expected}' pricing structure, "
            f"got '{structure.model}'",
            details={"pricing_model": pricing_model.value, "structure": structure.model}
        )


def dump_config(value: Optional[BaseModel]) -> Optional[Dict[str, Any]]:
    """Serialize a config model for a JSON column (decimals become strings)."""
    if value is None:
        return None
    return value.model_dump(mode="json", exclude_none=True)


def load_pricing_structure(pricing_model: PricingModel, raw: Optional[Dict[str, Any]]):
    if not raw:
        return default_structure(pricing_model)
    try:
        return pricing_structure_adapter.validate_python(raw)
    except ValidationError as exc:
        raise InvalidArgumentError(
            "Stored pricing structure is malformed",
            details={"errors": exc.errors(include_context=False, include_url=False)}
        ) from exc


def load_config(model_cls, raw: Optional[Dict[str, Any]]):
    """Parse an optional JSON config blob into `model_cls` (None when absent)."""
    if raw is None:
        return None
    try:
        return model_cls.model_validate(raw)
    except ValidationError as exc:
        raise InvalidArgumentError(
            f"Stored {model_cls.__name__} is malformed",
            details={"errors": exc.errors(include_context=False, include_url=False)}
        ) from exc

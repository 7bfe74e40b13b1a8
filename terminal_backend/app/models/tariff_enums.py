"""
Tariff enumerations.
"""

import enum


class TariffType(str, enum.Enum):
    """Service category a tariff prices."""
    GATE_IN = "gate_in"
    GATE_OUT = "gate_out"
    STORAGE = "storage"
    HANDLING = "handling"
    LIFT_ON_LIFT_OFF = "lift_on_lift_off"
    WEIGHING = "weighing"
    INSPECTION = "inspection"
    REPAIR = "repair"
    CLEANING = "cleaning"
    FUMIGATION = "fumigation"
    REEFER_MONITORING = "reefer_monitoring"
    DEMURRAGE = "demurrage"
    DETENTION = "detention"
    DOCUMENTATION = "documentation"
    SPECIAL_HANDLING = "special_handling"


class TariffStatus(str, enum.Enum):
    """Tariff lifecycle status enumeration."""
    DRAFT = "draft"  # Only creation state
    ACTIVE = "active"  # Priced against and selectable
    INACTIVE = "inactive"  # Switched off by an operator, may be re-activated
    EXPIRED = "expired"  # Validity window has lapsed
    SUPERSEDED = "superseded"  # Replaced by a newer tariff (terminal)


class PricingModel(str, enum.Enum):
    """Algorithm family that turns a quantity into a base amount."""
    FIXED = "fixed"
    VARIABLE = "variable"
    TIERED = "tiered"
    VOLUME_BASED = "volume_based"
    TIME_BASED = "time_based"
    WEIGHT_BASED = "weight_based"
    DISTANCE_BASED = "distance_based"


class UnitOfMeasure(str, enum.Enum):
    CONTAINER = "container"
    TEU = "teu"
    TON = "ton"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    MOVE = "move"
    DOCUMENT = "document"
    INSPECTION = "inspection"
    KILOMETER = "kilometer"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class ThresholdPeriod(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

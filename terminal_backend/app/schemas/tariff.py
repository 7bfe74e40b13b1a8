"""
Tariff Schemas.

Request / response models for the tariff engine and its HTTP surface.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from terminal_backend.app.domain.tariffs.structures import (
    ApplicableConditions,
    DiscountPolicy,
    PricingStructure,
    TaxInformation,
)
from terminal_backend.app.models.tariff_enums import PricingModel, TariffStatus, TariffType, UnitOfMeasure


class TariffCreate(BaseModel):
    """Schema for creating a tariff (always created as draft)."""
    tariff_name: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=5000)
    tariff_type: TariffType
    pricing_model: PricingModel
    unit_of_measure: UnitOfMeasure
    client_id: Optional[str] = Field(None, min_length=1, max_length=100)
    client_name: Optional[str] = Field(None, max_length=200)
    effective_date: date
    expiry_date: Optional[date] = None
    base_price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    minimum_charge: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    maximum_charge: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    pricing_structure: Optional[PricingStructure] = None
    applicable_conditions: Optional[ApplicableConditions] = None
    discount_policy: Optional[DiscountPolicy] = None
    tax_information: Optional[TaxInformation] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class TariffUpdate(BaseModel):
    """
    Schema for patching a tariff.

    Only fields present in the request are applied. `expiry_date: null`
    clears the expiry (open-ended tariff).
    """
    tariff_name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    tariff_type: Optional[TariffType] = None
    status: Optional[TariffStatus] = None
    pricing_model: Optional[PricingModel] = None
    unit_of_measure: Optional[UnitOfMeasure] = None
    client_id: Optional[str] = Field(None, min_length=1, max_length=100)
    client_name: Optional[str] = Field(None, max_length=200)
    effective_date: Optional[date] = None
    expiry_date: Optional[date] = None
    base_price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    minimum_charge: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    maximum_charge: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    pricing_structure: Optional[PricingStructure] = None
    applicable_conditions: Optional[ApplicableConditions] = None
    discount_policy: Optional[DiscountPolicy] = None
    tax_information: Optional[TaxInformation] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    change_reason: Optional[str] = Field(None, max_length=500)


class TariffDeactivate(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class PriceRequest(BaseModel):
    """Schema for pricing a quantity against a tariff."""
    quantity: Decimal = Field(..., ge=0)
    container_type: Optional[str] = None
    weight: Optional[Decimal] = Field(None, ge=0)
    service_date: Optional[date] = None
    time_slot: Optional[str] = None


class TariffSearchFilters(BaseModel):
    """Composable search predicates; unset fields do not filter."""
    tariff_type: Optional[TariffType] = None
    status: Optional[TariffStatus] = None
    pricing_model: Optional[PricingModel] = None
    client_id: Optional[str] = None
    effective_date_after: Optional[date] = None
    effective_date_before: Optional[date] = None
    expiry_date_after: Optional[date] = None
    expiry_date_before: Optional[date] = None
    base_price_min: Optional[Decimal] = None
    base_price_max: Optional[Decimal] = None
    currency: Optional[str] = None
    unit_of_measure: Optional[UnitOfMeasure] = None
    is_active: Optional[bool] = None
    is_expiring: Optional[bool] = None
    expiring_within_days: Optional[int] = Field(None, ge=0)
    search_text: Optional[str] = None


class TariffResponse(BaseModel):
    """Schema for displaying a tariff."""
    id: str
    tariff_code: str
    tariff_name: str
    description: str
    tariff_type: TariffType
    status: TariffStatus
    pricing_model: PricingModel
    unit_of_measure: UnitOfMeasure
    client_id: Optional[str]
    client_name: Optional[str]
    effective_date: date
    expiry_date: Optional[date]
    base_price: Decimal
    currency: str
    minimum_charge: Optional[Decimal]
    maximum_charge: Optional[Decimal]
    pricing_structure: Dict[str, Any]
    applicable_conditions: Optional[Dict[str, Any]]
    discount_policy: Optional[Dict[str, Any]]
    tax_information: Optional[Dict[str, Any]]
    version_history: List[Dict[str, Any]]
    notes: Optional[str]
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="meta_data")
    is_active_now: bool
    days_until_expiry: int
    is_client_specific: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
        populate_by_name = True


class StatusCount(BaseModel):
    status: TariffStatus
    count: int


class TypeBreakdown(BaseModel):
    tariff_type: TariffType
    count: int
    avg_price: Optional[Decimal]


class TariffStatisticsTotals(BaseModel):
    total_tariffs: int
    avg_base_price: Decimal
    expiring_count: int


class TariffStatisticsResponse(BaseModel):
    totals: TariffStatisticsTotals
    by_status: List[StatusCount]
    by_type: List[TypeBreakdown]


class AuditLogResponse(BaseModel):
    id: int
    actor: str
    action: str
    tariff_id: Optional[str]
    tariff_code: Optional[str]
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="meta_data")
    timestamp: datetime

    class Config:
        from_attributes = True
        populate_by_name = True

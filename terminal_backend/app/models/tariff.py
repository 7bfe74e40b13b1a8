"""
Tariff database model.

A tariff is a versioned pricing rule for one service type, optionally scoped
to a client, valid over a date window.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, String, Text, Date, DateTime, Numeric, JSON, Enum, Index, Integer

from terminal_backend.app.db.session import Base
from terminal_backend.app.domain.tariffs.structures import (
    ApplicableConditions,
    DiscountPolicy,
    TaxInformation,
    load_config,
    load_pricing_structure,
)
from terminal_backend.app.models.tariff_enums import PricingModel, TariffStatus, TariffType, UnitOfMeasure


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utc_now().date()


class Tariff(Base):
    """
    Tariff model.

    Lifecycle: DRAFT -> ACTIVE -> INACTIVE / EXPIRED -> SUPERSEDED.
    At most one ACTIVE tariff may cover a given (type, client scope, date).
    JSON columns hold the typed configuration from `domain.tariffs.structures`.
    """
    __tablename__ = "tariffs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tariff_code = Column(String(50), nullable=False, unique=True, index=True)
    tariff_name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")

    # Classification
    tariff_type = Column(Enum(TariffType), nullable=False, index=True)
    status = Column(Enum(TariffStatus), nullable=False, default=TariffStatus.DRAFT, index=True)
    pricing_model = Column(Enum(PricingModel), nullable=False)
    unit_of_measure = Column(Enum(UnitOfMeasure), nullable=False)

    # Scope (None = general tariff)
    client_id = Column(String(100), nullable=True, index=True)
    client_name = Column(String(200), nullable=True)

    # Validity
    effective_date = Column(Date, nullable=False, index=True)
    expiry_date = Column(Date, nullable=True, index=True)

    # Financials
    base_price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    minimum_charge = Column(Numeric(12, 2), nullable=True)
    maximum_charge = Column(Numeric(12, 2), nullable=True)

    # Configuration
    pricing_structure = Column(JSON, nullable=False)
    applicable_conditions = Column(JSON, nullable=True)
    discount_policy = Column(JSON, nullable=True)
    tax_information = Column(JSON, nullable=True)

    # Audit (append-only)
    version_history = Column(JSON, nullable=False, default=list)

    notes = Column(Text, nullable=True)
    meta_data = Column("metadata", JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    # Optimistic concurrency: stale writers fail with StaleDataError
    row_version = Column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_tariffs_scope", "tariff_type", "client_id", "status"),
    )
    __mapper_args__ = {"version_id_col": row_version}

    # Typed views over the JSON columns

    @property
    def pricing(self):
        return load_pricing_structure(self.pricing_model, self.pricing_structure)

    @property
    def discounts(self) -> Optional[DiscountPolicy]:
        return load_config(DiscountPolicy, self.discount_policy)

    @property
    def tax(self) -> Optional[TaxInformation]:
        return load_config(TaxInformation, self.tax_information)

    @property
    def conditions(self) -> Optional[ApplicableConditions]:
        return load_config(ApplicableConditions, self.applicable_conditions)

    # Computed fields

    def is_active_on(self, on: date) -> bool:
        """Status is ACTIVE and `on` falls inside the validity window."""
        return (
            self.status == TariffStatus.ACTIVE
            and self.effective_date <= on
            and (self.expiry_date is None or self.expiry_date >= on)
        )

    @property
    def is_active_now(self) -> bool:
        return self.is_active_on(utc_today())

    @property
    def is_expired(self) -> bool:
        return self.expiry_date is not None and utc_today() > self.expiry_date

    @property
    def days_until_expiry(self) -> int:
        if self.expiry_date is None:
            return -1
        return (self.expiry_date - utc_today()).days

    @property
    def is_client_specific(self) -> bool:
        return bool(self.client_id)

    @property
    def has_volume_discounts(self) -> bool:
        structure = self.pricing_structure or {}
        policy = self.discount_policy or {}
        return bool(structure.get("volume_bands")) or bool(policy.get("volume_discounts"))

    @property
    def has_tiered_pricing(self) -> bool:
        return self.pricing_model == PricingModel.TIERED and bool((self.pricing_structure or {}).get("tiers"))

    @property
    def has_time_based_pricing(self) -> bool:
        return self.pricing_model == PricingModel.TIME_BASED or bool((self.pricing_structure or {}).get("time_slots"))

    @property
    def effective_price_range(self) -> dict:
        """Cheapest and dearest unit price, bounded by the min/max charge."""
        low = high = Decimal(self.base_price)
        if self.has_tiered_pricing:
            prices = [tier.price_per_unit for tier in self.pricing.tiers]
            low = min(low, *prices)
            high = max(high, *prices)
        if self.minimum_charge is not None and low < self.minimum_charge:
            low = Decimal(self.minimum_charge)
        if self.maximum_charge is not None and high > self.maximum_charge:
            high = Decimal(self.maximum_charge)
        return {"min": low, "max": high}

    def __repr__(self):
        return f"<Tariff(code='{self.tariff_code}', type={self.tariff_type}, status={self.status})>"

"""Pydantic schemas for rate cards, their rules and company assignment."""
from pydantic import BaseModel, Field, field_validator, model_validator

from shiprate.schemas.base import BaseResponseSchema
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal
import uuid

from shiprate.core.enum_utils import normalize_choice, normalize_zone_code
from shiprate.models.rate_card import (
    RateCardStatus, ServiceType, ZonePricingMode, FuelSurchargeBase, ChargeType,
)


def _service_type(v):
    member = normalize_choice(v, ServiceType)
    if member is None:
        raise ValueError(f"Unknown service type '{v}'")
    return member.value


def _zone_code(v):
    code = normalize_zone_code(v)
    if code is None:
        raise ValueError(f"Unknown zone code '{v}'")
    return code


# ============================================
# RULE SCHEMAS
# ============================================

class WeightWindowBase(BaseModel):
    carrier_code: str = Field(..., min_length=1, max_length=50)
    service_type: str = ServiceType.STANDARD.value
    min_weight_kg: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=3)
    max_weight_kg: Decimal = Field(..., gt=0, decimal_places=3)

    @field_validator('carrier_code')
    @classmethod
    def upper_carrier(cls, v):
        return v.strip().upper()

    @field_validator('service_type', mode='before')
    @classmethod
    def check_service_type(cls, v):
        return _service_type(v)

    @model_validator(mode='after')
    def check_window(self):
        if self.min_weight_kg >= self.max_weight_kg:
            raise ValueError('min_weight_kg must be less than max_weight_kg')
        return self


class BaseRateCreate(WeightWindowBase):
    """Base price for a weight bracket."""
    base_price: Decimal = Field(..., ge=0, decimal_places=2)


class WeightRuleCreate(WeightWindowBase):
    """Per-kg price above the base bracket."""
    price_per_kg: Decimal = Field(..., ge=0, decimal_places=2)


class ZoneRuleCreate(BaseModel):
    """Flat zone add-on (FLAT mode)."""
    zone_code: str
    carrier_code: str = Field(..., min_length=1, max_length=50)
    service_type: str = ServiceType.STANDARD.value
    additional_price: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    transit_days: Optional[int] = Field(default=None, ge=0)

    @field_validator('zone_code', mode='before')
    @classmethod
    def check_zone(cls, v):
        return _zone_code(v)

    @field_validator('carrier_code')
    @classmethod
    def upper_carrier(cls, v):
        return v.strip().upper()

    @field_validator('service_type', mode='before')
    @classmethod
    def check_service_type(cls, v):
        return _service_type(v)


class ZoneMultiplierCreate(BaseModel):
    """Freight factor for a zone (MULTIPLIER mode)."""
    zone_code: str
    factor: Decimal = Field(default=Decimal("1"), gt=0, decimal_places=4)

    @field_validator('zone_code', mode='before')
    @classmethod
    def check_zone(cls, v):
        return _zone_code(v)


class CodSlabCreate(BaseModel):
    """COD band on order value [min_value, max_value)."""
    min_value: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    max_value: Decimal = Field(..., gt=0, decimal_places=2)
    charge_type: ChargeType = ChargeType.FLAT
    value: Decimal = Field(..., ge=0, decimal_places=3)

    @model_validator(mode='after')
    def check_band(self):
        if self.min_value >= self.max_value:
            raise ValueError('min_value must be less than max_value')
        return self


class BaseRateResponse(BaseResponseSchema):
    carrier_code: str
    service_type: str
    min_weight_kg: Decimal
    max_weight_kg: Decimal
    base_price: Decimal


class WeightRuleResponse(BaseResponseSchema):
    carrier_code: str
    service_type: str
    min_weight_kg: Decimal
    max_weight_kg: Decimal
    price_per_kg: Decimal


class ZoneRuleResponse(BaseResponseSchema):
    zone_code: str
    carrier_code: str
    service_type: str
    additional_price: Decimal
    transit_days: Optional[int] = None


class ZoneMultiplierResponse(BaseResponseSchema):
    zone_code: str
    factor: Decimal


class CodSlabResponse(BaseResponseSchema):
    min_value: Decimal
    max_value: Decimal
    charge_type: str
    value: Decimal


# ============================================
# RATE CARD SCHEMAS
# ============================================

class RateCardCreate(BaseModel):
    """Create schema for a rate card with its full rule set."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: RateCardStatus = RateCardStatus.ACTIVE
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    zone_pricing_mode: Optional[ZonePricingMode] = None
    minimum_call: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    fuel_surcharge_percent: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=3)
    fuel_surcharge_base: str = FuelSurchargeBase.FREIGHT.value
    cod_percentage: Optional[Decimal] = Field(default=None, ge=0, decimal_places=3)
    cod_minimum_charge: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    remote_area_enabled: bool = False
    remote_area_surcharge: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    gst_percent: Decimal = Field(default=Decimal("18"), ge=0, decimal_places=3)

    base_rates: List[BaseRateCreate] = []
    weight_rules: List[WeightRuleCreate] = []
    zone_rules: List[ZoneRuleCreate] = []
    zone_multipliers: List[ZoneMultiplierCreate] = []
    cod_slabs: List[CodSlabCreate] = []

    @field_validator('fuel_surcharge_base', mode='before')
    @classmethod
    def check_fuel_base(cls, v):
        member = normalize_choice(v, FuelSurchargeBase)
        if member is None:
            raise ValueError("fuel_surcharge_base must be 'freight' or 'freight+zone'")
        return member.value

    @model_validator(mode='after')
    def check_dates_and_mode(self):
        if self.effective_from and self.effective_to and self.effective_from > self.effective_to:
            raise ValueError('effective_from must not be after effective_to')
        if self.zone_pricing_mode == ZonePricingMode.FLAT and self.zone_multipliers:
            raise ValueError('FLAT zone pricing cannot carry zone multipliers')
        if self.zone_pricing_mode == ZonePricingMode.MULTIPLIER and any(
            z.additional_price for z in self.zone_rules
        ):
            raise ValueError('MULTIPLIER zone pricing cannot carry flat zone prices')
        return self


class RateCardStatusUpdate(BaseModel):
    status: RateCardStatus


class RateCardResponse(BaseResponseSchema):
    """Response schema for a rate card."""
    id: uuid.UUID
    company_id: uuid.UUID
    name: str
    description: Optional[str] = None
    version: int
    status: str
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    is_locked: bool
    zone_pricing_mode: str
    minimum_call: Decimal
    fuel_surcharge_percent: Decimal
    fuel_surcharge_base: str
    cod_percentage: Optional[Decimal] = None
    cod_minimum_charge: Optional[Decimal] = None
    remote_area_enabled: bool
    remote_area_surcharge: Decimal
    gst_percent: Decimal
    created_at: datetime
    updated_at: datetime


class RateCardDetailResponse(RateCardResponse):
    """Rate card with all rule lists."""
    base_rates: List[BaseRateResponse] = []
    weight_rules: List[WeightRuleResponse] = []
    zone_rules: List[ZoneRuleResponse] = []
    zone_multipliers: List[ZoneMultiplierResponse] = []
    cod_slabs: List[CodSlabResponse] = []


class RateCardListResponse(BaseModel):
    """Paginated rate card list."""
    items: List[RateCardResponse]
    total: int
    page: int
    size: int
    pages: int


class RateCardAssignmentCreate(BaseModel):
    company_id: uuid.UUID
    rate_card_id: uuid.UUID
    tier: str = Field(default="STANDARD", min_length=1, max_length=50)

    @field_validator('tier')
    @classmethod
    def upper_tier(cls, v):
        return v.strip().upper()


class RateCardAssignmentResponse(BaseResponseSchema):
    company_id: uuid.UUID
    rate_card_id: uuid.UUID
    tier: str


# ============================================
# IMPORT
# ============================================

class ImportRowError(BaseModel):
    name: Optional[str] = None
    row_number: Optional[int] = None
    error: str


class ImportResult(BaseModel):
    """Outcome of a bulk rate card import."""
    created: int = 0
    updated: int = 0
    errors: List[ImportRowError] = []
    dry_run: bool = False

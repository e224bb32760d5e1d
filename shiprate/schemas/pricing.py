"""Schemas for price calculation and carrier ranking."""
from decimal import Decimal
from typing import Any, List, Optional
import uuid

from pydantic import BaseModel, Field, field_validator, model_validator

from shiprate.core.enum_utils import normalize_choice
from shiprate.models.rate_card import ServiceType
from shiprate.services.pricing_engine import PaymentMode

PINCODE_PATTERN = r"^\s*\d{6}\s*$"


class ShipmentBase(BaseModel):
    """Shipment descriptor shared by calculate and rank."""
    company_id: uuid.UUID
    rate_card_id: Optional[uuid.UUID] = None
    tier: Optional[str] = Field(default=None, max_length=50)
    origin_pincode: str = Field(..., pattern=PINCODE_PATTERN)
    destination_pincode: str = Field(..., pattern=PINCODE_PATTERN)
    weight: Decimal = Field(..., gt=0, description="Actual weight in kg")
    length_cm: Optional[Decimal] = Field(default=None, gt=0)
    width_cm: Optional[Decimal] = Field(default=None, gt=0)
    height_cm: Optional[Decimal] = Field(default=None, gt=0)
    payment_mode: PaymentMode = PaymentMode.PREPAID
    order_value: Optional[Decimal] = Field(default=None, ge=0)
    # Any value; the engine discards anything that is not zoneA..zoneE
    external_zone_override: Optional[Any] = None
    is_remote_location: Optional[bool] = None
    is_return: bool = False

    @field_validator('payment_mode', mode='before')
    @classmethod
    def lower_payment_mode(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator('tier')
    @classmethod
    def upper_tier(cls, v):
        return v.strip().upper() if v else v

    @model_validator(mode='after')
    def cod_needs_order_value(self):
        if self.payment_mode == PaymentMode.COD and self.order_value is None:
            raise ValueError('order_value is required for COD shipments')
        return self


def _service_type(v):
    member = normalize_choice(v, ServiceType)
    if member is None:
        raise ValueError(f"Unknown service type '{v}'")
    return member.value


class PriceCalculationRequest(ShipmentBase):
    """Price one carrier/service."""
    carrier: str = Field(..., min_length=1, max_length=50)
    service_type: str = ServiceType.STANDARD.value

    @field_validator('carrier')
    @classmethod
    def upper_carrier(cls, v):
        return v.strip().upper()

    @field_validator('service_type', mode='before')
    @classmethod
    def check_service_type(cls, v):
        return _service_type(v)


class RankingRequest(ShipmentBase):
    """Rank every serviceable carrier of the company."""
    service_type: Optional[str] = None
    preferred_carriers: List[str] = []
    excluded_carriers: List[str] = []

    @field_validator('service_type', mode='before')
    @classmethod
    def check_service_type(cls, v):
        return _service_type(v) if v else None

    @field_validator('preferred_carriers', 'excluded_carriers')
    @classmethod
    def upper_codes(cls, v):
        return [c.strip().upper() for c in v if c and c.strip()]


class ChargeBreakdown(BaseModel):
    freight: float
    zone_charge: float
    fuel_charge: float
    cod_charge: float
    remote_area_charge: float
    subtotal: float
    minimum_call_applied: bool
    tax: float
    total: float


class PriceQuote(BaseModel):
    """One priced option."""
    carrier: str
    carrier_name: Optional[str] = None
    service_type: str
    rate_card_id: uuid.UUID
    rate_card_name: str
    rate_card_version: int
    zone: str
    zone_source: str
    pricing_provider: str
    chargeable_weight: float
    transit_days: Optional[int] = None
    breakdown: ChargeBreakdown
    total: float
    tags: List[str] = []


class CalculationResponse(BaseModel):
    """Single calculation: a quote, or the reason it is not applicable."""
    applicable: bool
    quote: Optional[PriceQuote] = None
    kind: Optional[str] = None
    reason: Optional[str] = None


class RankingResponse(BaseModel):
    """Ranked options, cheapest first."""
    options: List[PriceQuote]
    total_options: int
    zone: Optional[str] = None
    zone_source: Optional[str] = None
    recommendation: Optional[str] = None
    message: Optional[str] = None

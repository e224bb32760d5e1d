"""Schemas for carriers and company enablement."""
from typing import List, Optional
import uuid

from pydantic import BaseModel, Field, field_validator, model_validator

from shiprate.core.enum_utils import normalize_choice
from shiprate.models.carrier import ServiceabilityMode
from shiprate.models.rate_card import ServiceType
from shiprate.schemas.base import BaseResponseSchema


class CarrierCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    is_active: bool = True
    service_types: List[str] = [ServiceType.STANDARD.value]
    serviceability_mode: ServiceabilityMode = ServiceabilityMode.ALL
    serviceability_url: Optional[str] = Field(default=None, max_length=500)
    default_transit_days: Optional[int] = Field(default=None, ge=0)

    @field_validator('code')
    @classmethod
    def upper_code(cls, v):
        return v.strip().upper()

    @field_validator('service_types')
    @classmethod
    def check_service_types(cls, v):
        values = []
        for item in v:
            member = normalize_choice(item, ServiceType)
            if member is None:
                raise ValueError(f"Unknown service type '{item}'")
            values.append(member.value)
        return values

    @model_validator(mode='after')
    def api_mode_needs_url(self):
        if self.serviceability_mode == ServiceabilityMode.API and not self.serviceability_url:
            raise ValueError('serviceability_url is required for API serviceability')
        return self


class CarrierResponse(BaseResponseSchema):
    id: uuid.UUID
    code: str
    name: str
    is_active: bool
    service_types: List[str]
    serviceability_mode: str
    serviceability_url: Optional[str] = None
    default_transit_days: Optional[int] = None


class CarrierPincodesCreate(BaseModel):
    pincodes: List[str]
    pickup_available: bool = True
    replace_existing: bool = False


class CompanyCarrierCreate(BaseModel):
    company_id: uuid.UUID
    carrier_code: str
    is_active: bool = True
    priority: int = 100

    @field_validator('carrier_code')
    @classmethod
    def upper_code(cls, v):
        return v.strip().upper()


class CompanyCarrierResponse(BaseResponseSchema):
    company_id: uuid.UUID
    carrier_id: uuid.UUID
    is_active: bool
    priority: int

"""Schemas for zones and pincode lookups."""
from typing import List, Optional
import uuid

from pydantic import BaseModel, field_validator

from shiprate.schemas.base import BaseResponseSchema


class PincodeResponse(BaseModel):
    pincode: str
    circle: Optional[str] = None
    district: str
    city: Optional[str] = None
    state: str
    region: Optional[str] = None
    is_oda: bool = False


class ZoneClassificationResponse(BaseModel):
    origin_pincode: str
    destination_pincode: str
    zone_code: str
    is_same_city: bool
    is_same_state: bool
    distance_band: str


class ZoneResponse(BaseResponseSchema):
    id: uuid.UUID
    code: str
    name: str
    pincodes: List[str] = []


class ZonePincodesUpdate(BaseModel):
    pincodes: List[str]

    @field_validator('pincodes')
    @classmethod
    def strip_pincodes(cls, v):
        cleaned = []
        for pincode in v:
            code = str(pincode).strip()
            if len(code) != 6 or not code.isdigit():
                raise ValueError(f"Invalid pincode '{pincode}'")
            cleaned.append(code)
        return sorted(set(cleaned))


class ReloadResponse(BaseModel):
    pincodes: int
    metro_cities: int
    message: str = "Reloaded"


class PincodeImportResponse(BaseModel):
    created: int
    updated: int

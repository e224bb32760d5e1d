"""Carrier API endpoints."""
from typing import List, Optional

from fastapi import APIRouter, HTTPException, status, Query

from shiprate.api.deps import DB
from shiprate.services.carrier_service import CarrierService
from shiprate.schemas.carrier import (
    CarrierCreate,
    CarrierResponse,
    CarrierPincodesCreate,
    CompanyCarrierCreate,
    CompanyCarrierResponse,
)


router = APIRouter()


@router.get("", response_model=List[CarrierResponse])
async def list_carriers(
    db: DB,
    is_active: Optional[bool] = Query(None),
):
    """List carriers."""
    carriers = await CarrierService(db).list_carriers(is_active=is_active)
    return [CarrierResponse.model_validate(c) for c in carriers]


@router.post("", response_model=CarrierResponse, status_code=status.HTTP_201_CREATED)
async def create_carrier(data: CarrierCreate, db: DB):
    """Register a carrier."""
    try:
        carrier = await CarrierService(db).create_carrier(data)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    return CarrierResponse.model_validate(carrier)


@router.post("/company", response_model=CompanyCarrierResponse)
async def enable_carrier_for_company(data: CompanyCarrierCreate, db: DB):
    """Enable (or disable) a carrier for a company."""
    try:
        link = await CarrierService(db).enable_for_company(
            data.company_id, data.carrier_code, data.is_active, data.priority
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e)
        )
    return CompanyCarrierResponse.model_validate(link)


@router.post("/{code}/pincodes")
async def add_carrier_pincodes(code: str, data: CarrierPincodesCreate, db: DB):
    """Add serviceable pincodes to a PINCODE_LIST carrier."""
    try:
        added = await CarrierService(db).add_pincodes(
            code, data.pincodes, data.pickup_available, data.replace_existing
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e)
        )
    return {"success": True, "added": added}

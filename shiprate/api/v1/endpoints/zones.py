"""Zone API endpoints: classification, pincode reference data and zone membership."""
from typing import List

from fastapi import APIRouter, HTTPException, status, Query, UploadFile, File

from shiprate.api.deps import DB, Resolver
from shiprate.core.exceptions import UnknownPincode
from shiprate.services.zone_resolver import parse_pincode_csv
from shiprate.services.zone_service import ZoneService
from shiprate.schemas.zone import (
    PincodeResponse,
    ZoneClassificationResponse,
    ZoneResponse,
    ZonePincodesUpdate,
    ReloadResponse,
    PincodeImportResponse,
)


router = APIRouter()


@router.get("", response_model=List[ZoneResponse])
async def list_zones(db: DB):
    """List configured zones."""
    zones = await ZoneService(db).list_zones()
    return [ZoneResponse.model_validate(z) for z in zones]


@router.get("/classify", response_model=ZoneClassificationResponse)
async def classify_zone(
    resolver: Resolver,
    origin: str = Query(..., min_length=6, max_length=6),
    destination: str = Query(..., min_length=6, max_length=6),
):
    """Classify a lane into zoneA..zoneE."""
    try:
        classification = resolver.classify_zone(origin, destination)
    except UnknownPincode as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return ZoneClassificationResponse(
        origin_pincode=origin,
        destination_pincode=destination,
        **classification.to_dict(),
    )


@router.get("/pincodes/{pincode}", response_model=PincodeResponse)
async def get_pincode(pincode: str, resolver: Resolver):
    """Look up a pincode in the loaded reference table."""
    try:
        info = resolver.resolve_pincode(pincode)
    except UnknownPincode as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return PincodeResponse(**info.to_dict())


@router.post("/pincodes/import", response_model=PincodeImportResponse)
async def import_pincodes(
    db: DB,
    resolver: Resolver,
    file: UploadFile = File(...),
):
    """
    Import the pincode reference table from CSV and reload the resolver.

    Columns: pincode, district, state (required); circle, city, region, oda.
    """
    content = await file.read()
    try:
        rows = parse_pincode_csv(content.decode("utf-8-sig"))
    except (ValueError, UnicodeDecodeError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not rows:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No valid pincode rows found")

    counts = await ZoneService(db).upsert_pincodes(rows)
    await resolver.reload()
    return PincodeImportResponse(**counts)


@router.post("/reload", response_model=ReloadResponse)
async def reload_zones(resolver: Resolver):
    """Re-read metro/special-state configuration and the pincode table."""
    await resolver.reload()
    return ReloadResponse(
        pincodes=resolver.pincode_count,
        metro_cities=len(resolver.metro_cities),
    )


@router.put("/{code}/pincodes", response_model=ZoneResponse)
async def set_zone_pincodes(code: str, data: ZonePincodesUpdate, db: DB):
    """Replace the pincode membership of a zone."""
    try:
        zone = await ZoneService(db).set_zone_pincodes(code, data.pincodes)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return ZoneResponse.model_validate(zone)

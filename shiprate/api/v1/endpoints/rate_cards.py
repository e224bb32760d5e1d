"""Rate Card API endpoints: CRUD, bulk import and company assignment."""
from typing import Optional
import uuid
from math import ceil
from datetime import date

from fastapi import APIRouter, HTTPException, status, Query, UploadFile, File, Form

from shiprate.api.deps import DB, Cache
from shiprate.core.exceptions import RateCardImportError, RateCardNotFound
from shiprate.models.rate_card import RateCardStatus
from shiprate.services.rate_card_service import RateCardService
from shiprate.services.rate_card_import_service import RateCardImportService
from shiprate.schemas.rate_card import (
    RateCardCreate,
    RateCardStatusUpdate,
    RateCardResponse,
    RateCardDetailResponse,
    RateCardListResponse,
    RateCardAssignmentCreate,
    RateCardAssignmentResponse,
    ImportResult,
)


router = APIRouter()


@router.get("", response_model=RateCardListResponse)
async def list_rate_cards(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    company_id: Optional[uuid.UUID] = Query(None),
    status_filter: Optional[RateCardStatus] = Query(None, alias="status"),
    effective_date: Optional[date] = Query(None),
):
    """List rate cards with filters."""
    service = RateCardService(db)
    skip = (page - 1) * size

    items, total = await service.list_rate_cards(
        company_id=company_id,
        status=status_filter.value if status_filter else None,
        effective_date=effective_date,
        skip=skip,
        limit=size,
    )

    return RateCardListResponse(
        items=[RateCardResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.post("", response_model=RateCardDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_rate_card(
    data: RateCardCreate,
    db: DB,
    cache: Cache,
    company_id: uuid.UUID = Query(...),
):
    """Create a rate card with its full rule set."""
    service = RateCardService(db)
    try:
        rate_card = await service.create_rate_card(company_id, data)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    await cache.invalidate_company(company_id)
    return RateCardDetailResponse.model_validate(rate_card)


@router.post("/import", response_model=ImportResult)
async def import_rate_cards(
    db: DB,
    cache: Cache,
    file: UploadFile = File(...),
    company_id: uuid.UUID = Form(...),
    dry_run: bool = Form(default=False),
):
    """
    Import rate cards from a CSV or Excel file.

    Required columns: Name, Carrier, Service Type, Base Price, Min Weight, Max Weight.
    Optional: Zone, Zone Price, Zone Multiplier, Transit Days, Price Per Kg, Status,
    Effective From/To, Minimum Call, Fuel Surcharge (+ Base), GST,
    Remote Area Surcharge, COD Min/Max/Charge/Type.

    Invalid rows are returned in `errors`; valid rows still import.
    With dry_run, nothing is saved.
    """
    filename = file.filename or ""
    if not (filename.lower().endswith('.csv') or filename.lower().endswith('.xlsx')):
        raise HTTPException(
            status_code=400,
            detail="Unsupported file format. Please upload CSV or Excel (.xlsx) file."
        )

    try:
        content = await file.read()
        service = RateCardImportService(db, cache)
        return await service.import_file(company_id, filename, content, dry_run=dry_run)
    except RateCardImportError as e:
        raise HTTPException(
            status_code=400,
            detail=f"Import failed: {e.message}",
        )


@router.post("/assignments", response_model=RateCardAssignmentResponse)
async def assign_rate_card(
    data: RateCardAssignmentCreate,
    db: DB,
    cache: Cache,
):
    """Make a card the company's default for a tier."""
    service = RateCardService(db)
    try:
        assignment = await service.assign_to_company(data.company_id, data.rate_card_id, data.tier)
    except RateCardNotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e)
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    await cache.invalidate_company(data.company_id)
    return RateCardAssignmentResponse.model_validate(assignment)


@router.post("/cache/reload")
async def reload_rate_card_cache(
    cache: Cache,
    company_id: Optional[uuid.UUID] = Query(None),
):
    """Drop cached snapshots so the next calculation reads the store."""
    if company_id:
        removed = await cache.invalidate_company(company_id)
    else:
        removed = len(cache)
        await cache.clear()
    return {"success": True, "removed": removed}


@router.get("/{rate_card_id}", response_model=RateCardDetailResponse)
async def get_rate_card(
    rate_card_id: uuid.UUID,
    db: DB,
):
    """Get a rate card with all rules."""
    service = RateCardService(db)
    rate_card = await service.get_rate_card(rate_card_id, include_details=True)

    if not rate_card:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Rate card not found"
        )

    return RateCardDetailResponse.model_validate(rate_card)


@router.put("/{rate_card_id}/status", response_model=RateCardResponse)
async def update_rate_card_status(
    rate_card_id: uuid.UUID,
    data: RateCardStatusUpdate,
    db: DB,
    cache: Cache,
):
    """Activate, deactivate or expire a rate card."""
    service = RateCardService(db)
    try:
        rate_card = await service.update_status(rate_card_id, data.status)
    except RateCardNotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e)
        )

    await cache.invalidate_company(rate_card.company_id)
    return RateCardResponse.model_validate(rate_card)


@router.post("/{rate_card_id}/lock", response_model=RateCardResponse)
async def lock_rate_card(
    rate_card_id: uuid.UUID,
    db: DB,
):
    """Lock a card; later imports create a new version instead of editing it."""
    service = RateCardService(db)
    try:
        rate_card = await service.lock_rate_card(rate_card_id)
    except RateCardNotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e)
        )

    return RateCardResponse.model_validate(rate_card)

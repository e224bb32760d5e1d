"""Pricing API endpoints: single-carrier calculation and carrier ranking."""
from fastapi import APIRouter, HTTPException, status

from shiprate.api.deps import DB, Resolver, Cache, Serviceability
from shiprate.services.carrier_ranking_service import CarrierRankingService
from shiprate.services.pricing_engine import PriceRequest, PriceBreakdown
from shiprate.schemas.pricing import (
    PriceCalculationRequest,
    RankingRequest,
    CalculationResponse,
    RankingResponse,
)


router = APIRouter()


def _to_price_request(data, carrier_code=None, service_type=None) -> PriceRequest:
    return PriceRequest(
        company_id=data.company_id,
        origin_pincode=data.origin_pincode,
        destination_pincode=data.destination_pincode,
        weight_kg=data.weight,
        payment_mode=data.payment_mode.value,
        order_value=data.order_value,
        service_type=service_type,
        carrier_code=carrier_code,
        rate_card_id=data.rate_card_id,
        tier=data.tier,
        external_zone_override=data.external_zone_override,
        is_remote_location=data.is_remote_location,
        length_cm=data.length_cm,
        width_cm=data.width_cm,
        height_cm=data.height_cm,
        is_return=data.is_return,
    )


@router.post("/calculate", response_model=CalculationResponse)
async def calculate_price(
    data: PriceCalculationRequest,
    db: DB,
    resolver: Resolver,
    cache: Cache,
    serviceability: Serviceability,
):
    """
    Price one carrier/service against the given rate card or the company default.

    A card that cannot price the shipment returns applicable=false with the reason.
    """
    service = CarrierRankingService(db, resolver, cache, serviceability)
    request = _to_price_request(data, data.carrier, data.service_type)

    try:
        result = await service.calculate(request)
    except ValueError as e:  # includes UnknownPincode
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if isinstance(result, PriceBreakdown):
        return {"applicable": True, "quote": result.to_dict()}
    return {"applicable": False, "kind": result.kind.value, "reason": result.reason}


@router.post("/rank", response_model=RankingResponse)
async def rank_carriers(
    data: RankingRequest,
    db: DB,
    resolver: Resolver,
    cache: Cache,
    serviceability: Serviceability,
):
    """
    Rank every serviceable carrier of the company, cheapest first.

    No options is a valid answer: the response carries "No rates available".
    """
    service = CarrierRankingService(db, resolver, cache, serviceability)
    request = _to_price_request(data, service_type=data.service_type)

    try:
        result = await service.rank(
            request,
            preferred_carriers=data.preferred_carriers,
            excluded_carriers=data.excluded_carriers,
        )
    except ValueError as e:  # includes UnknownPincode
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return result.to_dict()

"""
Carrier Ranking Service

Prices a shipment across every carrier the company has enabled:
1. Load the company's active carriers (minus exclusions, limited to preferred)
2. Load the rate card snapshot and classify the zone once
3. Fan out per carrier: serviceability check (bounded by a timeout), then
   one calculation per service type
4. Drop non-serviceable and not-applicable options
5. Sort by total, transit days (unknown last), carrier name
6. Tag CHEAPEST, FASTEST and RECOMMENDED

Every database read happens before the fan-out; concurrent tasks only touch
immutable snapshots and the serviceability collaborator.
"""
import asyncio
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from shiprate.config import Settings, settings as default_settings
from shiprate.models.carrier import ServiceabilityMode
from shiprate.services.carrier_service import CarrierService
from shiprate.services.pricing_engine import (
    PricingEngine, PriceRequest, PriceBreakdown, NotApplicable, NotApplicableKind, PricingResult,
)
from shiprate.services.rate_card_cache import RateCardCache
from shiprate.services.rate_card_snapshot import RateCardSnapshot
from shiprate.services.serviceability_service import CarrierInfo, ServiceabilityChecker
from shiprate.services.zone_resolver import ZoneResolver

logger = logging.getLogger(__name__)

NO_RATES_MESSAGE = "No rates available"

TAG_CHEAPEST = "CHEAPEST"
TAG_FASTEST = "FASTEST"
TAG_RECOMMENDED = "RECOMMENDED"

PRICE_WEIGHT = Decimal("0.6")
SPEED_WEIGHT = Decimal("0.4")


class RankingResult:
    """Sorted, tagged options for one shipment."""
    def __init__(
        self,
        options: List[PriceBreakdown],
        zone: Optional[str] = None,
        zone_source: Optional[str] = None,
        recommendation: Optional[str] = None,
    ):
        self.options = options
        self.zone = zone
        self.zone_source = zone_source
        self.recommendation = recommendation
        self.message = None if options else NO_RATES_MESSAGE

    @property
    def total_options(self) -> int:
        return len(self.options)

    def to_dict(self) -> dict:
        return {
            "options": [option.to_dict() for option in self.options],
            "total_options": self.total_options,
            "zone": self.zone,
            "zone_source": self.zone_source,
            "recommendation": self.recommendation,
            "message": self.message,
        }


def sort_key(option: PriceBreakdown) -> Tuple:
    return (
        option.total,
        option.transit_days is None,
        option.transit_days or 0,
        option.carrier_name or option.carrier_code,
        option.service_type,
    )


def _normalized(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    if high == low:
        return Decimal("0")
    return (value - low) / (high - low)


def apply_tags(options: List[PriceBreakdown]) -> Optional[PriceBreakdown]:
    """Tag sorted options in place. Returns the recommended option."""
    if not options:
        return None

    options[0].tags.append(TAG_CHEAPEST)

    timed = [o for o in options if o.transit_days is not None]
    if timed:
        fastest = min(timed, key=lambda o: o.transit_days)
        fastest.tags.append(TAG_FASTEST)

    totals = [o.total for o in options]
    low_total, high_total = min(totals), max(totals)
    if timed:
        low_days = Decimal(min(o.transit_days for o in timed))
        high_days = Decimal(max(o.transit_days for o in timed))

    def score(option: PriceBreakdown) -> Decimal:
        price_score = _normalized(option.total, low_total, high_total)
        if option.transit_days is None or not timed:
            speed_score = Decimal("1")
        else:
            speed_score = _normalized(Decimal(option.transit_days), low_days, high_days)
        return PRICE_WEIGHT * price_score + SPEED_WEIGHT * speed_score

    # min() keeps the first of equal scores, i.e. the cheaper one
    recommended = min(options, key=score)
    recommended.tags.append(TAG_RECOMMENDED)
    return recommended


class CarrierRankingService:
    """Single-carrier calculation and multi-carrier ranking."""

    def __init__(
        self,
        db: AsyncSession,
        zone_resolver: ZoneResolver,
        cache: RateCardCache,
        serviceability: ServiceabilityChecker,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.zone_resolver = zone_resolver
        self.cache = cache
        self.serviceability = serviceability
        self.settings = settings or default_settings
        self.engine = PricingEngine(zone_resolver, self.settings.VOLUMETRIC_DIVISOR)

    async def _load_rate_card(self, request: PriceRequest) -> Tuple[Optional[RateCardSnapshot], Optional[str]]:
        """(snapshot, None) or (None, reason)."""
        if request.rate_card_id:
            snapshot = await self.cache.get_snapshot(self.db, request.rate_card_id)
            if snapshot is None:
                return None, f"Rate card {request.rate_card_id} not found"
            if snapshot.company_id != request.company_id:
                return None, "Rate card belongs to another company"
            return snapshot, None

        tier = request.tier or self.settings.DEFAULT_RATE_CARD_TIER
        snapshot = await self.cache.get_company_default(self.db, request.company_id, tier)
        if snapshot is None:
            return None, f"No {tier} rate card assigned to company {request.company_id}"
        return snapshot, None

    def _check_pincodes(self, request: PriceRequest) -> None:
        """Raises UnknownPincode even when a valid zone override skips classification."""
        self.zone_resolver.resolve_pincode(request.origin_pincode)
        self.zone_resolver.resolve_pincode(request.destination_pincode)

    async def calculate(self, request: PriceRequest, on_date: Optional[date] = None) -> PricingResult:
        """Price one carrier/service for the shipment."""
        self._check_pincodes(request)

        snapshot, reason = await self._load_rate_card(request)
        if snapshot is None:
            return NotApplicable(
                reason, NotApplicableKind.INVALID_RATE_CARD, request.carrier_code, request.service_type
            )

        carrier = await CarrierService(self.db).get_by_code(request.carrier_code)
        result = self.engine.calculate(
            request,
            snapshot,
            on_date=on_date,
            default_transit_days=carrier.default_transit_days if carrier else None,
        )
        if isinstance(result, PriceBreakdown) and carrier:
            result.carrier_name = carrier.name
        return result

    async def _load_carriers(
        self,
        request: PriceRequest,
        preferred_carriers: Optional[List[str]],
        excluded_carriers: Optional[List[str]],
    ) -> List[CarrierInfo]:
        service = CarrierService(self.db)
        carriers = await service.get_company_carriers(request.company_id)

        if preferred_carriers:
            preferred = {c.upper() for c in preferred_carriers}
            carriers = [c for c in carriers if c.code in preferred]
        if excluded_carriers:
            excluded = {c.upper() for c in excluded_carriers}
            carriers = [c for c in carriers if c.code not in excluded]

        listed_ids = [c.id for c in carriers if c.serviceability_mode == ServiceabilityMode.PINCODE_LIST.value]
        listed = await service.get_listed_pincodes(
            listed_ids, [request.origin_pincode, request.destination_pincode]
        )

        return [
            CarrierInfo.from_model(
                carrier,
                {
                    pincode: row.pickup_available
                    for pincode, row in listed.get(carrier.id, {}).items()
                    if row.is_serviceable
                },
            )
            for carrier in carriers
        ]

    async def is_serviceable(self, carrier: CarrierInfo, request: PriceRequest) -> bool:
        """Delivery at destination, plus pickup at origin for returns. Timeouts and errors mean no."""
        timeout = self.settings.SERVICEABILITY_TIMEOUT_SECONDS

        async def check() -> bool:
            if not await self.serviceability.check_serviceability(carrier, request.destination_pincode):
                return False
            if request.is_return:
                return await self.serviceability.check_serviceability(
                    carrier, request.origin_pincode, pickup=True
                )
            return True

        try:
            return await asyncio.wait_for(check(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Serviceability check for {carrier.code} timed out after {timeout}s")
            return False
        except Exception as e:
            logger.warning(f"Serviceability check for {carrier.code} failed: {str(e)}")
            return False

    def _service_types(self, carrier: CarrierInfo, snapshot: RateCardSnapshot, request: PriceRequest) -> List[str]:
        service_types = carrier.service_types or sorted(
            {service for code, service in snapshot.priced_keys() if code == carrier.code}
        )
        if request.service_type:
            service_types = [s for s in service_types if s == request.service_type]
        return service_types

    async def rank(
        self,
        request: PriceRequest,
        preferred_carriers: Optional[List[str]] = None,
        excluded_carriers: Optional[List[str]] = None,
        on_date: Optional[date] = None,
    ) -> RankingResult:
        """Rank all serviceable carriers; an empty result is not an error."""
        self._check_pincodes(request)

        snapshot, reason = await self._load_rate_card(request)
        if snapshot is None:
            logger.info(f"Ranking for company {request.company_id} skipped: {reason}")
            return RankingResult([])

        zone, zone_source = self.engine.determine_zone(request)
        carriers = await self._load_carriers(request, preferred_carriers, excluded_carriers)
        semaphore = asyncio.Semaphore(self.settings.RANKING_MAX_CONCURRENCY)

        async def evaluate(carrier: CarrierInfo) -> List[PricingResult]:
            async with semaphore:
                if not await self.is_serviceable(carrier, request):
                    logger.debug(f"{carrier.code} does not service {request.destination_pincode}")
                    return []
                results = []
                for service_type in self._service_types(carrier, snapshot, request):
                    result = self.engine.calculate(
                        request.for_carrier(carrier.code, service_type),
                        snapshot,
                        on_date=on_date,
                        default_transit_days=carrier.default_transit_days,
                        zone=(zone, zone_source),
                    )
                    if isinstance(result, PriceBreakdown):
                        result.carrier_name = carrier.name
                    results.append(result)
                return results

        outcomes = await asyncio.gather(*(evaluate(carrier) for carrier in carriers))

        options: List[PriceBreakdown] = []
        skipped: Dict[str, str] = {}
        for results in outcomes:
            for result in results:
                if isinstance(result, PriceBreakdown):
                    options.append(result)
                else:
                    skipped[f"{result.carrier_code}/{result.service_type}"] = result.reason

        if skipped:
            logger.debug(f"Not applicable: {skipped}")

        options.sort(key=sort_key)
        recommended = apply_tags(options)

        return RankingResult(
            options,
            zone=zone,
            zone_source=zone_source,
            recommendation=f"{recommended.carrier_code}/{recommended.service_type}" if recommended else None,
        )

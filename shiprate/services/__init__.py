# Services module
from shiprate.services.zone_resolver import ZoneResolver
from shiprate.services.pricing_engine import PricingEngine
from shiprate.services.rate_card_service import RateCardService
from shiprate.services.rate_card_cache import RateCardCache
from shiprate.services.rate_card_import_service import RateCardImportService
from shiprate.services.zone_service import ZoneService
from shiprate.services.carrier_service import CarrierService
from shiprate.services.serviceability_service import CarrierServiceabilityChecker, HttpServiceabilityClient
from shiprate.services.carrier_ranking_service import CarrierRankingService

__all__ = [
    "ZoneResolver",
    "PricingEngine",
    "RateCardService",
    "RateCardCache",
    "RateCardImportService",
    "ZoneService",
    "CarrierService",
    "CarrierServiceabilityChecker",
    "HttpServiceabilityClient",
    "CarrierRankingService",
]

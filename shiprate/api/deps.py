from typing import Annotated
import logging

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shiprate.database import get_db
from shiprate.services.rate_card_cache import RateCardCache
from shiprate.services.serviceability_service import ServiceabilityChecker
from shiprate.services.zone_resolver import ZoneResolver


logger = logging.getLogger(__name__)


def get_zone_resolver(request: Request) -> ZoneResolver:
    """Process-wide zone resolver, built in the app lifespan."""
    return request.app.state.zone_resolver


def get_rate_card_cache(request: Request) -> RateCardCache:
    return request.app.state.rate_card_cache


def get_serviceability(request: Request) -> ServiceabilityChecker:
    return request.app.state.serviceability


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
Resolver = Annotated[ZoneResolver, Depends(get_zone_resolver)]
Cache = Annotated[RateCardCache, Depends(get_rate_card_cache)]
Serviceability = Annotated[ServiceabilityChecker, Depends(get_serviceability)]

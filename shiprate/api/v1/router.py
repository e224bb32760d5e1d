from fastapi import APIRouter

from shiprate.api.v1.endpoints import (
    rate_cards,
    pricing,
    zones,
    carriers,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Rate Cards ====================
api_router.include_router(
    rate_cards.router,
    prefix="/rate-cards",
    tags=["Rate Cards"]
)

# ==================== Pricing & Ranking ====================
api_router.include_router(
    pricing.router,
    prefix="/pricing",
    tags=["Pricing"]
)

# ==================== Zones & Pincodes ====================
api_router.include_router(
    zones.router,
    prefix="/zones",
    tags=["Zones"]
)

# ==================== Carriers ====================
api_router.include_router(
    carriers.router,
    prefix="/carriers",
    tags=["Carriers"]
)

from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
import traceback

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from shiprate.config import settings
from shiprate.api.v1.router import api_router
from shiprate.core.config_provider import build_config_provider
from shiprate.database import init_db, async_session_factory
from shiprate.services.rate_card_cache import RateCardCache
from shiprate.services.serviceability_service import CarrierServiceabilityChecker, HttpServiceabilityClient
from shiprate.services.zone_resolver import ZoneResolver, db_pincode_source

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create tables
    - Build the zone resolver and load pincodes + metro configuration
    - Create the rate card cache and the serviceability collaborator
    """
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    await init_db()

    resolver = ZoneResolver(
        build_config_provider(async_session_factory, settings),
        pincode_source=db_pincode_source(async_session_factory),
    )
    await resolver.reload()

    app.state.zone_resolver = resolver
    app.state.rate_card_cache = RateCardCache()
    app.state.serviceability = CarrierServiceabilityChecker(
        HttpServiceabilityClient(timeout=settings.SERVICEABILITY_TIMEOUT_SECONDS)
    )
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started")

    yield

    await app.state.rate_card_cache.clear()


OPENAPI_TAGS = [
    {"name": "Rate Cards", "description": "Rate card CRUD, bulk CSV/XLSX import and company assignment"},
    {"name": "Pricing", "description": "Shipment price calculation and carrier ranking"},
    {"name": "Zones", "description": "Pincode lookup, zone classification and reference data"},
    {"name": "Carriers", "description": "Carriers, serviceable pincodes and company enablement"},
]


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=OPENAPI_TAGS,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Return error details as JSON."""
        if isinstance(exc, HTTPException):
            status_code = exc.status_code
            error_message = exc.detail
        else:
            status_code = 500
            error_message = str(exc)
            logger.error(f"Unhandled error on {request.method} {request.url.path}: {error_message}")

        error_detail = {
            "error": error_message,
            "type": type(exc).__name__,
            "path": str(request.url.path),
            "method": request.method,
        }
        if settings.DEBUG:
            error_detail["traceback"] = traceback.format_exc()

        return JSONResponse(status_code=status_code, content=error_detail)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint with database validation."""
        health_status = {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {
                "database": "unknown"
            }
        }

        try:
            async with async_session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()
                health_status["checks"]["database"] = "connected"
        except Exception as e:
            health_status["status"] = "unhealthy"
            health_status["checks"]["database"] = f"error: {str(e)}"

        if health_status["status"] == "unhealthy":
            return JSONResponse(status_code=503, content=health_status)

        return health_status

    return app


app = create_app()

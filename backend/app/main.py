"""
FastAPI Application Entry Point.

This is the main application file for the Shipment Settlement Backend.
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from backend.app.core.config import settings
from backend.app.api.v1.router import router as api_v1_router
from backend.app.core.observability import ObservabilityMiddleware, configure_logging
from backend.app.db.session import engine, Base
from backend.app.domain.carrier.config import CarrierConfig
from backend.app.domain.carrier.gateway import CarrierGateway
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from backend.app.models.account_balance import AccountBalance
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.pricing_rule import (
    AccountPricingRule,
    RolePricingRule,
    WeightPricingTier,
    ZonePricingRule,
    ServiceTypePricingRule,
)
from backend.app.models.booking import Booking
from backend.app.models.margin_record import MarginRecord
from backend.app.models.audit_log import AuditLog
from backend.app.models.dlq import DeadLetterQueue

logger = logging.getLogger("shipments")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging and creates database tables.
    2. Builds the carrier gateway around one shared HTTP client.
    3. Closes the client on shutdown.
    """
    configure_logging()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    carrier_config = CarrierConfig.from_settings(settings)
    if not carrier_config.has_credentials:
        logger.warning("Carrier credentials not configured; bookings will use fallback waybills")

    client = httpx.AsyncClient()
    app.state.carrier_gateway = CarrierGateway(carrier_config, client)
    yield
    await client.aclose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Prepaid shipment booking, settlement and margin tracking",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    gateway = getattr(app.state, "carrier_gateway", None)
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "carrier_configured": bool(gateway and gateway.config.has_credentials),
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Shipment Settlement Backend API",
        "docs": "/docs",
        "health": "/health",
    }

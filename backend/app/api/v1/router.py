"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import (
    bookings, pricing, ledger, shipments,
    admin_billing, admin_ops
)

router = APIRouter()

# Account endpoints
router.include_router(bookings.router)
router.include_router(pricing.router)
router.include_router(ledger.router)
router.include_router(shipments.router)

# Admin endpoints
router.include_router(admin_billing.router)
router.include_router(admin_ops.router)

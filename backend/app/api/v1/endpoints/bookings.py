"""
Booking API Endpoints.

Accounts book shipments against their prepaid balance.
"""

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_carrier_gateway, get_current_account_id, get_current_user
from backend.app.core.guards import enforce_account_access
from backend.app.domain.booking.booking_service import (
    BatchOutcome,
    BookingOutcome,
    BookingRequest,
    BookingService,
    ShipmentOrder,
)
from backend.app.domain.carrier.gateway import CarrierGateway
from backend.app.models.enums import AccountRole
from backend.app.schemas.booking import (
    BatchCreate,
    BookingDetailResponse,
    BookingHistoryItem,
    BookingResponse,
    ShipmentCreate,
)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def _role(current_user: dict) -> AccountRole:
    try:
        return AccountRole(current_user.get("role"))
    except ValueError:
        return AccountRole.CUSTOMER


@router.post("", response_model=BookingOutcome, status_code=status.HTTP_201_CREATED)
async def book_shipment(
    shipment: ShipmentCreate,
    current_user: dict = Depends(get_current_user),
    account_id: str = Depends(get_current_account_id),
    gateway: CarrierGateway = Depends(get_carrier_gateway),
    db: AsyncSession = Depends(get_db)
):
    """
    Price, debit and book one shipment.

    A booking the carrier refuses is refunded in full and comes back
    COMPENSATED. An unreachable carrier still yields a (fallback) waybill.
    """
    request = BookingRequest(
        account_id=account_id,
        role=_role(current_user),
        **shipment.model_dump(),
    )
    return await BookingService.book_shipment(db, gateway, request)


@router.post("/batch", response_model=BatchOutcome, status_code=status.HTTP_201_CREATED)
async def book_batch(
    batch: BatchCreate,
    current_user: dict = Depends(get_current_user),
    account_id: str = Depends(get_current_account_id),
    gateway: CarrierGateway = Depends(get_carrier_gateway),
    db: AsyncSession = Depends(get_db)
):
    """Book many shipments with a single debit and a single refund for failures."""
    orders = [ShipmentOrder(**item.model_dump()) for item in batch.shipments]
    return await BookingService.book_batch(db, gateway, account_id, _role(current_user), orders)


@router.get("/{booking_ref}", response_model=BookingDetailResponse)
async def get_booking(
    booking_ref: str = Path(..., description="Booking reference"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Booking with its saga history. Admins may read any booking."""
    booking = await BookingService.get_booking(db, booking_ref)
    enforce_account_access(booking.account_id, current_user)

    history = await BookingService.get_booking_history(db, booking_ref)
    return BookingDetailResponse(
        booking=BookingResponse.model_validate(booking),
        history=[BookingHistoryItem(**item) for item in history],
    )

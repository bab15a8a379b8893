"""
Shipment API Endpoints.

Tracking and shipping labels for issued waybills.
"""

from fastapi import APIRouter, Depends, HTTPException, Path, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_carrier_gateway, get_current_user
from backend.app.core.guards import enforce_account_access
from backend.app.domain.carrier.gateway import CarrierGateway
from backend.app.domain.carrier.models import TrackingResult
from backend.app.models.booking import Booking
from backend.app.schemas.shipment import LabelUnavailableResponse

router = APIRouter(prefix="/shipments", tags=["Shipments"])


async def _authorize_waybill(db: AsyncSession, waybill: str, current_user: dict) -> None:
    result = await db.execute(select(Booking.account_id).where(Booking.waybill == waybill))
    account_id = result.scalars().first()
    if account_id is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Shipment not found"
        )
    enforce_account_access(account_id, current_user)


@router.get("/{waybill}/tracking", response_model=TrackingResult)
async def track_shipment(
    waybill: str = Path(..., description="Waybill number"),
    current_user: dict = Depends(get_current_user),
    gateway: CarrierGateway = Depends(get_carrier_gateway),
    db: AsyncSession = Depends(get_db)
):
    """Current status and events, oldest first."""
    await _authorize_waybill(db, waybill, current_user)
    return await gateway.track_shipment(waybill)


@router.get(
    "/{waybill}/label",
    responses={
        200: {"content": {"application/pdf": {}}},
        202: {"model": LabelUnavailableResponse},
    },
)
async def get_label(
    waybill: str = Path(..., description="Waybill number"),
    current_user: dict = Depends(get_current_user),
    gateway: CarrierGateway = Depends(get_carrier_gateway),
    db: AsyncSession = Depends(get_db)
):
    """
    Shipping label PDF.

    Fallback waybills and carrier outages return 202 with the reason instead.
    """
    await _authorize_waybill(db, waybill, current_user)
    label = await gateway.fetch_label(waybill)
    if label.fallback_mode or not label.content:
        return Response(
            content=LabelUnavailableResponse(waybill=waybill, error=label.error).model_dump_json(),
            status_code=status.HTTP_202_ACCEPTED,
            media_type="application/json",
        )
    return Response(
        content=label.content,
        media_type=label.content_type or "application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{waybill}.pdf"'},
    )

"""
Admin Operations API Endpoints.

Margins, stuck bookings and the dead letter queue.
"""

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from datetime import datetime
from typing import List, Optional

from backend.app.db.session import get_db
from backend.app.domain.booking.booking_service import BookingService
from backend.app.domain.margin.margin_service import BackfillReport, MarginService, MarginSummary
from backend.app.models.dlq import DeadLetterQueue, DLQStatus
from backend.app.models.enums import AccountRole
from backend.app.core.guards import require_role
from backend.app.schemas.ops import StuckBookingResponse
from backend.app.services import dead_letter
from backend.app.services.audit import log_admin_action, get_recent_alerts, AuditAction

router = APIRouter(prefix="/admin", tags=["Admin - Ops"])

admin_only = require_role([AccountRole.ADMIN])


@router.get("/margins/summary", response_model=MarginSummary)
async def margin_summary(
    account_id: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Aggregate revenue, carrier cost and margin."""
    return await MarginService.get_margin_summary(db, account_id=account_id, start=start, end=end)


@router.post("/margins/backfill", response_model=BackfillReport)
async def backfill_margins(
    limit: int = Query(100, ge=1, le=1000),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Replay margin recordings parked in the dead letter queue."""
    report = await MarginService.backfill_margins(db, limit=limit)
    await log_admin_action(db, current_user, AuditAction.MARGIN_BACKFILL_RUN, metadata=report.model_dump())
    return report


@router.get("/bookings/stuck", response_model=List[StuckBookingResponse])
async def stuck_bookings(
    older_than_minutes: Optional[int] = Query(None, ge=0),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Bookings that need manual reconciliation."""
    return await BookingService.find_stuck_bookings(db, older_than_minutes)


@router.get("/alerts")
async def recent_alerts(
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Carrier authentication and compensation failure alerts, newest first."""
    alerts = await get_recent_alerts(db, limit=limit)
    return [
        {
            "id": a.id,
            "action": a.action,
            "account_id": a.account_id,
            "reference": a.reference,
            "metadata": a.meta_data,
            "timestamp": a.timestamp,
        }
        for a in alerts
    ]


@router.post("/dlq/{dlq_id}/retry")
async def retry_dlq_item(
    dlq_id: int = Path(..., description="DLQ Item ID"),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """
    Put an archived task back in the queue.

    The next backfill run picks it up.
    """
    result = await db.execute(select(DeadLetterQueue).where(DeadLetterQueue.id == dlq_id))
    item = result.scalar_one_or_none()

    if not item:
        raise HTTPException(status_code=404, detail="DLQ item not found")

    if item.status == DLQStatus.PROCESSED:
        raise HTTPException(status_code=400, detail="DLQ item already processed")

    item.status = DLQStatus.FAILED
    item.retry_count = min(item.retry_count, dead_letter.MAX_RETRIES - 1)
    await db.commit()
    return {"message": f"Task {item.task_name} queued for retry"}

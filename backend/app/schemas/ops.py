"""
Operations schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional
from backend.app.models.billing_enums import BookingState


class StuckBookingResponse(BaseModel):
    """Booking awaiting manual reconciliation."""
    booking_ref: str
    account_id: str
    batch_ref: Optional[str]
    state: BookingState
    price: Decimal
    debit_entry_id: Optional[int]
    refund_entry_id: Optional[int]
    error: Optional[str]
    updated_at: datetime

    class Config:
        from_attributes = True

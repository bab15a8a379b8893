"""
Booking schemas.

Request bodies for single and batch bookings, and the persisted booking view.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from backend.app.models.billing_enums import BookingState
from backend.app.models.enums import RecipientType, ServiceType, ShipmentType


class AddressIn(BaseModel):
    """Postal address. Completeness is checked by the booking validator."""
    name: str = Field("", max_length=100)
    phone: str = Field("", max_length=20)
    address_line: str = Field("", max_length=200)
    address_line_2: str = Field("", max_length=200)
    pincode: str = Field("", max_length=10)
    city: str = Field("", max_length=100)
    state: str = Field("", max_length=100)


class ShipmentCreate(BaseModel):
    """Schema for booking one shipment."""
    recipient: AddressIn
    sender: Optional[AddressIn] = Field(None, description="Pickup address; required for reverse shipments")
    shipment_type: ShipmentType = ShipmentType.FORWARD
    weight_kg: Decimal = Field(..., ge=0, description="Weight in kilograms")
    unit_count: int = Field(default=1, ge=1, description="Number of boxes")
    declared_value: Decimal = Field(default=Decimal("0"), ge=0)
    service_type: ServiceType = ServiceType.STANDARD
    recipient_type: Optional[RecipientType] = None
    zone_key: Optional[str] = Field(None, max_length=20, description="Defaults to the recipient pincode")
    description: Optional[str] = Field(None, max_length=200)


class BatchCreate(BaseModel):
    """Schema for booking many shipments against one debit."""
    shipments: List[ShipmentCreate] = Field(..., min_length=1, max_length=100)


class BookingResponse(BaseModel):
    """Schema for a persisted booking."""
    id: int
    booking_ref: str
    account_id: str
    batch_ref: Optional[str]
    shipment_type: ShipmentType
    state: BookingState
    price: Decimal
    debit_entry_id: Optional[int]
    refund_entry_id: Optional[int]
    waybill: Optional[str]
    tracking_url: Optional[str]
    fallback_mode: bool
    fallback_reason: Optional[str]
    error: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BookingHistoryItem(BaseModel):
    """One saga transition."""
    from_state: Optional[str]
    to_state: str
    timestamp: datetime
    details: dict


class BookingDetailResponse(BaseModel):
    booking: BookingResponse
    history: List[BookingHistoryItem]

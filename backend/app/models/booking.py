"""
Booking database model.

Persisted saga state for one shipment booking.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, Boolean, Text
from sqlalchemy.sql import func
from backend.app.db.session import Base, Money
from backend.app.models.billing_enums import BookingState
from backend.app.models.enums import ShipmentType


class Booking(Base):
    """
    Booking model.

    'state' is the current position in the saga. Bookings left in DEBITED or
    CARRIER_CALLED after a crash, and COMPENSATION_FAILED ones, are picked up
    by BookingService.find_stuck_bookings for manual reconciliation.
    """
    __tablename__ = "bookings"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    booking_ref = Column(String(40), unique=True, nullable=False, index=True)
    account_id = Column(String(64), nullable=False, index=True)
    batch_ref = Column(String(40), nullable=True, index=True)

    shipment_type = Column(Enum(ShipmentType), nullable=False, default=ShipmentType.FORWARD)
    state = Column(Enum(BookingState), nullable=False, default=BookingState.PRICED, index=True)

    price = Column(Money, nullable=False)
    debit_entry_id = Column(Integer, nullable=True)
    refund_entry_id = Column(Integer, nullable=True)

    # Carrier outcome
    waybill = Column(String(64), nullable=True, index=True)
    tracking_url = Column(String(255), nullable=True)
    fallback_mode = Column(Boolean, default=False, nullable=False)
    fallback_reason = Column(String(255), nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Booking(ref='{self.booking_ref}', state='{self.state}', price={self.price})>"

"""
Carrier request and result types.

A booking attempt ends in exactly one of CarrierIssued, FallbackIssued or
CarrierRejected, discriminated by 'outcome'.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from backend.app.models.enums import ServiceType, ShipmentType


class Address(BaseModel):
    name: str = ""
    phone: str = ""
    address_line: str = ""
    address_line_2: str = ""
    pincode: str = ""
    city: str = ""
    state: str = ""

    def label(self) -> str:
        return f"{self.city}, {self.state} {self.pincode}".strip(", ")


class CarrierBookingRequest(BaseModel):
    """
    One shipment to book with the carrier.

    Goods travel from 'sender' (the configured warehouse when omitted)
    to 'recipient'. Reverse returns must name the pickup 'sender'.
    """
    booking_ref: str
    shipment_type: ShipmentType = ShipmentType.FORWARD
    recipient: Address = Field(default_factory=Address)
    sender: Optional[Address] = None
    weight_kg: Decimal = Decimal("0")
    unit_count: int = 1
    declared_value: Decimal = Decimal("0")
    service_type: ServiceType = ServiceType.STANDARD
    description: Optional[str] = None


class _AttemptResult(BaseModel):
    attempts: int = 0
    retry_count: int = 0
    processing_time_ms: int = 0


class CarrierIssued(_AttemptResult):
    """The carrier issued a real waybill."""
    outcome: Literal["ISSUED"] = "ISSUED"
    waybill: str
    tracking_url: Optional[str] = None
    raw_response: Dict[str, Any] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        return True

    @property
    def fallback_mode(self) -> bool:
        return False


class FallbackCause(str, enum.Enum):
    AUTH = "AUTH"                      # Carrier refused our credentials
    EXHAUSTED = "EXHAUSTED"            # Every attempt failed transiently
    NO_CREDENTIALS = "NO_CREDENTIALS"  # Never called, nothing configured


class FallbackIssued(_AttemptResult):
    """Carrier unreachable or misconfigured; waybill synthesized locally."""
    outcome: Literal["FALLBACK"] = "FALLBACK"
    waybill: str
    tracking_url: Optional[str] = None
    cause: FallbackCause
    fallback_reason: str

    @property
    def success(self) -> bool:
        return True

    @property
    def fallback_mode(self) -> bool:
        return True


class CarrierRejected(_AttemptResult):
    """Terminal failure: invalid request or carrier returned 400."""
    outcome: Literal["REJECTED"] = "REJECTED"
    error_code: str
    error: str
    field: Optional[str] = None

    @property
    def success(self) -> bool:
        return False

    @property
    def fallback_mode(self) -> bool:
        return False


CarrierBookingResult = Annotated[
    Union[CarrierIssued, FallbackIssued, CarrierRejected],
    Field(discriminator="outcome"),
]


class LabelResult(BaseModel):
    waybill: str
    fallback_mode: bool = False
    content: Optional[bytes] = None
    content_type: Optional[str] = None
    error: Optional[str] = None


class TrackingStatus(str, enum.Enum):
    BOOKED = "BOOKED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    RETURNED = "RETURNED"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


class TrackingEvent(BaseModel):
    status: TrackingStatus
    code: Optional[str] = None
    location: Optional[str] = None
    timestamp: Optional[datetime] = None
    description: Optional[str] = None


class TrackingResult(BaseModel):
    waybill: str
    status: TrackingStatus
    events: List[TrackingEvent] = Field(default_factory=list)
    fallback_mode: bool = False
    error: Optional[str] = None

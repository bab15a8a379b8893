"""
Shipment (post-booking) schemas.
"""

from pydantic import BaseModel
from typing import Optional


class LabelUnavailableResponse(BaseModel):
    """Returned instead of a PDF when the carrier cannot supply a label."""
    waybill: str
    fallback_mode: bool = True
    error: Optional[str]

"""
Ledger schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from backend.app.models.billing_enums import LedgerEntryType


class BalanceResponse(BaseModel):
    """Schema for an account balance."""
    account_id: str
    balance: Decimal
    total_credited: Decimal
    total_debited: Decimal
    last_credited_at: Optional[datetime]
    updated_at: datetime

    class Config:
        from_attributes = True


class LedgerEntryResponse(BaseModel):
    """Schema for one ledger entry."""
    id: int
    account_id: str
    entry_type: LedgerEntryType
    amount: Decimal
    description: str
    reference: Optional[str]
    balance_after: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerEntryListResponse(BaseModel):
    entries: List[LedgerEntryResponse]
    limit: int
    offset: int


class RechargeRequest(BaseModel):
    """Schema for crediting an account."""
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Amount in rupees")
    description: str = Field("Account recharge", min_length=1, max_length=255)
    reference: Optional[str] = Field(None, max_length=100, description="Payment reference")


class RechargeResponse(BaseModel):
    account_id: str
    balance: Decimal
    entry_id: int

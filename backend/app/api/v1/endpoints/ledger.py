"""
Ledger API Endpoints.

Read-only views of the caller's balance and transaction history.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_account_id
from backend.app.domain.ledger.ledger_service import LedgerService
from backend.app.schemas.ledger import BalanceResponse, LedgerEntryListResponse, LedgerEntryResponse

router = APIRouter(prefix="/ledger", tags=["Ledger"])


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db)
):
    """Current balance. A first call creates a zero balance."""
    balance = await LedgerService.get_balance(db, account_id)
    return BalanceResponse.model_validate(balance)


@router.get("/entries", response_model=LedgerEntryListResponse)
async def list_entries(
    limit: int = Query(50, ge=1, le=200, description="Items per page"),
    offset: int = Query(0, ge=0),
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db)
):
    """Transaction history, newest first."""
    entries = await LedgerService.list_entries(db, account_id, limit=limit, offset=offset)
    return LedgerEntryListResponse(
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
        limit=limit,
        offset=offset,
    )

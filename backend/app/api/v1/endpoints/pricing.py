"""
Pricing API Endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_account_id, get_current_user
from backend.app.domain.pricing.pricing_resolver import PricingResolver
from backend.app.models.enums import AccountRole
from backend.app.schemas.pricing import QuoteRequest, QuoteResponse

router = APIRouter(prefix="/pricing", tags=["Pricing"])


@router.post("/quote", response_model=QuoteResponse)
async def quote(
    quote_request: QuoteRequest,
    current_user: dict = Depends(get_current_user),
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Itemized price for the caller's account, plus totals for other box counts.

    Nothing is debited.
    """
    role = current_user.get("role") or AccountRole.CUSTOMER
    breakdown = await PricingResolver.resolve_price(
        db,
        account_id=account_id,
        role=role,
        weight_kg=quote_request.weight_kg,
        zone_key=quote_request.zone_key,
        unit_count=quote_request.unit_count,
        service_type=quote_request.service_type,
        recipient_type=quote_request.recipient_type,
    )
    estimates = await PricingResolver.quote_estimates(
        db,
        account_id=account_id,
        role=role,
        weight_kg=quote_request.weight_kg,
        zone_key=quote_request.zone_key,
        service_type=quote_request.service_type,
        recipient_type=quote_request.recipient_type,
        unit_counts=quote_request.estimate_unit_counts,
    )
    return QuoteResponse(breakdown=breakdown, estimates=estimates)

"""
Admin Billing API Endpoints.

Account recharges, ledger replay and pricing rule management.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from typing import List

from backend.app.db.session import get_db
from backend.app.domain.ledger.ledger_service import LedgerService, ReplayReport
from backend.app.domain.pricing.pricing_resolver import PricingResolver
from backend.app.models.pricing_rule import (
    AccountPricingRule,
    RolePricingRule,
    ServiceTypePricingRule,
    WeightPricingTier,
    ZonePricingRule,
)
from backend.app.models.enums import AccountRole
from backend.app.schemas.ledger import RechargeRequest, RechargeResponse
from backend.app.schemas.pricing import (
    AccountRuleCreate, AccountRuleResponse,
    RoleRuleCreate, RoleRuleResponse,
    WeightTierCreate, WeightTierResponse,
    ZoneRuleCreate, ZoneRuleResponse,
    ServiceTypeRuleCreate, ServiceTypeRuleResponse,
    RulesSummaryResponse,
)
from backend.app.core.guards import require_role
from backend.app.services.audit import log_admin_action, AuditAction

router = APIRouter(prefix="/admin", tags=["Admin - Billing"])

admin_only = require_role([AccountRole.ADMIN])

RULE_MODELS = {
    "account-rules": AccountPricingRule,
    "role-rules": RolePricingRule,
    "weight-tiers": WeightPricingTier,
    "zone-rules": ZonePricingRule,
    "service-type-rules": ServiceTypePricingRule,
}


@router.post("/ledger/{account_id}/recharge", response_model=RechargeResponse)
async def recharge_account(
    recharge: RechargeRequest,
    account_id: str = Path(..., description="Account ID"),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Credit an account after payment has been received."""
    result = await LedgerService.credit(
        db, account_id, recharge.amount, recharge.description, reference=recharge.reference
    )

    await log_admin_action(
        db,
        current_user,
        AuditAction.ACCOUNT_RECHARGED,
        account_id=account_id,
        reference=recharge.reference,
        metadata={"amount": str(recharge.amount), "entry_id": result.entry_id}
    )

    return RechargeResponse(account_id=account_id, balance=result.balance, entry_id=result.entry_id)


@router.get("/ledger/{account_id}/replay", response_model=ReplayReport)
async def replay_ledger(
    account_id: str = Path(..., description="Account ID"),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Re-derive the balance from the ledger and report any mismatch."""
    return await LedgerService.replay(db, account_id)


async def _create_rule(db: AsyncSession, current_user: dict, model, payload):
    data = payload.model_dump()
    if data.get("effective_from") is None:
        data.pop("effective_from", None)

    rule = model(**data, is_active=True, version=1, created_by=current_user.get("sub"))
    db.add(rule)
    await db.commit()
    await db.refresh(rule)

    await log_admin_action(
        db,
        current_user,
        AuditAction.PRICING_RULE_CREATED,
        account_id=data.get("account_id"),
        reference=f"{model.__tablename__}:{rule.id}",
        metadata=payload.model_dump(mode="json", exclude_none=True)
    )
    return rule


async def _list_rules(db: AsyncSession, model):
    result = await db.execute(select(model).order_by(desc(model.is_active), desc(model.id)))
    return result.scalars().all()


@router.post("/pricing/account-rules", response_model=AccountRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_account_rule(
    rule: AccountRuleCreate,
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Negotiated per-box rate for one account."""
    return await _create_rule(db, current_user, AccountPricingRule, rule)


@router.get("/pricing/account-rules", response_model=List[AccountRuleResponse])
async def list_account_rules(current_user: dict = Depends(admin_only), db: AsyncSession = Depends(get_db)):
    return await _list_rules(db, AccountPricingRule)


@router.post("/pricing/role-rules", response_model=RoleRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_role_rule(
    rule: RoleRuleCreate,
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Base rate and multiplier for every account of a role."""
    return await _create_rule(db, current_user, RolePricingRule, rule)


@router.get("/pricing/role-rules", response_model=List[RoleRuleResponse])
async def list_role_rules(current_user: dict = Depends(admin_only), db: AsyncSession = Depends(get_db)):
    return await _list_rules(db, RolePricingRule)


@router.post("/pricing/weight-tiers", response_model=WeightTierResponse, status_code=status.HTTP_201_CREATED)
async def create_weight_tier(
    rule: WeightTierCreate,
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    return await _create_rule(db, current_user, WeightPricingTier, rule)


@router.get("/pricing/weight-tiers", response_model=List[WeightTierResponse])
async def list_weight_tiers(current_user: dict = Depends(admin_only), db: AsyncSession = Depends(get_db)):
    return await _list_rules(db, WeightPricingTier)


@router.post("/pricing/zone-rules", response_model=ZoneRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_zone_rule(
    rule: ZoneRuleCreate,
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    return await _create_rule(db, current_user, ZonePricingRule, rule)


@router.get("/pricing/zone-rules", response_model=List[ZoneRuleResponse])
async def list_zone_rules(current_user: dict = Depends(admin_only), db: AsyncSession = Depends(get_db)):
    return await _list_rules(db, ZonePricingRule)


@router.post("/pricing/service-type-rules", response_model=ServiceTypeRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_service_type_rule(
    rule: ServiceTypeRuleCreate,
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Overrides the configured surcharge for one service type."""
    return await _create_rule(db, current_user, ServiceTypePricingRule, rule)


@router.get("/pricing/service-type-rules", response_model=List[ServiceTypeRuleResponse])
async def list_service_type_rules(current_user: dict = Depends(admin_only), db: AsyncSession = Depends(get_db)):
    return await _list_rules(db, ServiceTypePricingRule)


@router.get("/pricing/summary", response_model=RulesSummaryResponse)
async def pricing_rules_summary(
    account_id: str = Query(..., description="Account to diagnose"),
    role: AccountRole = Query(AccountRole.BRAND),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """Active rules that would apply when pricing for this account."""
    return await PricingResolver.get_rules_summary(db, account_id, role)


@router.delete("/pricing/{kind}/{rule_id}")
async def deactivate_rule(
    kind: str = Path(..., description="Rule kind, e.g. zone-rules"),
    rule_id: int = Path(..., description="Rule ID"),
    current_user: dict = Depends(admin_only),
    db: AsyncSession = Depends(get_db)
):
    """
    Deactivate a pricing rule.

    Rules are never deleted so past quotes stay explainable.
    """
    model = RULE_MODELS.get(kind)
    if model is None:
        raise HTTPException(status_code=404, detail=f"Unknown rule kind '{kind}'")

    result = await db.execute(select(model).where(model.id == rule_id))
    rule = result.scalar_one_or_none()
    if not rule:
        raise HTTPException(status_code=404, detail="Pricing rule not found")

    if not rule.is_active:
        raise HTTPException(status_code=400, detail="Pricing rule is already inactive")

    rule.is_active = False
    await db.commit()

    await log_admin_action(
        db,
        current_user,
        AuditAction.PRICING_RULE_DEACTIVATED,
        reference=f"{model.__tablename__}:{rule_id}",
    )

    return {"message": "Pricing rule deactivated", "kind": kind, "rule_id": rule_id}

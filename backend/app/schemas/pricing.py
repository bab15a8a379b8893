"""
Pricing schemas.

Quote requests and the create/response pairs for each rule kind.
"""

from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from backend.app.domain.pricing.pricing_resolver import PricingBreakdown, QuoteEstimate
from backend.app.models.enums import AccountRole, RecipientType, ServiceType


class QuoteRequest(BaseModel):
    """Schema for a price quote."""
    weight_kg: Decimal = Field(..., ge=0)
    unit_count: int = Field(default=1, ge=1)
    zone_key: Optional[str] = Field(None, max_length=20)
    service_type: ServiceType = ServiceType.STANDARD
    recipient_type: Optional[RecipientType] = None
    estimate_unit_counts: List[int] = Field(default_factory=lambda: [1, 5, 10])


class QuoteResponse(BaseModel):
    breakdown: PricingBreakdown
    estimates: List[QuoteEstimate]


class RuleValidity(BaseModel):
    effective_from: Optional[datetime] = None
    effective_until: Optional[datetime] = None

    @model_validator(mode="after")
    def check_window(self):
        if self.effective_from and self.effective_until and self.effective_until <= self.effective_from:
            raise ValueError("effective_until must be after effective_from")
        return self


class RuleResponseBase(BaseModel):
    id: int
    is_active: bool
    version: int
    effective_from: datetime
    effective_until: Optional[datetime]
    created_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class AccountRuleCreate(RuleValidity):
    account_id: str = Field(..., min_length=1, max_length=64)
    per_box_rate: Decimal = Field(..., gt=0)


class AccountRuleResponse(RuleResponseBase):
    account_id: str
    per_box_rate: Decimal


class RoleRuleCreate(RuleValidity):
    role: AccountRole
    base_rate: Decimal = Field(..., gt=0)
    multiplier: Decimal = Field(default=Decimal("1"), gt=0)


class RoleRuleResponse(RuleResponseBase):
    role: AccountRole
    base_rate: Decimal
    multiplier: Decimal


class WeightTierCreate(RuleValidity):
    min_weight_kg: Decimal = Field(..., ge=0)
    max_weight_kg: Optional[Decimal] = Field(None, gt=0)
    additional_rate_per_kg: Decimal = Field(..., ge=0)

    @model_validator(mode="after")
    def check_bounds(self):
        if self.max_weight_kg is not None and self.max_weight_kg <= self.min_weight_kg:
            raise ValueError("max_weight_kg must be greater than min_weight_kg")
        return self


class WeightTierResponse(RuleResponseBase):
    min_weight_kg: Decimal
    max_weight_kg: Optional[Decimal]
    additional_rate_per_kg: Decimal


class ZoneRuleCreate(RuleValidity):
    zone_key: str = Field(..., min_length=1, max_length=20)
    zone_name: Optional[str] = Field(None, max_length=100)
    surcharge: Decimal = Field(..., ge=0)


class ZoneRuleResponse(RuleResponseBase):
    zone_key: str
    zone_name: Optional[str]
    surcharge: Decimal


class ServiceTypeRuleCreate(RuleValidity):
    service_type: ServiceType
    surcharge: Decimal = Field(..., ge=0)


class ServiceTypeRuleResponse(RuleResponseBase):
    service_type: ServiceType
    surcharge: Decimal


class RulesSummaryResponse(BaseModel):
    """Active rules that would take part in pricing for one account."""
    account: List[AccountRuleResponse]
    role: List[RoleRuleResponse]
    weight_tiers: List[WeightTierResponse]
    zones: List[ZoneRuleResponse]
    service_types: List[ServiceTypeRuleResponse]

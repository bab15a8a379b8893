"""
Pricing Rule database models.

Layered, versionable rules read by PricingResolver. Written only through the
admin pricing endpoints.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base, Money, Weight
from backend.app.models.enums import AccountRole, ServiceType


class VersionedRuleMixin:
    """Validity and audit columns shared by every rule kind."""

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    version = Column(Integer, default=1, nullable=False)
    effective_from = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    effective_until = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class AccountPricingRule(VersionedRuleMixin, Base):
    """Negotiated per-box rate for one account. Wins over role rules."""
    __tablename__ = "account_pricing_rules"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    account_id = Column(String(64), nullable=False, index=True)
    per_box_rate = Column(Money, nullable=False)

    def __repr__(self):
        return f"<AccountPricingRule(account_id='{self.account_id}', rate={self.per_box_rate})>"


class RolePricingRule(VersionedRuleMixin, Base):
    """Base rate and multiplier for every account of a role."""
    __tablename__ = "role_pricing_rules"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    role = Column(Enum(AccountRole), nullable=False, index=True)
    base_rate = Column(Money, nullable=False)
    multiplier = Column(Money, nullable=False, default=1)

    def __repr__(self):
        return f"<RolePricingRule(role='{self.role}', base={self.base_rate}, x{self.multiplier})>"


class WeightPricingTier(VersionedRuleMixin, Base):
    """
    Per-kg surcharge above 'min_weight_kg' for weights in [min, max).

    An open-ended tier has no max.
    """
    __tablename__ = "weight_pricing_tiers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    min_weight_kg = Column(Weight, nullable=False)
    max_weight_kg = Column(Weight, nullable=True)
    additional_rate_per_kg = Column(Money, nullable=False)

    def __repr__(self):
        return f"<WeightPricingTier([{self.min_weight_kg}, {self.max_weight_kg}) @ {self.additional_rate_per_kg}/kg)>"


class ZonePricingRule(VersionedRuleMixin, Base):
    """Flat surcharge keyed by destination pincode."""
    __tablename__ = "zone_pricing_rules"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    zone_key = Column(String(20), nullable=False, index=True)
    zone_name = Column(String(100), nullable=True)
    surcharge = Column(Money, nullable=False)

    def __repr__(self):
        return f"<ZonePricingRule(zone='{self.zone_key}', surcharge={self.surcharge})>"


class ServiceTypePricingRule(VersionedRuleMixin, Base):
    """Overrides the configured surcharge table for one service type."""
    __tablename__ = "service_type_pricing_rules"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    service_type = Column(Enum(ServiceType), nullable=False, index=True)
    surcharge = Column(Money, nullable=False)

    def __repr__(self):
        return f"<ServiceTypePricingRule(service='{self.service_type}', surcharge={self.surcharge})>"

"""
Pricing Rule Resolver.

Computes the per-box price of a shipment from layered rules.

Base rate, first match wins:
1. Account-specific active rule (multiplier 1)
2. Role-based active rule (base rate x multiplier)
3. System default rate (multiplier 1)

Surcharges are independent and added per unit: weight tier, zone (pincode),
service type, recipient type. Lookup failures degrade to the default and
are recorded as a "default fallback" applied rule; only invalid input raises.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy import select, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import PricingError
from backend.app.domain.ledger.ledger_service import to_money
from backend.app.models.enums import AccountRole, RecipientType, ServiceType
from backend.app.models.pricing_rule import (
    AccountPricingRule,
    RolePricingRule,
    ServiceTypePricingRule,
    WeightPricingTier,
    ZonePricingRule,
)

logger = logging.getLogger("shipments.pricing")

DEFAULT_FALLBACK = "default fallback"
ZERO = Decimal("0.00")


class PricingBreakdown(BaseModel):
    """
    Itemized price, every amount in paise.

    base_amount is base_rate x role_multiplier rounded half-up to paise, and
    it is the amount that takes part in the totals:

        total_per_unit == base_amount + weight + zone + service + recipient
        grand_total == total_per_unit x unit_count

    Both hold exactly. base_rate and role_multiplier are kept as configured
    so the rounding stays visible.
    """
    base_rate: Decimal
    role_multiplier: Decimal
    base_amount: Decimal  # to_money(base_rate x role_multiplier)
    base_source: str  # ACCOUNT | ROLE | DEFAULT
    weight_surcharge: Decimal
    zone_surcharge: Decimal
    service_type_surcharge: Decimal
    recipient_type_surcharge: Decimal
    total_per_unit: Decimal
    unit_count: int
    grand_total: Decimal
    applied_rules: List[str]


class QuoteEstimate(BaseModel):
    unit_count: int
    total_per_unit: Decimal
    grand_total: Decimal


def _coerce_enum(enum_cls, value, field: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        raise PricingError(f"Unknown {field}: {value}", field=field)


def _active(model, now: datetime):
    return (
        model.is_active.is_(True),
        model.effective_from <= now,
        or_(model.effective_until.is_(None), model.effective_until >= now),
    )


class PricingResolver:

    @staticmethod
    async def resolve_price(
        db: AsyncSession,
        account_id: str,
        role,
        weight_kg,
        zone_key: Optional[str] = None,
        unit_count: int = 1,
        service_type=ServiceType.STANDARD,
        recipient_type=None,
    ) -> PricingBreakdown:
        """
        Resolve the itemized price for 'unit_count' boxes.

        Raises:
            PricingError: negative weight, non-positive unit count, unknown enum value
        """
        role = _coerce_enum(AccountRole, role, "role")
        service_type = _coerce_enum(ServiceType, service_type or ServiceType.STANDARD, "service_type")
        recipient_type = _coerce_enum(RecipientType, recipient_type, "recipient_type")

        try:
            weight = Decimal(str(weight_kg))
        except ArithmeticError:
            raise PricingError(f"Invalid weight: {weight_kg}", field="weight_kg")
        if weight < 0:
            raise PricingError("Weight cannot be negative", field="weight_kg")
        if not isinstance(unit_count, int) or unit_count <= 0:
            raise PricingError("Unit count must be a positive integer", field="unit_count")

        now = datetime.now(timezone.utc)
        applied: List[str] = []

        # 1. Base rate
        base_rate, multiplier, base_source = await PricingResolver._resolve_base(db, account_id, role, now, applied)
        base_amount = to_money(base_rate * multiplier)

        # 2. Surcharges
        weight_surcharge = await PricingResolver._weight_surcharge(db, weight, now, applied)
        zone_surcharge = await PricingResolver._zone_surcharge(db, zone_key, now, applied)
        service_surcharge = await PricingResolver._service_surcharge(db, service_type, now, applied)

        recipient_surcharge = ZERO
        if recipient_type == RecipientType.DISTRIBUTOR:
            percent = settings.distributor_surcharge_percent
            recipient_surcharge = to_money(base_amount * percent / Decimal("100"))
            applied.append(
                f"Recipient surcharge DISTRIBUTOR: {percent}% of ₹{base_amount} = ₹{recipient_surcharge}"
            )

        total_per_unit = base_amount + weight_surcharge + zone_surcharge + service_surcharge + recipient_surcharge
        grand_total = total_per_unit * unit_count

        breakdown = PricingBreakdown(
            base_rate=to_money(base_rate),
            role_multiplier=multiplier,
            base_amount=base_amount,
            base_source=base_source,
            weight_surcharge=weight_surcharge,
            zone_surcharge=zone_surcharge,
            service_type_surcharge=service_surcharge,
            recipient_type_surcharge=recipient_surcharge,
            total_per_unit=total_per_unit,
            unit_count=unit_count,
            grand_total=grand_total,
            applied_rules=applied,
        )
        logger.debug(
            "Price resolved",
            extra={"account_id": account_id, "total_per_unit": str(total_per_unit), "grand_total": str(grand_total)}
        )
        return breakdown

    @staticmethod
    async def _lookup_failed(db: AsyncSession, what: str, exc: Exception, applied: List[str], detail: str) -> None:
        logger.warning("Pricing lookup failed", extra={"lookup": what, "error": str(exc)})
        await db.rollback()
        applied.append(f"{DEFAULT_FALLBACK}: {what} lookup failed, {detail}")

    @staticmethod
    async def _resolve_base(db: AsyncSession, account_id: str, role: AccountRole, now: datetime, applied: List[str]):
        default_rate = to_money(settings.default_courier_rate)
        try:
            result = await db.execute(
                select(AccountPricingRule)
                .where(AccountPricingRule.account_id == account_id, *_active(AccountPricingRule, now))
                .order_by(AccountPricingRule.version.desc(), AccountPricingRule.effective_from.desc())
                .limit(1)
            )
            account_rule = result.scalar_one_or_none()
            if account_rule:
                rate = to_money(account_rule.per_box_rate)
                applied.append(f"Account rate (rule #{account_rule.id}): ₹{rate} per box")
                return rate, Decimal("1"), "ACCOUNT"

            result = await db.execute(
                select(RolePricingRule)
                .where(RolePricingRule.role == role, *_active(RolePricingRule, now))
                .order_by(RolePricingRule.version.desc(), RolePricingRule.effective_from.desc())
                .limit(1)
            )
            role_rule = result.scalar_one_or_none()
            if role_rule:
                rate = to_money(role_rule.base_rate)
                multiplier = Decimal(str(role_rule.multiplier))
                applied.append(
                    f"Role rate {role.value} (rule #{role_rule.id}): ₹{rate} × {multiplier} = ₹{to_money(rate * multiplier)}"
                )
                return rate, multiplier, "ROLE"
        except SQLAlchemyError as e:
            await PricingResolver._lookup_failed(db, "base rate", e, applied, f"system rate ₹{default_rate}")
            return default_rate, Decimal("1"), "DEFAULT"

        applied.append(f"System default rate: ₹{default_rate} per box")
        return default_rate, Decimal("1"), "DEFAULT"

    @staticmethod
    async def _weight_surcharge(db: AsyncSession, weight: Decimal, now: datetime, applied: List[str]) -> Decimal:
        try:
            result = await db.execute(
                select(WeightPricingTier)
                .where(
                    WeightPricingTier.min_weight_kg <= weight,
                    or_(WeightPricingTier.max_weight_kg.is_(None), WeightPricingTier.max_weight_kg > weight),
                    *_active(WeightPricingTier, now),
                )
                .order_by(WeightPricingTier.min_weight_kg.desc(), WeightPricingTier.id.desc())
                .limit(1)
            )
            tier = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await PricingResolver._lookup_failed(db, "weight tier", e, applied, "no weight surcharge")
            return ZERO

        if not tier:
            return ZERO

        tier_min = Decimal(str(tier.min_weight_kg))
        rate = to_money(tier.additional_rate_per_kg)
        surcharge = to_money((weight - tier_min) * rate)
        upper = f"{tier.max_weight_kg}kg" if tier.max_weight_kg is not None else "∞"
        applied.append(
            f"Weight surcharge (tier #{tier.id}, {tier.min_weight_kg}kg-{upper}): "
            f"({weight}kg − {tier_min}kg) × ₹{rate}/kg = ₹{surcharge}"
        )
        return surcharge

    @staticmethod
    async def _zone_surcharge(db: AsyncSession, zone_key: Optional[str], now: datetime, applied: List[str]) -> Decimal:
        if not zone_key:
            return ZERO
        try:
            result = await db.execute(
                select(ZonePricingRule)
                .where(ZonePricingRule.zone_key == zone_key, *_active(ZonePricingRule, now))
                .order_by(ZonePricingRule.version.desc(), ZonePricingRule.id.desc())
                .limit(1)
            )
            zone = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await PricingResolver._lookup_failed(db, "zone", e, applied, "no zone surcharge")
            return ZERO

        if not zone:
            return ZERO

        surcharge = to_money(zone.surcharge)
        name = f" ({zone.zone_name})" if zone.zone_name else ""
        applied.append(f"Zone surcharge {zone.zone_key}{name}: ₹{surcharge}")
        return surcharge

    @staticmethod
    async def _service_surcharge(db: AsyncSession, service_type: ServiceType, now: datetime, applied: List[str]) -> Decimal:
        configured = to_money(settings.service_type_surcharges.get(service_type.value, ZERO))
        try:
            result = await db.execute(
                select(ServiceTypePricingRule)
                .where(ServiceTypePricingRule.service_type == service_type, *_active(ServiceTypePricingRule, now))
                .order_by(ServiceTypePricingRule.version.desc(), ServiceTypePricingRule.id.desc())
                .limit(1)
            )
            rule = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await PricingResolver._lookup_failed(db, "service type", e, applied, f"configured ₹{configured}")
            return configured

        if rule:
            surcharge = to_money(rule.surcharge)
            applied.append(f"Service {service_type.value} surcharge (rule #{rule.id}): ₹{surcharge}")
            return surcharge

        if configured > 0:
            applied.append(f"Service {service_type.value} surcharge: ₹{configured}")
        return configured

    @staticmethod
    async def quote_estimates(
        db: AsyncSession,
        account_id: str,
        role,
        weight_kg,
        zone_key: Optional[str] = None,
        service_type=ServiceType.STANDARD,
        recipient_type=None,
        unit_counts: Sequence[int] = (1, 5, 10),
    ) -> List[QuoteEstimate]:
        """Price the same shipment for several box counts."""
        if not unit_counts or any(not isinstance(n, int) or n <= 0 for n in unit_counts):
            raise PricingError("Unit counts must be positive integers", field="unit_counts")

        single = await PricingResolver.resolve_price(
            db, account_id, role, weight_kg, zone_key, 1, service_type, recipient_type
        )
        return [
            QuoteEstimate(
                unit_count=n,
                total_per_unit=single.total_per_unit,
                grand_total=single.total_per_unit * n,
            )
            for n in unit_counts
        ]

    @staticmethod
    async def get_rules_summary(db: AsyncSession, account_id: str, role) -> Dict[str, list]:
        """Active rules that could apply to this account, by kind."""
        role = _coerce_enum(AccountRole, role, "role")
        now = datetime.now(timezone.utc)

        async def fetch(model, *criteria):
            result = await db.execute(select(model).where(*criteria, *_active(model, now)).order_by(model.id))
            return list(result.scalars().all())

        return {
            "account": await fetch(AccountPricingRule, AccountPricingRule.account_id == account_id),
            "role": await fetch(RolePricingRule, RolePricingRule.role == role),
            "weight_tiers": await fetch(WeightPricingTier),
            "zones": await fetch(ZonePricingRule),
            "service_types": await fetch(ServiceTypePricingRule),
        }

"""
Pricing Resolver Tests.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from backend.app.core.exceptions import PricingError
from backend.app.domain.ledger.ledger_service import to_money
from backend.app.domain.pricing.pricing_resolver import DEFAULT_FALLBACK, PricingResolver
from backend.app.models.enums import AccountRole, RecipientType, ServiceType
from backend.app.models.pricing_rule import (
    RolePricingRule,
    ServiceTypePricingRule,
    WeightPricingTier,
    ZonePricingRule,
)
from backend.tests.helpers import set_account_rate, yesterday


def assert_identities(breakdown):
    assert breakdown.base_amount == to_money(breakdown.base_rate * breakdown.role_multiplier)
    assert breakdown.total_per_unit == (
        breakdown.base_amount
        + breakdown.weight_surcharge
        + breakdown.zone_surcharge
        + breakdown.service_type_surcharge
        + breakdown.recipient_type_surcharge
    )
    assert breakdown.grand_total == breakdown.total_per_unit * breakdown.unit_count


@pytest.mark.asyncio
async def test_system_default_when_no_rules(db_session):
    breakdown = await PricingResolver.resolve_price(db_session, "ACC-1", AccountRole.BRAND, Decimal("2"))

    assert breakdown.base_source == "DEFAULT"
    assert breakdown.grand_total == Decimal("100.00")
    assert breakdown.applied_rules == ["System default rate: ₹100.00 per box"]
    assert_identities(breakdown)


@pytest.mark.asyncio
async def test_account_rule_wins_over_role_rule(db_session):
    db_session.add(RolePricingRule(
        role=AccountRole.BRAND, base_rate=Decimal("90"), multiplier=Decimal("1.5"), effective_from=yesterday()
    ))
    await db_session.commit()
    rule = await set_account_rate(db_session, "ACC-1", 75)

    breakdown = await PricingResolver.resolve_price(db_session, "ACC-1", AccountRole.BRAND, Decimal("1"))

    assert breakdown.base_source == "ACCOUNT"
    assert breakdown.role_multiplier == Decimal("1")
    assert breakdown.base_amount == Decimal("75.00")
    assert breakdown.applied_rules[0] == f"Account rate (rule #{rule.id}): ₹75.00 per box"


@pytest.mark.asyncio
async def test_role_rule_applies_multiplier(db_session):
    db_session.add(RolePricingRule(
        role=AccountRole.DISTRIBUTOR, base_rate=Decimal("80"), multiplier=Decimal("1.25"), effective_from=yesterday()
    ))
    await db_session.commit()

    breakdown = await PricingResolver.resolve_price(db_session, "ACC-2", "distributor", Decimal("1"))

    assert breakdown.base_source == "ROLE"
    assert breakdown.base_amount == Decimal("100.00")
    assert_identities(breakdown)


@pytest.mark.asyncio
async def test_role_multiplier_rounded_to_paise(db_session):
    db_session.add(RolePricingRule(
        role=AccountRole.BRAND, base_rate=Decimal("45.55"), multiplier=Decimal("1.15"), effective_from=yesterday()
    ))
    await db_session.commit()

    breakdown = await PricingResolver.resolve_price(
        db_session, "ACC-1", AccountRole.BRAND, Decimal("1"),
        unit_count=3, recipient_type=RecipientType.DISTRIBUTOR,
    )

    # 45.55 x 1.15 = 52.3825
    assert breakdown.base_rate == Decimal("45.55")
    assert breakdown.role_multiplier == Decimal("1.15")
    assert breakdown.base_amount == Decimal("52.38")
    assert breakdown.recipient_type_surcharge == Decimal("5.24")  # 10% of 52.38
    assert breakdown.total_per_unit == Decimal("57.62")
    assert breakdown.grand_total == Decimal("172.86")
    assert_identities(breakdown)
    assert breakdown.applied_rules[0].endswith("₹45.55 × 1.15 = ₹52.38")


@pytest.mark.asyncio
async def test_expired_and_inactive_rules_ignored(db_session):
    now = datetime.now(timezone.utc)
    db_session.add_all([
        RolePricingRule(
            role=AccountRole.BRAND, base_rate=Decimal("10"), multiplier=Decimal("1"),
            effective_from=now - timedelta(days=10), effective_until=now - timedelta(days=1),
        ),
        RolePricingRule(
            role=AccountRole.BRAND, base_rate=Decimal("20"), multiplier=Decimal("1"),
            effective_from=now - timedelta(days=10), is_active=False,
        ),
        RolePricingRule(
            role=AccountRole.BRAND, base_rate=Decimal("30"), multiplier=Decimal("1"),
            effective_from=now + timedelta(days=1),
        ),
    ])
    await db_session.commit()

    breakdown = await PricingResolver.resolve_price(db_session, "ACC-1", AccountRole.BRAND, Decimal("1"))

    assert breakdown.base_source == "DEFAULT"


@pytest.mark.asyncio
async def test_surcharges_applied_in_order(db_session):
    db_session.add_all([
        WeightPricingTier(
            min_weight_kg=Decimal("0"), max_weight_kg=Decimal("5"),
            additional_rate_per_kg=Decimal("0"), effective_from=yesterday(),
        ),
        WeightPricingTier(
            min_weight_kg=Decimal("5"), max_weight_kg=None,
            additional_rate_per_kg=Decimal("12"), effective_from=yesterday(),
        ),
        ZonePricingRule(zone_key="560001", zone_name="Bengaluru Central", surcharge=Decimal("15"), effective_from=yesterday()),
    ])
    await db_session.commit()

    breakdown = await PricingResolver.resolve_price(
        db_session, "ACC-1", AccountRole.BRAND, Decimal("7.5"),
        zone_key="560001", unit_count=3,
        service_type=ServiceType.EXPRESS, recipient_type=RecipientType.DISTRIBUTOR,
    )

    assert breakdown.weight_surcharge == Decimal("30.00")  # (7.5 - 5) x 12
    assert breakdown.zone_surcharge == Decimal("15.00")
    assert breakdown.service_type_surcharge == Decimal("25.00")
    assert breakdown.recipient_type_surcharge == Decimal("10.00")  # 10% of 100
    assert breakdown.total_per_unit == Decimal("180.00")
    assert breakdown.grand_total == Decimal("540.00")
    assert_identities(breakdown)

    rules = breakdown.applied_rules
    assert rules[0].startswith("System default rate")
    assert rules[1].startswith("Weight surcharge")
    assert rules[2].startswith("Zone surcharge 560001 (Bengaluru Central)")
    assert rules[3] == "Service EXPRESS surcharge: ₹25.00"
    assert rules[4].startswith("Recipient surcharge DISTRIBUTOR")


@pytest.mark.asyncio
async def test_weight_tier_boundaries(db_session):
    db_session.add_all([
        WeightPricingTier(
            min_weight_kg=Decimal("0"), max_weight_kg=Decimal("5"),
            additional_rate_per_kg=Decimal("2"), effective_from=yesterday(),
        ),
        WeightPricingTier(
            min_weight_kg=Decimal("5"), max_weight_kg=Decimal("10"),
            additional_rate_per_kg=Decimal("4"), effective_from=yesterday(),
        ),
    ])
    await db_session.commit()

    at_boundary = await PricingResolver.resolve_price(db_session, "ACC-1", AccountRole.BRAND, Decimal("5"))
    above_all = await PricingResolver.resolve_price(db_session, "ACC-1", AccountRole.BRAND, Decimal("12"))

    # 5kg falls in [5, 10): surcharge (5 - 5) x 4
    assert at_boundary.weight_surcharge == Decimal("0.00")
    assert "tier #2" in at_boundary.applied_rules[1]
    assert above_all.weight_surcharge == Decimal("0.00")
    assert len(above_all.applied_rules) == 1


@pytest.mark.asyncio
async def test_service_type_rule_overrides_configured_surcharge(db_session):
    db_session.add(ServiceTypePricingRule(
        service_type=ServiceType.SAME_DAY, surcharge=Decimal("70"), effective_from=yesterday()
    ))
    await db_session.commit()

    breakdown = await PricingResolver.resolve_price(
        db_session, "ACC-1", AccountRole.BRAND, Decimal("1"), service_type="same_day"
    )

    assert breakdown.service_type_surcharge == Decimal("70.00")
    assert breakdown.grand_total == Decimal("170.00")


@pytest.mark.asyncio
async def test_lookup_failure_degrades_to_default(db_session, mocker):
    mocker.patch.object(
        db_session, "execute", side_effect=OperationalError("SELECT", {}, Exception("database is locked"))
    )

    breakdown = await PricingResolver.resolve_price(
        db_session, "ACC-1", AccountRole.BRAND, Decimal("2"), zone_key="560001"
    )

    assert breakdown.base_source == "DEFAULT"
    assert breakdown.grand_total == Decimal("100.00")
    assert any(rule.startswith(DEFAULT_FALLBACK) for rule in breakdown.applied_rules)
    assert_identities(breakdown)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs, field",
    [
        ({"weight_kg": Decimal("-1")}, "weight_kg"),
        ({"weight_kg": Decimal("1"), "unit_count": 0}, "unit_count"),
        ({"weight_kg": Decimal("1"), "service_type": "TELEPORT"}, "service_type"),
        ({"weight_kg": Decimal("1"), "role": "PIRATE"}, "role"),
    ],
)
async def test_invalid_inputs_raise(db_session, kwargs, field):
    params = {"account_id": "ACC-1", "role": AccountRole.BRAND}
    params.update(kwargs)

    with pytest.raises(PricingError) as exc_info:
        await PricingResolver.resolve_price(db_session, **params)

    assert exc_info.value.field == field


@pytest.mark.asyncio
async def test_quote_estimates_scale_with_unit_count(db_session):
    await set_account_rate(db_session, "ACC-1", 40)

    estimates = await PricingResolver.quote_estimates(db_session, "ACC-1", AccountRole.BRAND, Decimal("1"))

    assert [(e.unit_count, e.grand_total) for e in estimates] == [
        (1, Decimal("40.00")), (5, Decimal("200.00")), (10, Decimal("400.00"))
    ]


@pytest.mark.asyncio
async def test_rules_summary_lists_active_rules_only(db_session):
    await set_account_rate(db_session, "ACC-1", 75)
    await set_account_rate(db_session, "ACC-2", 60)
    db_session.add_all([
        ZonePricingRule(zone_key="560001", surcharge=Decimal("20"), effective_from=yesterday()),
        ZonePricingRule(zone_key="110001", surcharge=Decimal("30"), effective_from=yesterday(), is_active=False),
        RolePricingRule(role=AccountRole.CUSTOMER, base_rate=Decimal("120"), effective_from=yesterday()),
    ])
    await db_session.commit()

    summary = await PricingResolver.get_rules_summary(db_session, "ACC-1", "BRAND")

    assert [r.account_id for r in summary["account"]] == ["ACC-1"]
    assert summary["role"] == []
    assert [z.zone_key for z in summary["zones"]] == ["560001"]

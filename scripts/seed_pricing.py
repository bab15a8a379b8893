"""
Database seeding script for default pricing rules.

Creates role rates, weight tiers and service type surcharges for development.
Run this script after database is set up but before first use.
"""

import asyncio
import sys
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.models.pricing_rule import (
    RolePricingRule,
    ServiceTypePricingRule,
    WeightPricingTier,
)
from backend.app.models.enums import AccountRole, ServiceType
from sqlalchemy import select


async def seed_pricing():
    """
    Seed default pricing rules.

    Creates:
    - Role rates for BRAND, SERVICE_CENTER and CUSTOMER
    - Weight tiers: 0-5kg free, 5-20kg ₹10/kg, 20kg+ ₹15/kg
    - Service type surcharges matching the configured defaults
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting pricing seeding...")

        result = await db.execute(select(RolePricingRule).limit(1))
        if result.scalar_one_or_none():
            print("ℹ️  Pricing rules already exist, skipping seeding")
            return

        db.add_all([
            RolePricingRule(role=AccountRole.BRAND, base_rate=Decimal("100"), multiplier=Decimal("1"), created_by="seed"),
            RolePricingRule(role=AccountRole.SERVICE_CENTER, base_rate=Decimal("100"), multiplier=Decimal("0.9"), created_by="seed"),
            RolePricingRule(role=AccountRole.CUSTOMER, base_rate=Decimal("120"), multiplier=Decimal("1"), created_by="seed"),
        ])
        print("✅ Created role rates")

        db.add_all([
            WeightPricingTier(min_weight_kg=Decimal("0"), max_weight_kg=Decimal("5"), additional_rate_per_kg=Decimal("0"), created_by="seed"),
            WeightPricingTier(min_weight_kg=Decimal("5"), max_weight_kg=Decimal("20"), additional_rate_per_kg=Decimal("10"), created_by="seed"),
            WeightPricingTier(min_weight_kg=Decimal("20"), max_weight_kg=None, additional_rate_per_kg=Decimal("15"), created_by="seed"),
        ])
        print("✅ Created weight tiers")

        db.add_all([
            ServiceTypePricingRule(service_type=ServiceType.EXPRESS, surcharge=Decimal("25"), created_by="seed"),
            ServiceTypePricingRule(service_type=ServiceType.OVERNIGHT, surcharge=Decimal("50"), created_by="seed"),
            ServiceTypePricingRule(service_type=ServiceType.SAME_DAY, surcharge=Decimal("100"), created_by="seed"),
        ])
        print("✅ Created service type surcharges")

        await db.commit()

        print("\n🎉 Pricing seeding completed successfully!")
        print("\nNote: account-specific rates and zone surcharges are managed via /v1/admin/pricing/*")


if __name__ == "__main__":
    asyncio.run(seed_pricing())

"""
Ledger consistency check.

Replays every account's ledger and compares it with the stored balance.
Exits non-zero when any account disagrees, so it can run from cron or CI.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.app.db.session import AsyncSessionLocal
from backend.app.domain.booking.booking_service import BookingService
from backend.app.domain.ledger.ledger_service import LedgerService
from backend.app.models.account_balance import AccountBalance
from sqlalchemy import select


async def verify_ledger() -> int:
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(AccountBalance.account_id).order_by(AccountBalance.account_id))
        account_ids = result.scalars().all()
        print(f"Replaying {len(account_ids)} accounts...")

        failures = 0
        for account_id in account_ids:
            report = await LedgerService.replay(db, account_id)
            if report.consistent:
                continue
            failures += 1
            print(
                f"❌ {account_id}: stored ₹{report.stored_balance}, replayed ₹{report.replayed_balance}, "
                f"{len(report.mismatches)} bad entries"
            )

        stuck = await BookingService.find_stuck_bookings(db)
        for booking in stuck:
            print(f"⚠️  {booking.booking_ref} ({booking.account_id}) stuck in {booking.state.value}, ₹{booking.price}")

        if failures:
            print(f"\n{failures} account(s) inconsistent")
            return 1
        print("✅ All ledgers consistent")
        return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(verify_ledger()))

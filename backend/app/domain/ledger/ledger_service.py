"""
Ledger Service (Domain Logic).

Account balances and the append-only ledger. Every mutation is one
transaction: balance change + ledger entry carrying the post-operation
balance, committed together.

Concurrency: the balance row is changed only through conditional UPDATE ...
RETURNING statements, so the database never lets two debits both spend the
same funds. Within one process, operations on the same account are also
serialized by a per-account asyncio.Lock held until commit, so ledger
entries are written in balance order.
"""

import asyncio
import logging
import weakref
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from pydantic import BaseModel, computed_field
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import InsufficientFundsError, ValidationError
from backend.app.models.account_balance import AccountBalance
from backend.app.models.billing_enums import LedgerEntryType
from backend.app.models.ledger_entry import LedgerEntry

logger = logging.getLogger("shipments.ledger")

PAISE = Decimal("0.01")
REFUND_PREFIX = "REFUND: "

# Per event loop, then per account. A lock lives only while some coroutine
# holds it or waits on it.
_account_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, weakref.WeakValueDictionary]" = (
    weakref.WeakKeyDictionary()
)


def account_lock(account_id: str) -> asyncio.Lock:
    locks = _account_locks.setdefault(asyncio.get_running_loop(), weakref.WeakValueDictionary())
    lock = locks.get(account_id)
    if lock is None:
        lock = asyncio.Lock()
        locks[account_id] = lock
    return lock


def to_money(value) -> Decimal:
    """Quantize to paise, half-up."""
    return Decimal(str(value)).quantize(PAISE, rounding=ROUND_HALF_UP)


class FundsCheck(BaseModel):
    sufficient: bool
    balance: Decimal
    shortfall: Optional[Decimal] = None


class LedgerResult(BaseModel):
    balance: Decimal
    entry_id: int


class ReplayMismatch(BaseModel):
    entry_id: int
    expected_balance: Decimal
    recorded_balance: Decimal


class ReplayReport(BaseModel):
    account_id: str
    entry_count: int
    replayed_balance: Decimal
    stored_balance: Decimal
    mismatches: List[ReplayMismatch] = []

    @computed_field
    @property
    def consistent(self) -> bool:
        return not self.mismatches and self.replayed_balance == self.stored_balance


class LedgerService:

    @staticmethod
    def _validate_amount(amount) -> Decimal:
        try:
            value = to_money(amount)
        except ArithmeticError:
            raise ValidationError(f"Invalid amount: {amount}", field="amount")
        if value <= 0:
            raise ValidationError("Amount must be positive", field="amount")
        return value

    @staticmethod
    async def get_balance(db: AsyncSession, account_id: str) -> AccountBalance:
        """
        Fetch the balance record, creating a zero balance on first access.

        Safe to call concurrently: a lost insert race falls back to re-reading.
        """
        result = await db.execute(
            select(AccountBalance)
            .where(AccountBalance.account_id == account_id)
            .execution_options(populate_existing=True)
        )
        balance = result.scalar_one_or_none()
        if balance:
            return balance

        balance = AccountBalance(
            account_id=account_id,
            balance=Decimal("0.00"),
            total_credited=Decimal("0.00"),
            total_debited=Decimal("0.00"),
        )
        db.add(balance)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            result = await db.execute(
                select(AccountBalance)
                .where(AccountBalance.account_id == account_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one()

        await db.refresh(balance)
        logger.info("Account balance initialised", extra={"account_id": account_id})
        return balance

    @staticmethod
    async def check_sufficient(db: AsyncSession, account_id: str, amount) -> FundsCheck:
        """Read-only sufficiency check."""
        required = LedgerService._validate_amount(amount)
        record = await LedgerService.get_balance(db, account_id)
        balance = to_money(record.balance)

        if balance >= required:
            return FundsCheck(sufficient=True, balance=balance)
        return FundsCheck(sufficient=False, balance=balance, shortfall=required - balance)

    @staticmethod
    async def debit(
        db: AsyncSession,
        account_id: str,
        amount,
        description: str,
        reference: Optional[str] = None
    ) -> LedgerResult:
        """
        Take funds from an account.

        Raises:
            InsufficientFundsError: balance < amount. Nothing is written.
        """
        value = LedgerService._validate_amount(amount)
        await LedgerService.get_balance(db, account_id)

        async with account_lock(account_id):
            stmt = (
                update(AccountBalance)
                .where(
                    AccountBalance.account_id == account_id,
                    AccountBalance.balance >= value,
                )
                .values(
                    balance=AccountBalance.balance - value,
                    total_debited=AccountBalance.total_debited + value,
                )
                .returning(AccountBalance.balance)
                .execution_options(synchronize_session=False)
            )
            new_balance = (await db.execute(stmt)).scalar_one_or_none()

            if new_balance is None:
                # Zero rows matched, nothing was written
                current = await LedgerService.check_sufficient(db, account_id, value)
                await db.commit()
                logger.warning(
                    "Debit rejected",
                    extra={"account_id": account_id, "amount": str(value), "balance": str(current.balance)}
                )
                raise InsufficientFundsError(account_id, current.balance, value)

            entry = await LedgerService._append_entry(
                db, account_id, LedgerEntryType.DEBIT, value, description, reference, new_balance
            )
            await db.commit()

        logger.info(
            "Account debited",
            extra={"account_id": account_id, "amount": str(value), "reference": reference, "entry_id": entry.id}
        )
        return LedgerResult(balance=to_money(new_balance), entry_id=entry.id)

    @staticmethod
    async def refund(
        db: AsyncSession,
        account_id: str,
        amount,
        description: str,
        reference: Optional[str] = None
    ) -> LedgerResult:
        """
        Return previously debited funds. No upper bound check.

        Reduces total_debited so the balance invariant keeps holding.
        """
        value = LedgerService._validate_amount(amount)
        if not description.startswith(REFUND_PREFIX):
            description = REFUND_PREFIX + description
        return await LedgerService._increment(
            db, account_id, value, description, reference,
            values={"total_debited": AccountBalance.total_debited - value},
            event="Account refunded",
        )

    @staticmethod
    async def credit(
        db: AsyncSession,
        account_id: str,
        amount,
        description: str,
        reference: Optional[str] = None
    ) -> LedgerResult:
        """Recharge an account."""
        value = LedgerService._validate_amount(amount)
        return await LedgerService._increment(
            db, account_id, value, description, reference,
            values={
                "total_credited": AccountBalance.total_credited + value,
                "last_credited_at": datetime.now(timezone.utc),
            },
            event="Account credited",
        )

    @staticmethod
    async def _increment(
        db: AsyncSession,
        account_id: str,
        value: Decimal,
        description: str,
        reference: Optional[str],
        values: dict,
        event: str
    ) -> LedgerResult:
        await LedgerService.get_balance(db, account_id)

        async with account_lock(account_id):
            stmt = (
                update(AccountBalance)
                .where(AccountBalance.account_id == account_id)
                .values(balance=AccountBalance.balance + value, **values)
                .returning(AccountBalance.balance)
                .execution_options(synchronize_session=False)
            )
            new_balance = (await db.execute(stmt)).scalar_one()
            entry = await LedgerService._append_entry(
                db, account_id, LedgerEntryType.CREDIT, value, description, reference, new_balance
            )
            await db.commit()

        logger.info(
            event,
            extra={"account_id": account_id, "amount": str(value), "reference": reference, "entry_id": entry.id}
        )
        return LedgerResult(balance=to_money(new_balance), entry_id=entry.id)

    @staticmethod
    async def _append_entry(
        db: AsyncSession,
        account_id: str,
        entry_type: LedgerEntryType,
        amount: Decimal,
        description: str,
        reference: Optional[str],
        balance_after
    ) -> LedgerEntry:
        # Timestamp taken after the balance row is locked so entries sort in balance order
        entry = LedgerEntry(
            account_id=account_id,
            entry_type=entry_type,
            amount=amount,
            description=description[:255],
            reference=reference,
            balance_after=to_money(balance_after),
            created_at=datetime.now(timezone.utc),
        )
        db.add(entry)
        await db.flush()
        return entry

    @staticmethod
    async def list_entries(
        db: AsyncSession,
        account_id: str,
        limit: int = 50,
        offset: int = 0
    ) -> List[LedgerEntry]:
        """Transaction history, newest first."""
        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.account_id == account_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    @staticmethod
    async def find_entries_by_reference(db: AsyncSession, reference: str) -> List[LedgerEntry]:
        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.reference == reference)
            .order_by(LedgerEntry.created_at, LedgerEntry.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def replay(db: AsyncSession, account_id: str) -> ReplayReport:
        """
        Re-derive the balance from the ledger.

        Each entry's balance_after must equal the running signed sum, and the
        final sum must equal the stored balance.
        """
        record = await LedgerService.get_balance(db, account_id)

        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.account_id == account_id)
            .order_by(LedgerEntry.created_at, LedgerEntry.id)
        )
        entries = result.scalars().all()

        running = Decimal("0.00")
        mismatches = []
        for entry in entries:
            running = to_money(running + to_money(entry.signed_amount))
            if to_money(entry.balance_after) != running:
                mismatches.append(ReplayMismatch(
                    entry_id=entry.id,
                    expected_balance=running,
                    recorded_balance=to_money(entry.balance_after),
                ))

        report = ReplayReport(
            account_id=account_id,
            entry_count=len(entries),
            replayed_balance=running,
            stored_balance=to_money(record.balance),
            mismatches=mismatches,
        )
        if not report.consistent:
            logger.error(
                "Ledger replay mismatch",
                extra={"account_id": account_id, "mismatch_count": len(mismatches)}
            )
        return report

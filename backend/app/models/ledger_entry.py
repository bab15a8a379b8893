"""
Ledger Entry database model.

Immutable, append-only record of every balance movement.
"""

from sqlalchemy import Column, Integer, DateTime, Enum, String, Index
from sqlalchemy.sql import func
from backend.app.db.session import Base, Money
from backend.app.models.billing_enums import LedgerEntryType


class LedgerEntry(Base):
    """
    Ledger Entry model.

    Carries the account balance as of this entry (never recomputed).
    Replaying entries in (created_at, id) order must reproduce every
    balance_after and the current balance.
    NO updates or deletions allowed.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ix_ledger_entries_account_created", "account_id", "created_at", "id"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    account_id = Column(String(64), nullable=False, index=True)

    entry_type = Column(Enum(LedgerEntryType), nullable=False)
    amount = Column(Money, nullable=False)  # Always positive; sign comes from entry_type
    description = Column(String(255), nullable=False)
    reference = Column(String(100), nullable=True, index=True)  # e.g. booking ref

    balance_after = Column(Money, nullable=False)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def signed_amount(self):
        return self.amount if self.entry_type == LedgerEntryType.CREDIT else -self.amount

    def __repr__(self):
        return f"<LedgerEntry(id={self.id}, type='{self.entry_type.value}', amount={self.amount})>"

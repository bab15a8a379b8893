"""
Account Balance database model.

Current funds of a merchant account. Mutated only by LedgerService.
"""

from decimal import Decimal
from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base, Money


class AccountBalance(Base):
    """
    Account Balance model.

    Invariant: balance == total_credited - total_debited, and balance >= 0.
    Refunds reduce total_debited rather than adding to total_credited.
    """
    __tablename__ = "account_balances"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_account_balance_non_negative"),
    )
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    account_id = Column(String(64), unique=True, nullable=False, index=True)

    balance = Column(Money, nullable=False, default=Decimal("0.00"))
    total_credited = Column(Money, nullable=False, default=Decimal("0.00"))
    total_debited = Column(Money, nullable=False, default=Decimal("0.00"))

    last_credited_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<AccountBalance(account_id='{self.account_id}', balance={self.balance})>"

"""
Billing and booking enumerations.
"""

import enum


class LedgerEntryType(str, enum.Enum):
    """Ledger entry type enumeration."""
    DEBIT = "DEBIT"  # Money leaving the account
    CREDIT = "CREDIT"  # Money entering the account (recharge or refund)


class BookingState(str, enum.Enum):
    """
    Booking saga states.

    PRICED -> DEBITED -> CARRIER_CALLED -> SETTLED | COMPENSATED
    """
    PRICED = "PRICED"
    DEBITED = "DEBITED"
    CARRIER_CALLED = "CARRIER_CALLED"
    SETTLED = "SETTLED"  # Waybill issued (real or fallback); debit stands
    COMPENSATED = "COMPENSATED"  # Carrier refused; debit refunded
    ABORTED = "ABORTED"  # Debit lost a race; nothing to undo
    COMPENSATION_FAILED = "COMPENSATION_FAILED"  # Needs operator


TERMINAL_BOOKING_STATES = (
    BookingState.SETTLED,
    BookingState.COMPENSATED,
    BookingState.ABORTED,
)


class CostSource(str, enum.Enum):
    """Where the carrier cost on a margin record came from."""
    CARRIER_BILLING = "CARRIER_BILLING"
    ESTIMATED = "ESTIMATED"

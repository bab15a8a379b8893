"""
Audit Log Database Model.

Tracks booking saga transitions, admin actions and operator alerts.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - BOOKING_TRANSITION (one per saga state change, keyed by booking ref)
    - ACCOUNT_RECHARGED
    - PRICING_RULE_CREATED / PRICING_RULE_DEACTIVATED
    - CARRIER_AUTH_ALERT / COMPENSATION_FAILED (operator alerts)
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(String(100), index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # What the action was about
    account_id = Column(String(64), index=True, nullable=True)
    reference = Column(String(100), index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', reference={self.reference})>"

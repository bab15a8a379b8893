"""
Margin Record database model.

Price charged vs carrier cost for one settled booking. Created once, never mutated.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base, Money, Weight
from backend.app.models.billing_enums import CostSource


class MarginRecord(Base):
    __tablename__ = "margin_records"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    booking_ref = Column(String(40), unique=True, nullable=False, index=True)
    account_id = Column(String(64), nullable=True, index=True)
    waybill = Column(String(64), nullable=True)

    price_charged = Column(Money, nullable=False)
    carrier_cost = Column(Money, nullable=False)
    cost_source = Column(Enum(CostSource), nullable=False)
    margin = Column(Money, nullable=False)
    margin_percent = Column(Money, nullable=False)

    # Context
    weight_kg = Column(Weight, nullable=True)
    service_type = Column(String(20), nullable=True)
    origin = Column(String(100), nullable=True)
    destination = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<MarginRecord(ref='{self.booking_ref}', margin={self.margin}, pct={self.margin_percent})>"

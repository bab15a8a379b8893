"""
Dead Letter Queue (DLQ) Model.

Best-effort work that must never fail a booking (margin recording today) is
parked here on error and replayed by the backfill job.
"""

import enum
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from sqlalchemy.sql import func
from backend.app.db.session import Base


class DLQStatus(str, enum.Enum):
    FAILED = "FAILED"        # Waiting for the next backfill run
    RETRYING = "RETRYING"    # Picked up by a run in progress
    PROCESSED = "PROCESSED"
    ARCHIVED = "ARCHIVED"    # Retry budget spent, needs an operator


class DeadLetterQueue(Base):
    """One failed task, keyed by the booking or batch it belongs to."""
    __tablename__ = "dead_letter_queue"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    task_name = Column(String(100), nullable=False, index=True)
    reference = Column(String(100), nullable=True, index=True)

    error_message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)  # Arguments needed to re-run the task

    status = Column(Enum(DLQStatus), default=DLQStatus.FAILED, nullable=False, index=True)
    retry_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_retry_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<DLQ(id={self.id}, task='{self.task_name}', ref='{self.reference}', status='{self.status}')>"

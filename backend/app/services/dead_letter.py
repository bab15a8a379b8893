"""
Dead Letter Queue service.

Parks failed best-effort tasks so they can be replayed out-of-band.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.dlq import DeadLetterQueue, DLQStatus

logger = logging.getLogger("shipments.dlq")

MAX_RETRIES = 5


async def enqueue_failed_task(
    db: AsyncSession,
    task_name: str,
    error: str,
    payload: Optional[Dict[str, Any]] = None,
    reference: Optional[str] = None
) -> DeadLetterQueue:
    """Persist a failed task. Commits."""
    item = DeadLetterQueue(
        task_name=task_name,
        reference=reference,
        error_message=error[:2000],
        payload=payload,
        status=DLQStatus.FAILED,
        retry_count=0,
    )
    db.add(item)
    await db.commit()
    logger.warning("Task parked in DLQ", extra={"task_name": task_name, "reference": reference})
    return item


async def list_retryable(db: AsyncSession, task_name: str, limit: int = 100) -> List[DeadLetterQueue]:
    result = await db.execute(
        select(DeadLetterQueue)
        .where(
            DeadLetterQueue.task_name == task_name,
            DeadLetterQueue.status.in_([DLQStatus.FAILED, DLQStatus.RETRYING]),
        )
        .order_by(DeadLetterQueue.id)
        .limit(limit)
    )
    return list(result.scalars().all())


def mark_attempt(item: DeadLetterQueue) -> None:
    item.status = DLQStatus.RETRYING
    item.retry_count = (item.retry_count or 0) + 1
    item.last_retry_at = datetime.now(timezone.utc)


def mark_processed(item: DeadLetterQueue) -> None:
    item.status = DLQStatus.PROCESSED
    item.processed_at = datetime.now(timezone.utc)


def mark_failed(item: DeadLetterQueue, error: str) -> None:
    item.error_message = error[:2000]
    item.status = DLQStatus.ARCHIVED if item.retry_count >= MAX_RETRIES else DLQStatus.FAILED

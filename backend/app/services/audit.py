"""
Audit logging service for booking transitions, admin actions and operator alerts.

Provides centralized logging for reconciliation and compliance.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    # Booking saga
    BOOKING_TRANSITION = "BOOKING_TRANSITION"

    # Ledger
    ACCOUNT_RECHARGED = "ACCOUNT_RECHARGED"

    # Pricing administration
    PRICING_RULE_CREATED = "PRICING_RULE_CREATED"
    PRICING_RULE_DEACTIVATED = "PRICING_RULE_DEACTIVATED"

    # Margins
    MARGIN_BACKFILL_RUN = "MARGIN_BACKFILL_RUN"

    # Operator alerts
    CARRIER_AUTH_ALERT = "CARRIER_AUTH_ALERT"
    COMPENSATION_FAILED = "COMPENSATION_FAILED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[str] = None,
    actor_username: Optional[str] = None,
    account_id: Optional[str] = None,
    reference: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = True
) -> AuditLog:
    """
    Write an audit row.

    Args:
        db: Database session
        action: Action being recorded (use AuditAction constants)
        actor_id: Subject of the caller's token, None for system actions
        account_id: Account the event concerns
        reference: Booking ref, rule id or other key the event is about
        metadata: Additional JSON-safe context
        commit: When False the row joins the caller's transaction

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        account_id=account_id,
        reference=reference,
        meta_data=metadata
    )

    db.add(audit_log)
    if commit:
        await db.commit()
        await db.refresh(audit_log)

    return audit_log


async def log_admin_action(
    db: AsyncSession,
    current_user: dict,
    action: str,
    account_id: Optional[str] = None,
    reference: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """Log an action performed through an admin endpoint."""
    return await log_event(
        db=db,
        action=action,
        actor_id=str(current_user.get("sub")),
        actor_username=current_user.get("sub"),
        account_id=account_id,
        reference=reference,
        metadata=metadata
    )


async def get_audit_trail(
    db: AsyncSession,
    reference: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, oldest first.

    Filtering by booking ref gives the full saga history of that booking.
    """
    query = select(AuditLog).order_by(AuditLog.timestamp, AuditLog.id)

    if reference:
        query = query.where(AuditLog.reference == reference)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_recent_alerts(db: AsyncSession, limit: int = 50) -> list[AuditLog]:
    """Most recent operator alerts."""
    query = select(AuditLog).where(
        AuditLog.action.in_([AuditAction.CARRIER_AUTH_ALERT, AuditAction.COMPENSATION_FAILED])
    ).order_by(desc(AuditLog.timestamp)).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())

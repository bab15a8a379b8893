"""
Margin Recorder (Domain Logic).

Records price charged vs carrier cost for settled bookings. Best-effort:
recording failures are parked in the DLQ and replayed by backfill_margins,
never surfaced to the booking.

Carrier cost comes from the carrier's billing fields when present; otherwise
it is a heuristic estimate flagged CostSource.ESTIMATED.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.domain.ledger.ledger_service import to_money
from backend.app.models.billing_enums import CostSource
from backend.app.models.enums import ServiceType
from backend.app.models.dlq import DLQStatus
from backend.app.models.margin_record import MarginRecord
from backend.app.services import dead_letter

logger = logging.getLogger("shipments.margin")

RECORD_MARGIN_TASK = "record_margin"
EXPEDITED = (ServiceType.EXPRESS.value, ServiceType.OVERNIGHT.value, ServiceType.SAME_DAY.value)


class CarrierCost(BaseModel):
    amount: Decimal
    source: CostSource
    detail: str = ""


class MarginContext(BaseModel):
    account_id: Optional[str] = None
    waybill: Optional[str] = None
    weight_kg: Optional[Decimal] = None
    service_type: Optional[str] = None
    origin: Optional[str] = None
    destination: Optional[str] = None


class MarginSummary(BaseModel):
    booking_count: int
    total_revenue: Decimal
    total_cost: Decimal
    total_margin: Decimal
    average_margin_percent: Decimal
    by_cost_source: Dict[str, int]


class BackfillReport(BaseModel):
    processed: int = 0
    failed: int = 0
    archived: int = 0


def _positive_decimal(value) -> Optional[Decimal]:
    if isinstance(value, dict):
        value = value.get("total")
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = to_money(value)
    except ArithmeticError:
        return None
    return amount if amount > 0 else None


def compute_margin(price_charged: Decimal, carrier_cost: Decimal):
    """(margin, margin_percent); percent is 0 when nothing was charged."""
    price = to_money(price_charged)
    margin = price - to_money(carrier_cost)
    if price == 0:
        return margin, Decimal("0.00")
    return margin, to_money(margin / price * 100)


class MarginService:

    @staticmethod
    def estimate_carrier_cost(weight_kg, service_type: Optional[str]) -> Decimal:
        """Per-kg rate with a minimum charge, plus fuel surcharge, plus GST."""
        weight = Decimal(str(weight_kg or 1))
        rate = settings.estimated_express_rate_per_kg if service_type in EXPEDITED else settings.estimated_rate_per_kg
        base = max(settings.estimated_minimum_charge, weight * rate)
        fuel = base * settings.estimated_fuel_surcharge_percent / 100
        gst = (base + fuel) * settings.estimated_gst_percent / 100
        return to_money(base + fuel + gst)

    @staticmethod
    def extract_carrier_cost(
        raw_response: Optional[Dict[str, Any]],
        weight_kg=None,
        service_type: Optional[str] = None
    ) -> CarrierCost:
        """Billing total from the carrier response, else an estimate."""
        candidates = []
        if isinstance(raw_response, dict):
            candidates.append(raw_response)
            data = raw_response.get("data")
            if isinstance(data, list) and data and isinstance(data[0], dict):
                candidates.append(data[0])

        for source in candidates:
            for key in ("billing", "charges", "amount", "total_charge"):
                amount = _positive_decimal(source.get(key))
                if amount is not None:
                    return CarrierCost(amount=amount, source=CostSource.CARRIER_BILLING, detail=f"carrier {key}")

        estimate = MarginService.estimate_carrier_cost(weight_kg, service_type)
        return CarrierCost(
            amount=estimate,
            source=CostSource.ESTIMATED,
            detail="heuristic estimate, pending cost reconciliation feed",
        )

    @staticmethod
    async def record_margin(
        db: AsyncSession,
        booking_ref: str,
        price_charged,
        carrier_cost: CarrierCost,
        context: MarginContext
    ) -> MarginRecord:
        """
        Persist the margin for a settled booking.

        Idempotent per booking ref: an existing record is returned unchanged.
        """
        existing = await db.execute(select(MarginRecord).where(MarginRecord.booking_ref == booking_ref))
        record = existing.scalar_one_or_none()
        if record:
            return record

        margin, margin_percent = compute_margin(price_charged, carrier_cost.amount)
        record = MarginRecord(
            booking_ref=booking_ref,
            account_id=context.account_id,
            waybill=context.waybill,
            price_charged=to_money(price_charged),
            carrier_cost=to_money(carrier_cost.amount),
            cost_source=carrier_cost.source,
            margin=margin,
            margin_percent=margin_percent,
            weight_kg=context.weight_kg,
            service_type=context.service_type,
            origin=context.origin,
            destination=context.destination,
        )
        db.add(record)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            existing = await db.execute(select(MarginRecord).where(MarginRecord.booking_ref == booking_ref))
            return existing.scalar_one()

        await db.refresh(record)
        if carrier_cost.source == CostSource.ESTIMATED:
            logger.info("Margin recorded with estimated carrier cost", extra={"booking_ref": booking_ref})
        return record

    @staticmethod
    async def record_margin_safely(
        db: AsyncSession,
        booking_ref: str,
        price_charged,
        carrier_cost: CarrierCost,
        context: MarginContext
    ) -> Optional[MarginRecord]:
        """record_margin that never raises; failures go to the DLQ."""
        try:
            return await MarginService.record_margin(db, booking_ref, price_charged, carrier_cost, context)
        except Exception as e:
            logger.exception("Margin recording failed", extra={"booking_ref": booking_ref})
            await db.rollback()
            payload = {
                "booking_ref": booking_ref,
                "price_charged": str(price_charged),
                "carrier_cost": carrier_cost.model_dump(mode="json"),
                "context": context.model_dump(mode="json"),
            }
            try:
                await dead_letter.enqueue_failed_task(
                    db, RECORD_MARGIN_TASK, f"{type(e).__name__}: {e}", payload, reference=booking_ref
                )
            except Exception:
                logger.exception("Could not park margin task in DLQ", extra={"booking_ref": booking_ref, "dlq_payload": payload})
                await db.rollback()
            return None

    @staticmethod
    async def backfill_margins(db: AsyncSession, limit: int = 100) -> BackfillReport:
        """Replay parked record_margin tasks."""
        report = BackfillReport()
        for item in await dead_letter.list_retryable(db, RECORD_MARGIN_TASK, limit=limit):
            payload = item.payload or {}
            try:
                await MarginService.record_margin(
                    db,
                    payload["booking_ref"],
                    Decimal(payload["price_charged"]),
                    CarrierCost.model_validate(payload["carrier_cost"]),
                    MarginContext.model_validate(payload.get("context") or {}),
                )
            except Exception as e:
                await db.rollback()
                await db.refresh(item)
                dead_letter.mark_attempt(item)
                dead_letter.mark_failed(item, f"{type(e).__name__}: {e}")
                await db.commit()
                if item.status == DLQStatus.ARCHIVED:
                    report.archived += 1
                else:
                    report.failed += 1
                logger.warning("Margin backfill failed", extra={"dlq_id": item.id, "error": str(e)})
                continue

            dead_letter.mark_attempt(item)
            dead_letter.mark_processed(item)
            await db.commit()
            report.processed += 1

        logger.info("Margin backfill finished", extra=report.model_dump())
        return report

    @staticmethod
    async def get_margin_summary(
        db: AsyncSession,
        account_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> MarginSummary:
        criteria = []
        if account_id:
            criteria.append(MarginRecord.account_id == account_id)
        if start:
            criteria.append(MarginRecord.created_at >= start)
        if end:
            criteria.append(MarginRecord.created_at <= end)

        totals = (await db.execute(
            select(
                func.count(MarginRecord.id),
                func.coalesce(func.sum(MarginRecord.price_charged), 0),
                func.coalesce(func.sum(MarginRecord.carrier_cost), 0),
                func.coalesce(func.sum(MarginRecord.margin), 0),
            ).where(*criteria)
        )).one()

        by_source = (await db.execute(
            select(MarginRecord.cost_source, func.count(MarginRecord.id))
            .where(*criteria)
            .group_by(MarginRecord.cost_source)
        )).all()

        count = totals[0] or 0
        revenue = to_money(totals[1])
        total_margin = to_money(totals[3])
        average_percent = to_money(total_margin / revenue * 100) if revenue else Decimal("0.00")

        return MarginSummary(
            booking_count=count,
            total_revenue=revenue,
            total_cost=to_money(totals[2]),
            total_margin=total_margin,
            average_margin_percent=average_percent,
            by_cost_source={
                (source.value if hasattr(source, "value") else str(source)): n for source, n in by_source
            },
        )

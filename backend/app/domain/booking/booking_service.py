"""
Booking Service (Domain Logic).

Saga that ties pricing, the ledger and the carrier together:

    PRICED -> DEBITED -> CARRIER_CALLED -> SETTLED | COMPENSATED

Every transition is committed together with a BOOKING_TRANSITION audit row,
so bookings stuck mid-saga can be found from the database. Once a debit has
happened the saga ends in SETTLED or COMPENSATED; if the refund itself fails
the booking is parked in COMPENSATION_FAILED and CompensationFailure is raised.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select, or_, and_, exists
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    CompensationFailure,
    InsufficientFundsError,
    ResourceNotFoundError,
    ValidationError,
)
from backend.app.domain.carrier.gateway import CarrierGateway
from backend.app.domain.carrier.models import (
    Address,
    CarrierBookingRequest,
    CarrierBookingResult,
    CarrierIssued,
    CarrierRejected,
    FallbackCause,
    FallbackIssued,
)
from backend.app.domain.carrier.validation import validate_booking_request
from backend.app.domain.ledger.ledger_service import LedgerService, to_money
from backend.app.domain.margin.margin_service import MarginContext, MarginService
from backend.app.domain.pricing.pricing_resolver import PricingBreakdown, PricingResolver
from backend.app.models.billing_enums import BookingState, LedgerEntryType
from backend.app.models.booking import Booking
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.enums import AccountRole, RecipientType, ServiceType, ShipmentType
from backend.app.services.audit import AuditAction, get_audit_trail, log_event

logger = logging.getLogger("shipments.booking")


def new_booking_ref() -> str:
    return f"BK{uuid.uuid4().hex[:12].upper()}"


def new_batch_ref() -> str:
    return f"BT{uuid.uuid4().hex[:12].upper()}"


class ShipmentOrder(BaseModel):
    """One shipment as requested by the account holder."""
    recipient: Address
    sender: Optional[Address] = None
    shipment_type: ShipmentType = ShipmentType.FORWARD
    weight_kg: Decimal
    unit_count: int = 1
    declared_value: Decimal = Decimal("0")
    service_type: ServiceType = ServiceType.STANDARD
    recipient_type: Optional[RecipientType] = None
    zone_key: Optional[str] = None  # defaults to the recipient pincode
    description: Optional[str] = None

    def carrier_request(self, booking_ref: str) -> CarrierBookingRequest:
        return CarrierBookingRequest(
            booking_ref=booking_ref,
            shipment_type=self.shipment_type,
            recipient=self.recipient,
            sender=self.sender,
            weight_kg=self.weight_kg,
            unit_count=self.unit_count,
            declared_value=self.declared_value,
            service_type=self.service_type,
            description=self.description,
        )


class BookingRequest(ShipmentOrder):
    account_id: str
    role: AccountRole = AccountRole.BRAND


class BookingOutcome(BaseModel):
    booking_ref: str
    state: BookingState
    price: Decimal
    pricing: Optional[PricingBreakdown] = None
    waybill: Optional[str] = None
    tracking_url: Optional[str] = None
    fallback_mode: bool = False
    fallback_reason: Optional[str] = None
    error: Optional[str] = None
    debit_entry_id: Optional[int] = None
    refund_entry_id: Optional[int] = None
    balance_after: Optional[Decimal] = None


class BatchOutcome(BaseModel):
    batch_ref: str
    account_id: str
    total_debited: Decimal
    total_refunded: Decimal
    net_charged: Decimal
    balance_after: Decimal
    succeeded: int
    failed: int
    items: List[BookingOutcome] = Field(default_factory=list)


def _outcome(booking: Booking, pricing: Optional[PricingBreakdown], balance_after: Optional[Decimal]) -> BookingOutcome:
    return BookingOutcome(
        booking_ref=booking.booking_ref,
        state=booking.state,
        price=to_money(booking.price),
        pricing=pricing,
        waybill=booking.waybill,
        tracking_url=booking.tracking_url,
        fallback_mode=bool(booking.fallback_mode),
        fallback_reason=booking.fallback_reason,
        error=booking.error,
        debit_entry_id=booking.debit_entry_id,
        refund_entry_id=booking.refund_entry_id,
        balance_after=balance_after,
    )


class BookingService:

    @staticmethod
    async def _transition(db: AsyncSession, booking: Booking, to_state: BookingState, **meta) -> None:
        """Move the saga forward and commit the state with its audit row."""
        from_state = booking.state
        booking.state = to_state
        metadata = {"from": from_state.value if from_state else None, "to": to_state.value}
        metadata.update({k: v for k, v in meta.items() if v is not None})
        await log_event(
            db,
            AuditAction.BOOKING_TRANSITION,
            account_id=booking.account_id,
            reference=booking.booking_ref,
            metadata=metadata,
            commit=False,
        )
        await db.commit()
        logger.info(
            "Booking transition",
            extra={"booking_ref": booking.booking_ref, "from_state": metadata["from"], "to_state": to_state.value}
        )

    @staticmethod
    async def _call_carrier(gateway: CarrierGateway, request: CarrierBookingRequest) -> CarrierBookingResult:
        """Unexpected adapter exceptions count as terminal carrier failures."""
        try:
            return await gateway.issue_waybill(request)
        except Exception as e:
            logger.exception("Carrier adapter raised", extra={"booking_ref": request.booking_ref})
            return CarrierRejected(error_code="ERR_CARRIER_UNEXPECTED", error=f"{type(e).__name__}: {e}")

    @staticmethod
    async def _apply_carrier_result(db: AsyncSession, booking: Booking, result: CarrierBookingResult) -> None:
        if result.success:
            booking.waybill = result.waybill
            booking.tracking_url = result.tracking_url
            booking.fallback_mode = result.fallback_mode
            booking.fallback_reason = getattr(result, "fallback_reason", None)
            if isinstance(result, FallbackIssued) and result.cause == FallbackCause.AUTH:
                # Joins the SETTLED transition commit
                await log_event(
                    db,
                    AuditAction.CARRIER_AUTH_ALERT,
                    account_id=booking.account_id,
                    reference=booking.booking_ref,
                    metadata={"cause": result.cause.value, "reason": result.fallback_reason, "waybill": booking.waybill},
                    commit=False,
                )
        else:
            booking.error = f"{result.error_code}: {result.error}"

    @staticmethod
    async def _record_margin(
        db: AsyncSession,
        booking_ref: str,
        account_id: str,
        price: Decimal,
        order: ShipmentOrder,
        result: CarrierBookingResult,
    ) -> None:
        raw = result.raw_response if isinstance(result, CarrierIssued) else None
        cost = MarginService.extract_carrier_cost(raw, order.weight_kg, order.service_type.value)
        origin = order.sender.label() if order.sender else settings.warehouse_city
        context = MarginContext(
            account_id=account_id,
            waybill=result.waybill,
            weight_kg=order.weight_kg,
            service_type=order.service_type.value,
            origin=origin,
            destination=order.recipient.label(),
        )
        await MarginService.record_margin_safely(db, booking_ref, price, cost, context)

    @staticmethod
    async def _price(db: AsyncSession, account_id: str, role: AccountRole, order: ShipmentOrder) -> PricingBreakdown:
        return await PricingResolver.resolve_price(
            db,
            account_id=account_id,
            role=role,
            weight_kg=order.weight_kg,
            zone_key=order.zone_key or order.recipient.pincode,
            unit_count=order.unit_count,
            service_type=order.service_type,
            recipient_type=order.recipient_type,
        )

    @staticmethod
    async def book_shipment(
        db: AsyncSession,
        gateway: CarrierGateway,
        request: BookingRequest,
    ) -> BookingOutcome:
        """
        Book one shipment.

        Raises:
            ValidationError / PricingError: before any side effect
            InsufficientFundsError: before any debit, or when the debit loses a race
            CompensationFailure: the carrier refused and the refund failed
        """
        booking_ref = new_booking_ref()
        carrier_request = request.carrier_request(booking_ref)
        validate_booking_request(carrier_request)

        pricing = await BookingService._price(db, request.account_id, request.role, request)
        price = pricing.grand_total

        funds = await LedgerService.check_sufficient(db, request.account_id, price)
        if not funds.sufficient:
            raise InsufficientFundsError(request.account_id, funds.balance, price)

        booking = Booking(
            booking_ref=booking_ref,
            account_id=request.account_id,
            shipment_type=request.shipment_type,
            price=price,
            fallback_mode=False,
        )
        db.add(booking)
        await BookingService._transition(db, booking, BookingState.PRICED, price=str(price))

        try:
            debit = await LedgerService.debit(
                db, request.account_id, price, f"Shipment booking {booking_ref}", reference=booking_ref
            )
        except InsufficientFundsError as e:
            booking.error = e.message
            await BookingService._transition(db, booking, BookingState.ABORTED, reason="debit rejected")
            raise

        booking.debit_entry_id = debit.entry_id
        await BookingService._transition(db, booking, BookingState.DEBITED, entry_id=debit.entry_id)
        await BookingService._transition(db, booking, BookingState.CARRIER_CALLED)

        result = await BookingService._call_carrier(gateway, carrier_request)
        await BookingService._apply_carrier_result(db, booking, result)

        if result.success:
            await BookingService._transition(
                db, booking, BookingState.SETTLED,
                waybill=result.waybill, fallback_reason=booking.fallback_reason,
            )
            outcome = _outcome(booking, pricing, debit.balance)
            await BookingService._record_margin(db, booking_ref, request.account_id, price, request, result)
            return outcome

        _, balance_after = await BookingService._compensate(
            db, request.account_id, [booking], price, booking_ref, debit.entry_id
        )
        return _outcome(booking, pricing, balance_after)

    @staticmethod
    async def _compensate(
        db: AsyncSession,
        account_id: str,
        bookings: List[Booking],
        amount: Decimal,
        reference: str,
        debit_entry_id: int,
    ):
        """Refund exactly what was debited for the failed bookings."""
        if len(bookings) == 1:
            subject = bookings[0].booking_ref
        else:
            subject = f"{len(bookings)} shipments of {reference}"
        try:
            refund = await LedgerService.refund(
                db,
                account_id,
                amount,
                f"Carrier booking failed for {subject} (debit entry #{debit_entry_id})",
                reference=reference,
            )
        except Exception as e:
            carrier_errors = {b.booking_ref: b.error for b in bookings}
            await db.rollback()
            logger.critical(
                "Compensation failed, manual reconciliation required",
                extra={"reference": reference, "amount": str(amount), "error": str(e)}
            )
            for booking in bookings:
                await db.refresh(booking)
                booking.error = carrier_errors.get(booking.booking_ref)
                await BookingService._transition(db, booking, BookingState.COMPENSATION_FAILED, error=str(e))
            await log_event(
                db,
                AuditAction.COMPENSATION_FAILED,
                account_id=account_id,
                reference=reference,
                metadata={"amount": str(amount), "bookings": [b.booking_ref for b in bookings], "error": str(e)},
            )
            raise CompensationFailure(reference, amount, str(e))

        for booking in bookings:
            booking.refund_entry_id = refund.entry_id
            await BookingService._transition(db, booking, BookingState.COMPENSATED, refund_entry_id=refund.entry_id)
        return refund.entry_id, refund.balance

    @staticmethod
    async def book_batch(
        db: AsyncSession,
        gateway: CarrierGateway,
        account_id: str,
        role: AccountRole,
        orders: List[ShipmentOrder],
        inter_call_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> BatchOutcome:
        """
        Book many shipments for one account with one debit and at most one refund.

        Final balance == initial balance - sum(price of settled shipments).
        """
        if not orders:
            raise ValidationError("Batch must contain at least one shipment", field="shipments")

        batch_ref = new_batch_ref()
        refs = [new_booking_ref() for _ in orders]
        requests = [order.carrier_request(ref) for order, ref in zip(orders, refs)]

        for index, carrier_request in enumerate(requests):
            try:
                validate_booking_request(carrier_request)
            except ValidationError as e:
                raise ValidationError(f"Shipment {index + 1}: {e.message}", field=f"shipments[{index}].{e.field}")

        pricings = [await BookingService._price(db, account_id, role, order) for order in orders]
        total = sum((p.grand_total for p in pricings), Decimal("0.00"))

        funds = await LedgerService.check_sufficient(db, account_id, total)
        if not funds.sufficient:
            raise InsufficientFundsError(account_id, funds.balance, total)

        bookings = []
        for order, ref, pricing in zip(orders, refs, pricings):
            booking = Booking(
                booking_ref=ref,
                account_id=account_id,
                batch_ref=batch_ref,
                shipment_type=order.shipment_type,
                price=pricing.grand_total,
                fallback_mode=False,
            )
            db.add(booking)
            bookings.append(booking)
            await BookingService._transition(db, booking, BookingState.PRICED, price=str(pricing.grand_total), batch_ref=batch_ref)

        try:
            debit = await LedgerService.debit(
                db, account_id, total, f"Batch booking {batch_ref} ({len(orders)} shipments)", reference=batch_ref
            )
        except InsufficientFundsError as e:
            for booking in bookings:
                booking.error = e.message
                await BookingService._transition(db, booking, BookingState.ABORTED, reason="debit rejected")
            raise

        for booking in bookings:
            booking.debit_entry_id = debit.entry_id
            await BookingService._transition(db, booking, BookingState.DEBITED, entry_id=debit.entry_id)

        delay = settings.batch_inter_call_delay_seconds if inter_call_delay is None else inter_call_delay
        results = []
        for index, (booking, carrier_request) in enumerate(zip(bookings, requests)):
            if index and delay > 0:
                await sleep(delay)
            await BookingService._transition(db, booking, BookingState.CARRIER_CALLED)
            result = await BookingService._call_carrier(gateway, carrier_request)
            await BookingService._apply_carrier_result(db, booking, result)
            if result.success:
                await BookingService._transition(
                    db, booking, BookingState.SETTLED,
                    waybill=result.waybill, fallback_reason=booking.fallback_reason,
                )
            results.append(result)

        failed = [b for b, r in zip(bookings, results) if not r.success]
        failed_total = sum((to_money(b.price) for b in failed), Decimal("0.00"))
        balance_after = debit.balance
        if failed:
            _, balance_after = await BookingService._compensate(
                db, account_id, failed, failed_total, batch_ref, debit.entry_id
            )

        outcome = BatchOutcome(
            batch_ref=batch_ref,
            account_id=account_id,
            total_debited=total,
            total_refunded=failed_total,
            net_charged=total - failed_total,
            balance_after=balance_after,
            succeeded=len(bookings) - len(failed),
            failed=len(failed),
            items=[_outcome(b, p, None) for b, p in zip(bookings, pricings)],
        )

        for booking, pricing, order, result in zip(bookings, pricings, orders, results):
            if result.success:
                await BookingService._record_margin(db, booking.booking_ref, account_id, pricing.grand_total, order, result)

        logger.info(
            "Batch booked",
            extra={"batch_ref": batch_ref, "succeeded": outcome.succeeded, "failed": outcome.failed}
        )
        return outcome

    @staticmethod
    async def get_booking(db: AsyncSession, booking_ref: str) -> Booking:
        result = await db.execute(select(Booking).where(Booking.booking_ref == booking_ref))
        booking = result.scalar_one_or_none()
        if not booking:
            raise ResourceNotFoundError("Booking", booking_ref)
        return booking

    @staticmethod
    async def get_booking_history(db: AsyncSession, booking_ref: str) -> List[dict]:
        """Saga transitions of one booking, oldest first."""
        trail = await get_audit_trail(db, reference=booking_ref, action=AuditAction.BOOKING_TRANSITION)
        history = []
        for row in trail:
            meta = dict(row.meta_data or {})
            history.append({
                "from_state": meta.pop("from", None),
                "to_state": meta.pop("to", None),
                "timestamp": row.timestamp,
                "details": meta,
            })
        return history

    @staticmethod
    async def find_stuck_bookings(db: AsyncSession, older_than_minutes: Optional[int] = None) -> List[Booking]:
        """
        Bookings needing manual reconciliation: debited but without a carrier
        outcome for longer than the threshold, or whose refund failed.

        A PRICED booking counts as debited when a DEBIT entry carries its
        booking or batch reference: the worker died between the debit commit
        and the DEBITED transition.
        """
        minutes = settings.stuck_booking_minutes if older_than_minutes is None else older_than_minutes
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)
        debit_recorded = exists().where(
            LedgerEntry.account_id == Booking.account_id,
            LedgerEntry.entry_type == LedgerEntryType.DEBIT,
            or_(LedgerEntry.reference == Booking.booking_ref, LedgerEntry.reference == Booking.batch_ref),
        )
        result = await db.execute(
            select(Booking)
            .where(
                or_(
                    and_(
                        Booking.state.in_([BookingState.DEBITED, BookingState.CARRIER_CALLED]),
                        Booking.updated_at <= cutoff,
                    ),
                    and_(
                        Booking.state == BookingState.PRICED,
                        Booking.updated_at <= cutoff,
                        debit_recorded,
                    ),
                    Booking.state == BookingState.COMPENSATION_FAILED,
                )
            )
            .order_by(Booking.created_at, Booking.id)
        )
        return list(result.scalars().all())

"""
Booking Saga Tests.

End-to-end booking against the ledger and a scripted carrier.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select, update

from backend.app.core.exceptions import CompensationFailure, InsufficientFundsError, ValidationError
from backend.app.domain.booking.booking_service import BookingRequest, BookingService, ShipmentOrder
from backend.app.domain.ledger.ledger_service import LedgerService
from backend.app.models.billing_enums import BookingState, CostSource
from backend.app.models.booking import Booking
from backend.app.models.margin_record import MarginRecord
from backend.app.services.audit import AuditAction, get_audit_trail
from backend.tests.helpers import (
    CarrierStub,
    SleepRecorder,
    build_gateway,
    fund_account,
    recipient,
    set_account_rate,
    timeout,
    waybill_response,
)

ACCOUNT = "ACC-001"


def request(**overrides) -> BookingRequest:
    params = {
        "account_id": ACCOUNT,
        "recipient": recipient(),
        "weight_kg": Decimal("2"),
        "declared_value": Decimal("1500"),
    }
    params.update(overrides)
    return BookingRequest(**params)


async def balance_of(db, account_id=ACCOUNT) -> Decimal:
    return (await LedgerService.get_balance(db, account_id)).balance


@pytest.mark.asyncio
async def test_fallback_booking_settles_and_keeps_debit(db_session):
    """₹200 balance, ₹150 booking, carrier times out three times."""
    await fund_account(db_session, ACCOUNT, 200)
    await set_account_rate(db_session, ACCOUNT, 150)
    stub = CarrierStub(timeout())
    sleeper = SleepRecorder()
    gateway = build_gateway(stub, sleep=sleeper)

    outcome = await BookingService.book_shipment(db_session, gateway, request())
    await gateway.client.aclose()

    assert stub.calls == 3
    assert sleeper.delays == [2.0, 2.0]
    assert outcome.state == BookingState.SETTLED
    assert outcome.fallback_mode
    assert outcome.waybill.startswith("FWD")
    assert outcome.price == Decimal("150.00")
    assert outcome.balance_after == Decimal("50.00")
    assert await balance_of(db_session) == Decimal("50.00")

    margin = (await db_session.execute(
        select(MarginRecord).where(MarginRecord.booking_ref == outcome.booking_ref)
    )).scalar_one()
    assert margin.cost_source == CostSource.ESTIMATED
    assert margin.carrier_cost == Decimal("94.99")
    assert margin.margin == Decimal("55.01")

    # Timeouts are not a credentials problem
    assert await get_audit_trail(db_session, action=AuditAction.CARRIER_AUTH_ALERT) == []


@pytest.mark.asyncio
async def test_insufficient_funds_has_no_side_effects(db_session, gateway, carrier):
    """₹50 balance, ₹80 booking."""
    await fund_account(db_session, ACCOUNT, 50)
    await set_account_rate(db_session, ACCOUNT, 80)

    with pytest.raises(InsufficientFundsError) as exc_info:
        await BookingService.book_shipment(db_session, gateway, request())

    assert exc_info.value.shortfall == Decimal("30.00")
    assert carrier.calls == 0
    assert await balance_of(db_session) == Decimal("50.00")
    assert (await db_session.execute(select(Booking))).scalars().all() == []
    assert len(await LedgerService.list_entries(db_session, ACCOUNT)) == 1


@pytest.mark.asyncio
async def test_carrier_rejection_refunds_in_full(db_session):
    """₹100 booking, carrier answers HTTP 400."""
    await fund_account(db_session, ACCOUNT, 100)
    stub = CarrierStub(httpx.Response(400, json={"message": "Pincode not serviceable"}))
    gateway = build_gateway(stub)

    outcome = await BookingService.book_shipment(db_session, gateway, request())
    await gateway.client.aclose()

    assert stub.calls == 1
    assert outcome.state == BookingState.COMPENSATED
    assert outcome.waybill is None
    assert "Pincode not serviceable" in outcome.error
    assert outcome.balance_after == Decimal("100.00")
    assert await balance_of(db_session) == Decimal("100.00")

    entries = await LedgerService.find_entries_by_reference(db_session, outcome.booking_ref)
    assert [e.amount for e in entries] == [Decimal("100.00"), Decimal("100.00")]
    assert f"debit entry #{outcome.debit_entry_id}" in entries[1].description

    report = await LedgerService.replay(db_session, ACCOUNT)
    assert report.consistent


@pytest.mark.asyncio
async def test_every_transition_is_audited(db_session, gateway):
    await fund_account(db_session, ACCOUNT, 500)

    outcome = await BookingService.book_shipment(db_session, gateway, request())

    trail = await get_audit_trail(db_session, reference=outcome.booking_ref, action=AuditAction.BOOKING_TRANSITION)
    assert [row.meta_data["to"] for row in trail] == ["PRICED", "DEBITED", "CARRIER_CALLED", "SETTLED"]

    booking = await BookingService.get_booking(db_session, outcome.booking_ref)
    assert booking.state == BookingState.SETTLED
    assert booking.waybill == "D70012345678"
    assert booking.debit_entry_id == outcome.debit_entry_id


@pytest.mark.asyncio
async def test_invalid_shipment_rejected_before_debit(db_session, gateway, carrier):
    await fund_account(db_session, ACCOUNT, 500)

    with pytest.raises(ValidationError) as exc_info:
        await BookingService.book_shipment(db_session, gateway, request(recipient=recipient(phone="12345")))

    assert exc_info.value.field == "recipient.phone"
    assert carrier.calls == 0
    assert await balance_of(db_session) == Decimal("500.00")


@pytest.mark.asyncio
async def test_auth_fallback_raises_operator_alert(db_session):
    await fund_account(db_session, ACCOUNT, 500)
    gateway = build_gateway(CarrierStub(httpx.Response(401, json={"message": "Unauthorized"})))

    outcome = await BookingService.book_shipment(db_session, gateway, request())
    await gateway.client.aclose()

    assert outcome.state == BookingState.SETTLED
    alerts = await get_audit_trail(db_session, action=AuditAction.CARRIER_AUTH_ALERT)
    assert [a.reference for a in alerts] == [outcome.booking_ref]


@pytest.mark.asyncio
async def test_failed_refund_parks_booking(db_session, mocker):
    await fund_account(db_session, ACCOUNT, 100)
    gateway = build_gateway(CarrierStub(httpx.Response(400, json={"message": "Bad address"})))
    mocker.patch.object(LedgerService, "refund", new=mocker.AsyncMock(side_effect=RuntimeError("ledger unavailable")))

    with pytest.raises(CompensationFailure):
        await BookingService.book_shipment(db_session, gateway, request())
    await gateway.client.aclose()

    booking = (await db_session.execute(select(Booking))).scalar_one()
    assert booking.state == BookingState.COMPENSATION_FAILED
    assert await balance_of(db_session) == Decimal("0.00")

    stuck = await BookingService.find_stuck_bookings(db_session)
    assert [b.booking_ref for b in stuck] == [booking.booking_ref]

    alerts = await get_audit_trail(db_session, action=AuditAction.COMPENSATION_FAILED)
    assert len(alerts) == 1


BATCH_SCRIPTS = {
    "middle-fails": ("ok", "reject", "ok"),
    "first-fails": ("reject", "ok", "ok"),
    "last-fails": ("ok", "ok", "reject"),
    "all-fail": ("reject", "reject", "reject"),
    "none-fail": ("ok", "ok", "ok"),
}


@pytest.mark.asyncio
@pytest.mark.parametrize("script", list(BATCH_SCRIPTS.values()), ids=list(BATCH_SCRIPTS))
async def test_batch_charges_only_successes(db_session, script):
    await fund_account(db_session, ACCOUNT, 1000)
    stub = CarrierStub(*[
        waybill_response(f"D7000000000{i}") if step == "ok"
        else httpx.Response(400, json={"message": "Pincode not serviceable"})
        for i, step in enumerate(script, 1)
    ])
    sleeper = SleepRecorder()
    gateway = build_gateway(stub)
    orders = [ShipmentOrder(recipient=recipient(), weight_kg=Decimal("1")) for _ in script]

    outcome = await BookingService.book_batch(
        db_session, gateway, ACCOUNT, "BRAND", orders, inter_call_delay=0.5, sleep=sleeper
    )
    await gateway.client.aclose()

    settled = script.count("ok")
    failed = script.count("reject")
    assert outcome.total_debited == Decimal("300.00")
    assert outcome.total_refunded == Decimal(100 * failed)
    assert outcome.net_charged == Decimal(100 * settled)
    assert (outcome.succeeded, outcome.failed) == (settled, failed)
    assert [i.state for i in outcome.items] == [
        BookingState.SETTLED if step == "ok" else BookingState.COMPENSATED for step in script
    ]
    assert sleeper.delays == [0.5, 0.5]

    # final == initial - sum(settled prices), wherever the failures fall
    expected = Decimal("1000.00") - Decimal(100 * settled)
    assert outcome.balance_after == expected
    assert await balance_of(db_session) == expected

    # One debit and at most one refund for the whole batch
    entries = await LedgerService.find_entries_by_reference(db_session, outcome.batch_ref)
    assert len(entries) == (2 if failed else 1)
    if failed > 1:
        debit_entry_id = outcome.items[0].debit_entry_id
        assert entries[1].description == (
            f"REFUND: Carrier booking failed for {failed} shipments of {outcome.batch_ref} "
            f"(debit entry #{debit_entry_id})"
        )
    assert (await LedgerService.replay(db_session, ACCOUNT)).consistent


@pytest.mark.asyncio
async def test_batch_validation_names_the_shipment(db_session, gateway, carrier):
    await fund_account(db_session, ACCOUNT, 1000)
    orders = [
        ShipmentOrder(recipient=recipient(), weight_kg=Decimal("1")),
        ShipmentOrder(recipient=recipient(city=""), weight_kg=Decimal("1")),
    ]

    with pytest.raises(ValidationError) as exc_info:
        await BookingService.book_batch(db_session, gateway, ACCOUNT, "BRAND", orders)

    assert exc_info.value.field == "shipments[1].recipient.city"
    assert carrier.calls == 0
    assert await balance_of(db_session) == Decimal("1000.00")


@pytest.mark.asyncio
async def test_stuck_bookings_found_after_threshold(db_session):
    booking = Booking(
        booking_ref="BKSTUCK00001",
        account_id=ACCOUNT,
        price=Decimal("100"),
        state=BookingState.CARRIER_CALLED,
    )
    db_session.add(booking)
    await db_session.commit()

    assert await BookingService.find_stuck_bookings(db_session, older_than_minutes=15) == []

    await db_session.execute(
        update(Booking)
        .where(Booking.id == booking.id)
        .values(updated_at=datetime.now(timezone.utc) - timedelta(minutes=30))
    )
    await db_session.commit()

    stuck = await BookingService.find_stuck_bookings(db_session, older_than_minutes=15)
    assert [b.booking_ref for b in stuck] == ["BKSTUCK00001"]


@pytest.mark.asyncio
async def test_debit_without_saga_progress_is_flagged(db_session, gateway, carrier, mocker):
    """The worker dies after the debit commits but before DEBITED is recorded."""
    await fund_account(db_session, ACCOUNT, 500)
    transition = BookingService._transition

    async def die_before_debited(db, booking, to_state, **meta):
        if to_state == BookingState.DEBITED:
            raise RuntimeError("worker terminated")
        await transition(db, booking, to_state, **meta)

    mocker.patch.object(BookingService, "_transition", new=die_before_debited)

    with pytest.raises(RuntimeError):
        await BookingService.book_shipment(db_session, gateway, request())
    await db_session.rollback()

    assert carrier.calls == 0
    assert await balance_of(db_session) == Decimal("400.00")

    # Priced but never debited: nothing to reconcile
    db_session.add(Booking(
        booking_ref="BKNODEBIT001", account_id=ACCOUNT, price=Decimal("100"), state=BookingState.PRICED,
    ))
    await db_session.commit()

    orphan = (await db_session.execute(select(Booking).where(Booking.booking_ref != "BKNODEBIT001"))).scalar_one()
    assert orphan.state == BookingState.PRICED
    assert await BookingService.find_stuck_bookings(db_session, older_than_minutes=15) == []

    await db_session.execute(
        update(Booking).values(updated_at=datetime.now(timezone.utc) - timedelta(hours=2))
    )
    await db_session.commit()

    stuck = await BookingService.find_stuck_bookings(db_session, older_than_minutes=15)
    assert [b.booking_ref for b in stuck] == [orphan.booking_ref]


@pytest.mark.asyncio
async def test_batch_debit_without_saga_progress_is_flagged(db_session, gateway, carrier, mocker):
    await fund_account(db_session, ACCOUNT, 500)
    transition = BookingService._transition

    async def die_before_debited(db, booking, to_state, **meta):
        if to_state == BookingState.DEBITED:
            raise RuntimeError("worker terminated")
        await transition(db, booking, to_state, **meta)

    mocker.patch.object(BookingService, "_transition", new=die_before_debited)
    orders = [ShipmentOrder(recipient=recipient(), weight_kg=Decimal("1")) for _ in range(2)]

    with pytest.raises(RuntimeError):
        await BookingService.book_batch(db_session, gateway, ACCOUNT, "BRAND", orders)
    await db_session.rollback()

    await db_session.execute(
        update(Booking).values(updated_at=datetime.now(timezone.utc) - timedelta(hours=2))
    )
    await db_session.commit()

    stuck = await BookingService.find_stuck_bookings(db_session, older_than_minutes=15)
    assert len(stuck) == 2
    assert {b.state for b in stuck} == {BookingState.PRICED}
    assert stuck[0].batch_ref == stuck[1].batch_ref
    assert await balance_of(db_session) == Decimal("300.00")

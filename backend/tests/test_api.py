"""
API Tests.

Exercises the HTTP surface end to end with the stub carrier.
"""

from decimal import Decimal

import pytest

from backend.app.domain.carrier.gateway import synthesize_waybill
from backend.app.models.billing_enums import BookingState
from backend.app.models.booking import Booking
from backend.tests.helpers import RECIPIENT, admin_headers, auth_headers

SHIPMENT = {"recipient": RECIPIENT, "weight_kg": "2", "declared_value": "1500"}


async def recharge(client, account_id="ACC-001", amount="500.00"):
    response = await client.post(
        f"/v1/admin/ledger/{account_id}/recharge",
        json={"amount": amount, "reference": "UTR123"},
        headers=admin_headers(),
    )
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_booking_requires_token(client):
    response = await client.post("/v1/bookings", json=SHIPMENT)

    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_admin_endpoints_reject_merchants(client):
    response = await client.post(
        "/v1/admin/ledger/ACC-001/recharge", json={"amount": "100"}, headers=auth_headers()
    )

    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_FORBIDDEN"


@pytest.mark.asyncio
async def test_book_and_inspect(client):
    body = await recharge(client)
    assert Decimal(body["balance"]) == Decimal("500.00")

    response = await client.post("/v1/bookings", json=SHIPMENT, headers=auth_headers())
    assert response.status_code == 201
    outcome = response.json()
    assert outcome["state"] == "SETTLED"
    assert outcome["waybill"] == "D70012345678"
    assert Decimal(outcome["price"]) == Decimal("100.00")

    balance = (await client.get("/v1/ledger/balance", headers=auth_headers())).json()
    assert Decimal(balance["balance"]) == Decimal("400.00")

    entries = (await client.get("/v1/ledger/entries", headers=auth_headers())).json()["entries"]
    assert [e["entry_type"] for e in entries] == ["DEBIT", "CREDIT"]

    detail = await client.get(f"/v1/bookings/{outcome['booking_ref']}", headers=auth_headers())
    assert detail.status_code == 200
    history = detail.json()["history"]
    assert [h["to_state"] for h in history] == ["PRICED", "DEBITED", "CARRIER_CALLED", "SETTLED"]

    other = await client.get(
        f"/v1/bookings/{outcome['booking_ref']}", headers=auth_headers(account_id="ACC-OTHER")
    )
    assert other.status_code == 403


@pytest.mark.asyncio
async def test_insufficient_funds_is_402(client):
    await recharge(client, amount="50.00")

    response = await client.post("/v1/bookings", json=SHIPMENT, headers=auth_headers())

    assert response.status_code == 402
    body = response.json()
    assert body["error_code"] == "ERR_FUNDS_001"
    assert Decimal(body["details"]["shortfall"]) == Decimal("50.00")


@pytest.mark.asyncio
async def test_invalid_address_is_422(client):
    await recharge(client)
    shipment = {**SHIPMENT, "recipient": {**RECIPIENT, "pincode": "ABC123"}}

    response = await client.post("/v1/bookings", json=shipment, headers=auth_headers())

    assert response.status_code == 422
    assert response.json()["details"]["field"] == "recipient.pincode"


@pytest.mark.asyncio
async def test_batch_endpoint(client):
    await recharge(client)

    response = await client.post(
        "/v1/bookings/batch", json={"shipments": [SHIPMENT, SHIPMENT]}, headers=auth_headers()
    )

    assert response.status_code == 201
    body = response.json()
    assert body["succeeded"] == 2
    assert Decimal(body["net_charged"]) == Decimal("200.00")


@pytest.mark.asyncio
async def test_zone_rule_changes_quote(client):
    created = await client.post(
        "/v1/admin/pricing/zone-rules",
        json={"zone_key": "560001", "zone_name": "Bengaluru", "surcharge": "20"},
        headers=admin_headers(),
    )
    assert created.status_code == 201
    rule_id = created.json()["id"]

    quote = await client.post(
        "/v1/pricing/quote", json={"weight_kg": "1", "zone_key": "560001"}, headers=auth_headers()
    )
    assert quote.status_code == 200
    assert Decimal(quote.json()["breakdown"]["grand_total"]) == Decimal("120.00")
    assert [e["unit_count"] for e in quote.json()["estimates"]] == [1, 5, 10]

    removed = await client.delete(f"/v1/admin/pricing/zone-rules/{rule_id}", headers=admin_headers())
    assert removed.status_code == 200

    quote = await client.post(
        "/v1/pricing/quote", json={"weight_kg": "1", "zone_key": "560001"}, headers=auth_headers()
    )
    assert Decimal(quote.json()["breakdown"]["grand_total"]) == Decimal("100.00")


@pytest.mark.asyncio
async def test_label_for_fallback_booking_is_deferred(client, db_session):
    waybill = synthesize_waybill()
    db_session.add(Booking(
        booking_ref="BKFALLBACK01",
        account_id="ACC-001",
        price=Decimal("100"),
        state=BookingState.SETTLED,
        waybill=waybill,
        fallback_mode=True,
        fallback_reason="carrier unavailable",
    ))
    await db_session.commit()

    label = await client.get(f"/v1/shipments/{waybill}/label", headers=auth_headers())
    assert label.status_code == 202
    assert label.json()["fallback_mode"] is True

    tracking = await client.get(f"/v1/shipments/{waybill}/tracking", headers=auth_headers())
    assert tracking.status_code == 200
    assert tracking.json()["status"] == "BOOKED"


@pytest.mark.asyncio
async def test_unknown_waybill_is_404(client):
    response = await client.get("/v1/shipments/D70000000000/tracking", headers=auth_headers())

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_ops_endpoints(client):
    await recharge(client)
    await client.post("/v1/bookings", json=SHIPMENT, headers=auth_headers())

    summary = await client.get("/v1/admin/margins/summary", headers=admin_headers())
    assert summary.status_code == 200
    assert summary.json()["booking_count"] == 1
    assert summary.json()["by_cost_source"] == {"ESTIMATED": 1}

    stuck = await client.get("/v1/admin/bookings/stuck", headers=admin_headers())
    assert stuck.status_code == 200
    assert stuck.json() == []

    backfill = await client.post("/v1/admin/margins/backfill", headers=admin_headers())
    assert backfill.json() == {"processed": 0, "failed": 0, "archived": 0}

    replay = await client.get("/v1/admin/ledger/ACC-001/replay", headers=admin_headers())
    assert replay.json()["consistent"] is True

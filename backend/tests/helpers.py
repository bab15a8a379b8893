"""
Shared test helpers: stub carrier, fake clock, tokens and fixtures data.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.jwt import create_access_token
from backend.app.domain.carrier.config import CarrierConfig
from backend.app.domain.carrier.gateway import CarrierGateway
from backend.app.domain.carrier.models import Address
from backend.app.domain.ledger.ledger_service import LedgerService
from backend.app.models.pricing_rule import AccountPricingRule

RECIPIENT = {
    "name": "Ravi Kumar",
    "phone": "+91 98765 43210",
    "address_line": "12 MG Road",
    "pincode": "560001",
    "city": "Bengaluru",
    "state": "Karnataka",
}

SENDER = {
    "name": "Service Center Pune",
    "phone": "9123456780",
    "address_line": "4 FC Road",
    "pincode": "411004",
    "city": "Pune",
    "state": "Maharashtra",
}


def recipient(**overrides) -> Address:
    return Address(**{**RECIPIENT, **overrides})


class CarrierStub:
    """
    Scripted carrier for httpx.MockTransport.

    Each request consumes the next scripted item; the last one repeats.
    Items are httpx.Response objects or exceptions to raise.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        # Fresh copy so a repeated item can be sent more than once
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    @property
    def calls(self) -> int:
        return len(self.requests)


def waybill_response(waybill: str = "D70012345678", **extra) -> httpx.Response:
    consignment = {"success": True, "reference_number": waybill}
    consignment.update(extra)
    return httpx.Response(200, json={"status": "OK", "success": True, "data": [consignment]})


def timeout() -> httpx.TimeoutException:
    return httpx.ReadTimeout("timed out")


class SleepRecorder:
    """Stands in for asyncio.sleep; records the requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def build_gateway(stub: CarrierStub, sleep=None, credentials: bool = True) -> CarrierGateway:
    config = CarrierConfig.from_settings(settings)
    if credentials:
        config = config.model_copy(update={"api_key": "test-api-key", "customer_code": "GL017"})
    else:
        config = config.model_copy(update={"api_key": "", "customer_code": ""})
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return CarrierGateway(config, client, retry_policy=config.retry_policy(sleep=sleep or SleepRecorder()))


def auth_headers(account_id="ACC-001", role: str = "BRAND", sub: str = "brand@example.com") -> dict:
    claims = {"sub": sub, "role": role}
    if account_id:
        claims["account_id"] = account_id
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


def admin_headers() -> dict:
    return auth_headers(account_id=None, role="ADMIN", sub="ops@example.com")


async def fund_account(db: AsyncSession, account_id: str, amount) -> None:
    await LedgerService.credit(db, account_id, Decimal(str(amount)), "Test recharge")


async def set_account_rate(db: AsyncSession, account_id: str, rate) -> AccountPricingRule:
    rule = AccountPricingRule(
        account_id=account_id,
        per_box_rate=Decimal(str(rate)),
        effective_from=datetime.now(timezone.utc) - timedelta(days=1),
    )
    db.add(rule)
    await db.commit()
    await db.refresh(rule)
    return rule


def yesterday() -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=1)

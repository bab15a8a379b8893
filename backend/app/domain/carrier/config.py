"""
Carrier gateway configuration.

Built once at process start from Settings and handed to CarrierGateway.
"""

import asyncio
from typing import Awaitable, Callable, Dict

from pydantic import BaseModel, ConfigDict

from backend.app.core.config import Settings
from backend.app.core.reliability import RetryPolicy
from backend.app.domain.carrier.models import Address


class CarrierConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_url: str
    booking_path: str
    label_path: str
    tracking_path: str
    tracking_url_template: str
    api_key: str = ""
    customer_code: str = ""
    service_type: str = "B2C PRIORITY"
    commodity_id: str = "Electric items"
    timeout_seconds: float = 45.0
    max_attempts: int = 3
    retry_delay_seconds: float = 2.0
    warehouse: Address

    @classmethod
    def from_settings(cls, settings: Settings) -> "CarrierConfig":
        return cls(
            base_url=settings.carrier_base_url.rstrip("/"),
            booking_path=settings.carrier_booking_path,
            label_path=settings.carrier_label_path,
            tracking_path=settings.carrier_tracking_path,
            tracking_url_template=settings.carrier_tracking_url_template,
            api_key=settings.carrier_api_key,
            customer_code=settings.carrier_customer_code,
            service_type=settings.carrier_service_type,
            commodity_id=settings.carrier_commodity_id,
            timeout_seconds=settings.carrier_timeout_seconds,
            max_attempts=settings.carrier_max_attempts,
            retry_delay_seconds=settings.carrier_retry_delay_seconds,
            warehouse=Address(
                name=settings.warehouse_name,
                phone=settings.warehouse_phone,
                address_line=settings.warehouse_address_line,
                pincode=settings.warehouse_pincode,
                city=settings.warehouse_city,
                state=settings.warehouse_state,
            ),
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.customer_code)

    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "api-key": self.api_key,
        }

    def tracking_url(self, waybill: str) -> str:
        return self.tracking_url_template.format(waybill=waybill)

    def retry_policy(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            delay_seconds=self.retry_delay_seconds,
            sleep=sleep,
        )

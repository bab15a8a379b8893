"""
Carrier Gateway Adapter.

Wraps the carrier's waybill, label and tracking APIs.

issue_waybill never raises for carrier trouble:
- 401/403: no retry, fallback waybill, configuration alert logged
- 400: no retry, CarrierRejected
- timeout, 5xx, bad body, missing waybill: retried by the RetryPolicy, then fallback
"""

import logging
import random
import time
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import httpx

from backend.app.core.exceptions import (
    CarrierAuthError,
    CarrierBadRequestError,
    CarrierTransientError,
    ValidationError,
)
from backend.app.core.reliability import RetryExhaustedError, RetryPolicy
from backend.app.domain.carrier.config import CarrierConfig
from backend.app.domain.carrier.models import (
    Address,
    CarrierBookingRequest,
    CarrierBookingResult,
    CarrierIssued,
    CarrierRejected,
    FallbackCause,
    FallbackIssued,
    LabelResult,
    TrackingEvent,
    TrackingResult,
    TrackingStatus,
)
from backend.app.domain.carrier import tracking
from backend.app.domain.carrier.validation import phone_digits, validate_booking_request
from backend.app.models.enums import ShipmentType

logger = logging.getLogger("shipments.carrier")

FALLBACK_PREFIXES = {ShipmentType.FORWARD: "FWD", ShipmentType.REVERSE: "REV"}
MIN_WEIGHT_KG = Decimal("0.1")
MIN_DECLARED_VALUE = Decimal("100")
WAYBILL_KEYS = ("awbNumber", "awb_number", "referenceNumber", "reference_number", "consignment_number")


def synthesize_waybill(shipment_type: ShipmentType = ShipmentType.FORWARD) -> str:
    """Prefix + 13-digit epoch millis + 3 random digits, e.g. FWD1760000000000123."""
    return f"{FALLBACK_PREFIXES[shipment_type]}{int(time.time() * 1000):013d}{random.randint(0, 999):03d}"


def is_fallback_waybill(waybill: str) -> bool:
    return (
        len(waybill) == 19
        and waybill[:3] in FALLBACK_PREFIXES.values()
        and waybill[3:].isdigit()
    )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)[:200]
    return str(body)[:200]


class CarrierGateway:
    """
    Stateless apart from its injected collaborators.

    Args:
        config: built once at startup
        client: shared httpx.AsyncClient
        retry_policy: defaults to config.retry_policy()
    """

    def __init__(
        self,
        config: CarrierConfig,
        client: httpx.AsyncClient,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.config = config
        self.client = client
        self.retry_policy = retry_policy or config.retry_policy()

    async def issue_waybill(self, request: CarrierBookingRequest) -> CarrierBookingResult:
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            validate_booking_request(request)
        except ValidationError as e:
            return CarrierRejected(
                error_code="ERR_VALIDATION",
                error=e.message,
                field=e.field,
                processing_time_ms=elapsed_ms(),
            )

        if not self.config.has_credentials:
            return self._fallback(
                request, FallbackCause.NO_CREDENTIALS, "missing carrier credentials", 0, elapsed_ms()
            )

        payload = self.build_payload(request)
        attempts = 0

        async def attempt(number: int) -> Tuple[str, Dict[str, Any]]:
            nonlocal attempts
            attempts = number
            return await self._post_booking(payload)

        try:
            waybill, body = await self.retry_policy.run(attempt)
        except CarrierAuthError as e:
            logger.error(
                "Carrier authentication failed, check API key and customer code",
                extra={"booking_ref": request.booking_ref, "status_code": e.carrier_status, "alert": "carrier_config"}
            )
            return self._fallback(
                request,
                FallbackCause.AUTH,
                f"carrier authentication failed (HTTP {e.carrier_status})",
                attempts,
                elapsed_ms(),
            )
        except CarrierBadRequestError as e:
            logger.warning(
                "Carrier rejected booking payload",
                extra={"booking_ref": request.booking_ref, "carrier_message": e.carrier_message}
            )
            return CarrierRejected(
                error_code=e.error_code,
                error=e.carrier_message,
                attempts=attempts,
                retry_count=max(attempts - 1, 0),
                processing_time_ms=elapsed_ms(),
            )
        except RetryExhaustedError as e:
            return self._fallback(
                request,
                FallbackCause.EXHAUSTED,
                f"carrier unavailable after {e.attempts} attempts: {e.last_error}",
                e.attempts,
                elapsed_ms(),
            )

        logger.info(
            "Waybill issued",
            extra={"booking_ref": request.booking_ref, "waybill": waybill, "attempts": attempts}
        )
        return CarrierIssued(
            waybill=waybill,
            tracking_url=self.config.tracking_url(waybill),
            raw_response=body,
            attempts=attempts,
            retry_count=attempts - 1,
            processing_time_ms=elapsed_ms(),
        )

    def _fallback(
        self,
        request: CarrierBookingRequest,
        cause: FallbackCause,
        reason: str,
        attempts: int,
        elapsed: int,
    ) -> FallbackIssued:
        waybill = synthesize_waybill(request.shipment_type)
        logger.warning(
            "Carrier fallback waybill issued",
            extra={"booking_ref": request.booking_ref, "waybill": waybill, "cause": cause.value, "reason": reason}
        )
        return FallbackIssued(
            waybill=waybill,
            cause=cause,
            fallback_reason=reason,
            attempts=attempts,
            retry_count=max(attempts - 1, 0),
            processing_time_ms=elapsed,
        )

    async def _post_booking(self, payload: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        url = f"{self.config.base_url}{self.config.booking_path}"
        try:
            response = await self.client.post(
                url,
                json=payload,
                headers=self.config.headers(),
                timeout=self.config.timeout_seconds,
            )
        except httpx.TimeoutException:
            raise CarrierTransientError("Carrier request timed out")
        except httpx.TransportError as e:
            raise CarrierTransientError(f"Carrier unreachable: {e}")

        if response.status_code in (401, 403):
            raise CarrierAuthError(response.status_code)
        if response.status_code == 400:
            raise CarrierBadRequestError(_error_message(response))
        if response.status_code >= 300:
            raise CarrierTransientError(_error_message(response), status_code=response.status_code)

        try:
            body = response.json()
        except ValueError:
            raise CarrierTransientError("Invalid JSON response from carrier", status_code=response.status_code)

        if not isinstance(body, dict) or body.get("success") is not True:
            message = "Carrier reported failure"
            if isinstance(body, dict):
                errors = body.get("errors") or [None]
                message = str(body.get("message") or body.get("error") or errors[0] or message)
            raise CarrierTransientError(message, status_code=response.status_code)

        data = body.get("data") or []
        consignment = data[0] if isinstance(data, list) and data else {}
        waybill = next((consignment.get(k) for k in WAYBILL_KEYS if consignment.get(k)), None)
        if not waybill:
            raise CarrierTransientError("No waybill in carrier response", status_code=response.status_code)

        return str(waybill), body

    def build_payload(self, request: CarrierBookingRequest) -> Dict[str, Any]:
        """Consignment payload in the carrier's softdata format."""
        origin = request.sender or self.config.warehouse
        weight = max(Decimal(str(request.weight_kg)), MIN_WEIGHT_KG)
        declared_value = max(Decimal(str(request.declared_value)), MIN_DECLARED_VALUE)
        reference = f"BK-{request.booking_ref}"
        reverse = request.shipment_type == ShipmentType.REVERSE

        return {
            "consignments": [{
                "customer_code": self.config.customer_code,
                "service_type_id": self.config.service_type,
                "load_type": "NON-DOCUMENT",
                "description": request.description or ("Spare Parts Return" if reverse else "Spare Parts"),
                "dimension_unit": "cm",
                "length": "30.0",
                "width": "20.0",
                "height": "15.0",
                "weight_unit": "kg",
                "weight": str(weight),
                "declared_value": str(declared_value),
                "num_pieces": str(request.unit_count),
                "commodity_id": self.config.commodity_id,
                "consignment_type": "Reverse" if reverse else "Forward",
                "origin_details": self._address_details(origin),
                "destination_details": self._address_details(request.recipient),
                "return_details": self._address_details(self.config.warehouse, suffix_keys=True),
                "customer_reference_number": reference,
                "invoice_number": reference,
                "invoice_date": date.today().isoformat(),
                "reference_number": reference,
                "is_risk_surcharge_applicable": "false",
            }]
        }

    @staticmethod
    def _address_details(address: Address, suffix_keys: bool = False) -> Dict[str, str]:
        city_key, state_key = ("city_name", "state_name") if suffix_keys else ("city", "state")
        phone = phone_digits(address.phone)[-10:]
        return {
            "name": address.name[:50],
            "phone": phone,
            "alternate_phone": "",
            "address_line_1": address.address_line[:100],
            "address_line_2": address.address_line_2[:100],
            "pincode": address.pincode,
            city_key: address.city,
            state_key: address.state,
        }

    async def fetch_label(self, waybill: str) -> LabelResult:
        """Label PDF for a waybill. Never raises; failures come back in fallback mode."""
        if is_fallback_waybill(waybill):
            return LabelResult(waybill=waybill, fallback_mode=True, error="synthetic waybill has no carrier label")
        if not self.config.has_credentials:
            return LabelResult(waybill=waybill, fallback_mode=True, error="missing carrier credentials")

        try:
            response = await self.client.get(
                f"{self.config.base_url}{self.config.label_path}",
                params={"reference_number": waybill, "label_code": "SHIP_LABEL_4X6", "label_format": "pdf"},
                headers={"api-key": self.config.api_key},
                timeout=self.config.timeout_seconds,
            )
        except httpx.TransportError as e:
            logger.warning("Label fetch failed", extra={"waybill": waybill, "error": str(e)})
            return LabelResult(waybill=waybill, fallback_mode=True, error=f"carrier unreachable: {e}")

        if response.status_code in (401, 403):
            logger.error("Carrier authentication failed on label fetch", extra={"waybill": waybill, "alert": "carrier_config"})
            return LabelResult(waybill=waybill, fallback_mode=True, error="carrier authentication failed")
        if response.status_code != 200 or not response.content:
            return LabelResult(waybill=waybill, fallback_mode=True, error=f"label unavailable (HTTP {response.status_code})")

        return LabelResult(
            waybill=waybill,
            content=response.content,
            content_type=response.headers.get("content-type", "application/pdf"),
        )

    async def track_shipment(self, waybill: str) -> TrackingResult:
        """Current status and ordered events. Never raises."""
        if is_fallback_waybill(waybill):
            return TrackingResult(
                waybill=waybill,
                status=TrackingStatus.BOOKED,
                events=[TrackingEvent(status=TrackingStatus.BOOKED, description="Booked in fallback mode")],
                fallback_mode=True,
            )
        if not self.config.has_credentials:
            return TrackingResult(
                waybill=waybill, status=TrackingStatus.UNKNOWN, fallback_mode=True, error="missing carrier credentials"
            )

        try:
            response = await self.client.post(
                f"{self.config.base_url}{self.config.tracking_path}",
                json={"trkType": "cnno", "strcnno": waybill, "addtnlDtl": "Y"},
                headers=self.config.headers(),
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Tracking lookup failed", extra={"waybill": waybill, "error": str(e)})
            return TrackingResult(waybill=waybill, status=TrackingStatus.UNKNOWN, fallback_mode=True, error=str(e))

        if not isinstance(body, dict):
            return TrackingResult(
                waybill=waybill, status=TrackingStatus.UNKNOWN, fallback_mode=True, error="unexpected tracking body"
            )

        events = tracking.parse_events(tracking.extract_raw_events(body))
        return TrackingResult(waybill=waybill, status=tracking.current_status(body, events), events=events)

"""
Pre-flight validation of carrier booking requests. No network access.
"""

import re
from decimal import Decimal, InvalidOperation

from backend.app.core.exceptions import ValidationError
from backend.app.domain.carrier.models import Address, CarrierBookingRequest
from backend.app.models.enums import ShipmentType

PINCODE_RE = re.compile(r"^\d{6}$")
MIN_PHONE_DIGITS = 10


def phone_digits(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


def _validate_address(address: Address, prefix: str) -> None:
    if not address.name.strip():
        raise ValidationError(f"{prefix} name is required", field=f"{prefix}.name")
    if len(phone_digits(address.phone)) < MIN_PHONE_DIGITS:
        raise ValidationError(
            f"{prefix} phone must have at least {MIN_PHONE_DIGITS} digits", field=f"{prefix}.phone"
        )
    if not PINCODE_RE.match(address.pincode.strip()):
        raise ValidationError(f"{prefix} pincode must be 6 digits", field=f"{prefix}.pincode")
    if not address.city.strip():
        raise ValidationError(f"{prefix} city is required", field=f"{prefix}.city")
    if not address.state.strip():
        raise ValidationError(f"{prefix} state is required", field=f"{prefix}.state")
    if not address.address_line.strip():
        raise ValidationError(f"{prefix} address is required", field=f"{prefix}.address_line")


def validate_booking_request(request: CarrierBookingRequest) -> None:
    """
    Raises:
        ValidationError: on the first invalid field
    """
    _validate_address(request.recipient, "recipient")

    if request.shipment_type == ShipmentType.REVERSE or request.sender is not None:
        if request.sender is None:
            raise ValidationError("Reverse shipments need sender details", field="sender")
        _validate_address(request.sender, "sender")

    try:
        weight = Decimal(str(request.weight_kg))
    except InvalidOperation:
        raise ValidationError("Weight must be a number", field="weight_kg")
    if weight <= 0:
        raise ValidationError("Weight must be positive", field="weight_kg")

    if request.unit_count <= 0:
        raise ValidationError("Unit count must be positive", field="unit_count")

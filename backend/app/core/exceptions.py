"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging
from decimal import Decimal
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, Optional

logger = logging.getLogger("shipments.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(AppException):
    """Raised for bad input. Never retried, surfaced to the caller."""

    def __init__(self, message: str, field: Optional[str] = None, error_code: str = "ERR_VALIDATION_001"):
        self.field = field
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"field": field}
        )


class PricingError(ValidationError):
    """Raised when a price cannot be resolved for the given inputs."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message=message, field=field, error_code="ERR_PRICING_001")


class InsufficientFundsError(AppException):
    """Raised when an account cannot cover a debit. No side effects have happened."""

    def __init__(self, account_id: str, balance: Decimal, required: Decimal):
        self.account_id = account_id
        self.balance = balance
        self.required = required
        self.shortfall = required - balance
        super().__init__(
            message=f"Insufficient balance: required ₹{required}, available ₹{balance}",
            error_code="ERR_FUNDS_001",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={
                "account_id": account_id,
                "balance": str(balance),
                "required": str(required),
                "shortfall": str(self.shortfall),
            }
        )


class CarrierError(AppException):
    """Base class for carrier API failures."""

    retryable = False

    def __init__(self, message: str, error_code: str, status_code: Optional[int] = None, details: Dict[str, Any] = None):
        self.carrier_status = status_code
        payload = {"status_code": status_code}
        payload.update(details or {})
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=payload
        )


class CarrierAuthError(CarrierError):
    """Carrier rejected our credentials (401/403). Terminal, triggers fallback."""

    def __init__(self, status_code: int):
        super().__init__(
            message="Carrier authentication failed - invalid API key or customer code",
            error_code="ERR_CARRIER_AUTH",
            status_code=status_code
        )


class CarrierBadRequestError(CarrierError):
    """Carrier refused the payload (400). Terminal, surfaced to the caller."""

    def __init__(self, carrier_message: str):
        self.carrier_message = carrier_message
        super().__init__(
            message=f"Carrier rejected request: {carrier_message}",
            error_code="ERR_CARRIER_400",
            status_code=400,
            details={"carrier_message": carrier_message}
        )


class CarrierTransientError(CarrierError):
    """Timeout, 5xx or malformed response. Retried within the attempt budget."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            message=message,
            error_code="ERR_CARRIER_TRANSIENT",
            status_code=status_code
        )


class CompensationFailure(AppException):
    """
    Raised when the refund for a failed booking could not be applied.

    Money was taken without service rendered; requires operator intervention.
    """

    def __init__(self, booking_ref: str, amount: Decimal, reason: str):
        super().__init__(
            message=f"Refund of ₹{amount} for booking {booking_ref} failed: {reason}",
            error_code="ERR_COMPENSATION_001",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"booking_ref": booking_ref, "amount": str(amount)}
        )


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    if exc.status_code >= 500:
        logger.error("Application error", extra={"error_code": exc.error_code, "details": exc.details})
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": [
                    {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
                    for err in exc.errors()
                ]
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )

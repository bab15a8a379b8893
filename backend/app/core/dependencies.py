"""
Request dependencies for FastAPI.

Bearer authentication against tokens minted by the external auth service, and
access to the process-wide carrier gateway.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from backend.app.core.jwt import decode_access_token
from backend.app.domain.carrier.gateway import CarrierGateway

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    Validate the bearer token and return its claims.

    Raises:
        HTTPException: 401 if the token is invalid or lacks a subject
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


async def get_current_account_id(current_user: dict = Depends(get_current_user)) -> str:
    """Account whose ledger funds the caller's bookings."""
    account_id = current_user.get("account_id")
    if not account_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token is not bound to an account",
        )
    return str(account_id)


def get_carrier_gateway(request: Request) -> CarrierGateway:
    """The gateway built once in the application lifespan."""
    gateway = getattr(request.app.state, "carrier_gateway", None)
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Carrier gateway not initialised",
        )
    return gateway

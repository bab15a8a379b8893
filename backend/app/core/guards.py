"""
Security guards for role-based and account-based access control.

Provides dependencies for protecting endpoints.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from backend.app.models.enums import AccountRole
from backend.app.core.dependencies import get_current_user


def require_role(allowed_roles: List[AccountRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/admin/ledger/{account_id}/recharge")
        async def recharge(current_user: dict = Depends(require_role([AccountRole.ADMIN]))):
            ...

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role information missing from token"
            )

        try:
            user_role = AccountRole(user_role_str)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


def enforce_account_access(account_id: str, current_user: dict) -> None:
    """
    Admins may read any account; everyone else only the account in their token.

    Raises:
        HTTPException 403 on mismatch
    """
    if current_user.get("role") == AccountRole.ADMIN.value:
        return
    if str(current_user.get("account_id")) != str(account_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. You do not have permission to access this account."
        )

"""
FastAPI authentication dependencies.

Callers authenticate with a Bearer access token carrying ``sub`` (user id)
and ``role``. Maintenance routes authenticate with the ``X-Admin-Token``
header instead.
"""
import secrets
from dataclasses import dataclass
from typing import Literal

from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from cbt.core.config import settings
from .security import decode_token, verify_token_type
from .error_responses import (
    ErrorMessages,
    raise_forbidden,
    raise_not_configured,
    raise_unauthorized,
)

# HTTP Bearer token scheme
security = HTTPBearer()

Role = Literal["student", "owner", "admin"]
ROLES = ("student", "owner", "admin")


@dataclass(frozen=True)
class Principal:
    """The authenticated caller."""

    user_id: str
    role: Role

    @property
    def is_student(self) -> bool:
        return self.role == "student"

    @property
    def is_owner(self) -> bool:
        return self.role in ("owner", "admin")


def _decode_principal(token: str) -> Principal:
    """
    Decode and validate an access token, returning the caller.

    Raises:
        HTTPException: 401 if token is invalid, wrong type, or missing claims
    """
    payload = decode_token(token)
    if payload is None:
        raise_unauthorized(ErrorMessages.INVALID_TOKEN)

    if not verify_token_type(payload, "access"):
        raise_unauthorized(ErrorMessages.INVALID_TOKEN_TYPE)

    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or not role:
        raise_unauthorized(ErrorMessages.INVALID_TOKEN_PAYLOAD)
    if role not in ROLES:
        raise_unauthorized(ErrorMessages.unknown_role(str(role)))

    return Principal(user_id=str(user_id), role=role)


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """
    Get the authenticated caller from the Bearer token.

    Raises:
        HTTPException: 401 if the token is invalid
    """
    return _decode_principal(credentials.credentials)


async def require_student(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """Allow only students through."""
    if not principal.is_student:
        raise_forbidden(ErrorMessages.STUDENT_ROLE_REQUIRED)
    return principal


async def require_owner(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """Allow only test center owners (and admins) through."""
    if not principal.is_owner:
        raise_forbidden(ErrorMessages.OWNER_ROLE_REQUIRED)
    return principal


async def verify_admin_token(x_admin_token: str = Header(...)) -> bool:
    """
    Verify admin token from request header.

    Uses constant-time comparison to prevent timing attacks.

    Args:
        x_admin_token: Admin token from X-Admin-Token header

    Returns:
        bool: True if token is valid

    Raises:
        HTTPException: 500 if no admin token is configured, 401 if invalid
    """
    if not settings.ADMIN_TOKEN:
        raise_not_configured(ErrorMessages.ADMIN_TOKEN_NOT_CONFIGURED)

    if not secrets.compare_digest(x_admin_token, settings.ADMIN_TOKEN):
        raise_unauthorized(
            ErrorMessages.ADMIN_TOKEN_INVALID, include_www_authenticate=False
        )

    return True

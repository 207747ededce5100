"""
Bearer-token identity extraction.

Tokens are issued by the identity service; this module only verifies the
signature and turns the claims into an IdentityContext. The allocation
engine receives that value explicitly and never looks at the request.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from stall_booking.core.config import get_settings
from stall_booking.core.logging import bind_identity, get_logger
from stall_booking.domain.errors import ForbiddenError
from stall_booking.domain.models import IdentityContext, Role

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token with the shared secret. Used by tests and load tooling."""
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_identity(token: str) -> IdentityContext:
    settings = get_settings()
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])

    user_id = payload.get("sub")
    if not user_id:
        raise jwt.InvalidTokenError("Token has no subject")

    try:
        role = Role(payload.get("role", Role.USER.value))
    except ValueError as exc:
        raise jwt.InvalidTokenError(f"Unknown role {payload.get('role')!r}") from exc

    return IdentityContext(
        user_id=str(user_id),
        role=role,
        email=payload.get("email"),
        name=payload.get("name"),
        business_name=payload.get("business_name"),
    )


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> IdentityContext:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise unauthorized

    try:
        identity = decode_identity(credentials.credentials)
    except jwt.PyJWTError as exc:
        logger.warning("token_rejected", reason=str(exc))
        raise unauthorized from exc

    bind_identity(identity.user_id, identity.role.value)
    return identity


async def require_admin(
    identity: IdentityContext = Depends(get_current_identity),
) -> IdentityContext:
    if not identity.is_admin:
        raise ForbiddenError("Admin access required")
    return identity

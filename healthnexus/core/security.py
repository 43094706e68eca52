"""Access token handling.

Tokens are issued by the authentication service and carry the caller's
user id in ``sub`` and marketplace role in ``role``. This module verifies
them and, for tooling and tests, can mint tokens with the same claims.
"""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from jose import JWTError, jwt

from healthnexus.config import settings
from healthnexus.schemas.users import Identity, UserRole

TOKEN_TYPE = "access"


def create_access_token(identity: Identity, expires_in: timedelta | None = None) -> str:
    """
    Sign an access token for ``identity``.

    Args:
        identity: Caller the token speaks for
        expires_in: Lifetime, defaults to the configured access token lifetime

    Returns:
        Encoded JWT
    """
    issued_at = datetime.now(UTC)
    lifetime = expires_in or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {
        "sub": str(identity.id),
        "role": identity.role.value,
        "type": TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Return verified claims, or None for a bad signature, expiry or token type."""
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if claims.get("type") != TOKEN_TYPE:
        return None
    return claims


def identity_from_token(token: str) -> Identity | None:
    """
    Resolve the caller identity carried by an access token.

    A token without a role claim is treated as a patient token.

    Returns:
        Identity, or None when the token is invalid or its subject or role
        cannot be parsed
    """
    claims = decode_access_token(token)
    if claims is None or not isinstance(claims.get("sub"), str):
        return None

    try:
        return Identity(id=UUID(claims["sub"]), role=UserRole(claims.get("role", UserRole.PATIENT)))
    except ValueError:
        return None

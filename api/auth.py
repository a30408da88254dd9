"""
Authentication: password hashing, access tokens (JWT) and refresh tokens.

Access tokens are HS256 JWTs whose subject is the user id. Refresh tokens are
opaque random strings persisted in the refresh_tokens table.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from fastapi import HTTPException, Request
from jose import JWTError, jwt
from passlib.context import CryptContext

from api.common import get_real_ip

# Security event logger - separate from regular application logging
security_logger = logging.getLogger("security.auth")

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
TOKEN_ISSUER = "tubely-access"
REFRESH_TOKEN_BYTES = 32

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class AuthError(Exception):
    """Raised when a credential is missing, malformed or invalid."""

    pass


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def check_password(password: str, hashed: str) -> bool:
    """Return True if password matches hashed; malformed hashes never match."""
    try:
        return pwd_context.verify(password, hashed)
    except (ValueError, TypeError):
        return False


def make_jwt(user_id: str, secret: str, expires_in: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "iss": TOKEN_ISSUER,
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int((now + expires_in).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def validate_jwt(token: str, secret: str) -> str:
    """
    Validate an access token and return the user id it was issued for.

    Raises:
        AuthError: If the signature, expiry, issuer or subject is invalid
    """
    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], issuer=TOKEN_ISSUER)
    except JWTError as e:
        raise AuthError(f"invalid token: {e}")

    subject = claims.get("sub")
    try:
        return str(uuid.UUID(str(subject)))
    except (TypeError, ValueError):
        raise AuthError("invalid token subject")


def make_refresh_token() -> str:
    return secrets.token_hex(REFRESH_TOKEN_BYTES)


def get_bearer_token(headers: Mapping[str, str]) -> str:
    """
    Extract the token from an "Authorization: Bearer <token>" header.

    Raises:
        AuthError: If the header is missing or not a bearer credential
    """
    header = headers.get("authorization")
    if not header:
        raise AuthError("authorization header is missing")

    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthError("malformed authorization header")
    return token


def _get_request_context(request: Optional[Request]) -> dict:
    """Security-relevant request context for log records."""
    if request is None:
        return {"ip_address": "unknown", "user_agent": "unknown", "path": None}
    return {
        "ip_address": get_real_ip(request),
        "user_agent": request.headers.get("user-agent", "unknown"),
        "path": request.url.path,
    }


async def get_current_user_id(request: Request) -> str:
    """
    FastAPI dependency: authenticate the bearer access token.

    Raises HTTPException 401 on any failure. Returns the user id on success.
    """
    settings = request.app.state.settings

    try:
        token = get_bearer_token(request.headers)
    except AuthError as e:
        security_logger.warning(
            "Authentication failed: missing bearer token",
            extra={"event": "auth_failure", "reason": "missing_token", "detail": str(e), **_get_request_context(request)},
        )
        raise HTTPException(status_code=401, detail="Couldn't find JWT")

    try:
        user_id = validate_jwt(token, settings.jwt_secret)
    except AuthError as e:
        security_logger.warning(
            "Authentication failed: invalid access token",
            extra={"event": "auth_failure", "reason": "invalid_token", "detail": str(e), **_get_request_context(request)},
        )
        raise HTTPException(status_code=401, detail="Couldn't validate JWT")

    return user_id


async def get_refresh_token(request: Request) -> str:
    """FastAPI dependency: the raw bearer credential, for the refresh/revoke endpoints."""
    try:
        return get_bearer_token(request.headers)
    except AuthError as e:
        security_logger.warning(
            "Authentication failed: missing refresh token",
            extra={"event": "auth_failure", "reason": "missing_token", "detail": str(e), **_get_request_context(request)},
        )
        raise HTTPException(status_code=401, detail="Couldn't find token")

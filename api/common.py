"""
Common HTTP utilities: client IP resolution, middleware, rate limiting and
health checks.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Per-endpoint limits
RATE_LIMIT_DEFAULT = "120/minute"
RATE_LIMIT_AUTH = "20/minute"
RATE_LIMIT_UPLOAD = "30/minute"


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware UTC.

    SQLite doesn't store timezone info, so datetimes read back may be naive even
    though they were written as UTC. Naive values are assumed to be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_real_ip(request: Request) -> str:
    """
    Get the real client IP address, respecting X-Forwarded-For only from trusted proxies.

    Security: the header is only trusted when the direct client IP is listed in
    TUBELY_TRUSTED_PROXIES, so clients cannot spoof it to dodge rate limits.
    """
    client_ip = get_remote_address(request)

    settings = getattr(request.app.state, "settings", None)
    trusted = settings.trusted_proxies if settings is not None else frozenset()
    if trusted and client_ip in trusted:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            # X-Forwarded-For: client, proxy1, proxy2, ...
            return forwarded.split(",")[0].strip()

    return client_ip


# Shared by every router (in-memory counters); create_app() applies the enabled flag
limiter = Limiter(key_func=get_real_ip)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors with the standard error envelope."""
    logger.info(f"Rate limit exceeded for {get_real_ip(request)} on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=429,
        content={"error": f"Rate limit exceeded: {exc.detail}"},
        headers={"Retry-After": "60"},
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        # Browsers must not second-guess the content types we sniffed server-side
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        return response


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate or generate an X-Request-ID for every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class NoCacheStaticFiles(StaticFiles):
    """Static files served with Cache-Control: no-store."""

    async def get_response(self, path: str, scope):
        response = await super().get_response(path, scope)
        response.headers["Cache-Control"] = "no-store"
        return response


async def check_health(store) -> dict:
    """
    Check database connectivity.

    Returns a dict with checks, overall health and the HTTP status to use.
    """
    checks = {"database": False}

    try:
        await store.ping()
        checks["database"] = True
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")

    healthy = all(checks.values())
    return {
        "checks": checks,
        "healthy": healthy,
        "status_code": 200 if healthy else 503,
    }

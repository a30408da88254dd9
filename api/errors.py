"""
Error handling utilities.

Every error leaves the API as {"error": "<message>"}. Messages are fixed
strings chosen by the handlers; internal details (tool output, paths, SQL)
are logged and never returned to clients.
"""

import logging
from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.db_retry import DatabaseRetryableError

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong"

# Default messages when a handler raised HTTPException without a detail
DEFAULT_MESSAGES = {
    400: "Bad request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not found",
    413: "Payload too large",
    415: "Unsupported media type",
    429: "Rate limit exceeded",
    500: GENERIC_ERROR_MESSAGE,
    503: "Service temporarily unavailable",
}


def error_response(status_code: int, message: Optional[str], headers: Optional[dict] = None) -> JSONResponse:
    """Build the standard error envelope."""
    if not message:
        message = DEFAULT_MESSAGES.get(status_code, GENERIC_ERROR_MESSAGE)
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def truncate_error(message: Optional[str], max_length: int = 500) -> Optional[str]:
    """Truncate long error text for logs, keeping the head."""
    if message is None:
        return None
    if len(message) <= max_length:
        return message
    return message[: max_length - 3] + "..."


def is_unique_violation(exc: Exception, column: Optional[str] = None) -> bool:
    """
    Check whether an exception is a unique-constraint violation.

    Works with both SQLite ("UNIQUE constraint failed: users.email") and
    PostgreSQL ("duplicate key value violates unique constraint") messages.
    """
    error_str = str(exc).lower()
    is_unique = "unique constraint" in error_str or "duplicate key" in error_str
    if not is_unique:
        return False
    if column is None:
        return True
    return column.lower() in error_str


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else None
    return error_response(exc.status_code, detail, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Turn pydantic validation failures into a 400 naming the first bad field."""
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        if location:
            message = f"Invalid request: {location} {first.get('msg', '').lower()}".strip()
    return error_response(400, message)


async def database_retryable_handler(request: Request, exc: DatabaseRetryableError) -> JSONResponse:
    """Handle exhausted database retries with a 503 response."""
    logger.warning(f"Database busy after retries: {exc}")
    return error_response(503, "Database temporarily unavailable, please retry", headers={"Retry-After": "1"})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "-")
    logger.exception(f"Unhandled error on {request.method} {request.url.path} (request_id={request_id}): {exc}")
    return error_response(500, GENERIC_ERROR_MESSAGE)

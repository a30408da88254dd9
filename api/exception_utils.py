"""
Standardized exception handling utilities.

Keeps the pattern uniform across handlers: the internal exception is logged
with context, and the client receives an HTTPException with a fixed message.
"""

import logging
from typing import NoReturn, Optional

from fastapi import HTTPException

from api.errors import truncate_error

logger = logging.getLogger(__name__)


def log_and_raise_http_exception(
    exception: Exception,
    status_code: int,
    detail: str,
    operation_name: Optional[str] = None,
    log_level: str = "error",
) -> NoReturn:
    """
    Log an exception and raise an HTTPException with sanitized message.

    Args:
        exception: The original exception
        status_code: HTTP status code for the response
        detail: User-facing error message (should be sanitized)
        operation_name: Optional operation name for logging context
        log_level: Logging level (default: "error")

    Example:
        try:
            await objects.put(bucket, key, path, content_type)
        except StoreWriteError as e:
            log_and_raise_http_exception(e, 500, "Couldn't upload video", "video_upload")
    """
    message = truncate_error(str(exception))
    log_msg = f"Error in {operation_name}: {message}" if operation_name else message

    log_func = getattr(logger, log_level, logger.error)
    log_func(log_msg)

    raise HTTPException(status_code=status_code, detail=detail) from exception

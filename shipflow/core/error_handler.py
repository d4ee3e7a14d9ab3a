"""
Error handling

- ShipflowError subclasses map to HTTP statuses (400/404/409/502/500)
- Unhandled exceptions are logged with traceback and returned sanitized
- Database / credential details never reach the client outside DEBUG
"""
import logging
import traceback
from typing import Union

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shipflow.core.config import settings
from shipflow.core.exceptions import (
    CarrierError,
    ConflictError,
    NotFoundError,
    ShipflowError,
    UnknownError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Patterns that indicate internal/sensitive error information
SENSITIVE_PATTERNS = [
    "password",
    "secret",
    "token",
    "api_key",
    "credential",
    "sqlalchemy",
    "asyncpg",
    "postgresql",
    "sqlite",
    "traceback",
    "file \"",
]

STATUS_BY_ERROR = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (CarrierError, 502),
)


def is_sensitive_error(message: str) -> bool:
    message_lower = message.lower()
    return any(pattern in message_lower for pattern in SENSITIVE_PATTERNS)


def sanitize_error_message(error: Union[str, Exception]) -> str:
    """Error message safe for client exposure."""
    message = error if isinstance(error, str) else str(error)

    if settings.DEBUG:
        return message
    if is_sensitive_error(message):
        return "An internal error occurred. Please try again later."
    if len(message) > 200:
        return message[:200] + "..."
    return message


def status_for(error: ShipflowError) -> int:
    for error_cls, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_cls):
            return status_code
    return 500


async def shipflow_error_handler(request: Request, exc: ShipflowError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.code,
            "message": sanitize_error_message(exc.message),
            "details": exc.details,
        },
    )


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """Catch unhandled exceptions; log full details, return a generic 500."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except Exception as e:
            error_id = f"{request.client.host if request.client else 'unknown'}-{id(e)}"
            error = UnknownError(
                f"{type(e).__name__}: {e}",
                details={"error_id": error_id, "path": request.url.path},
            )
            logger.error(
                f"Unhandled exception [{error_id}]: {error.message}\n"
                f"Path: {request.url.path}\n"
                f"Method: {request.method}\n"
                f"Traceback:\n{traceback.format_exc()}"
            )

            content = {
                "error": error.code,
                "message": "An unexpected error occurred. Please try again later.",
                "error_id": error_id,
            }
            if settings.DEBUG:
                content["message"] = str(e)
                content["type"] = type(e).__name__
            return JSONResponse(status_code=500, content=content)

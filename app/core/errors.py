"""
Error Handling
==============

Standardized error codes and exception handlers.
"""

import logging
from typing import Any, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# Error Codes
# =============================================================================

class ErrorCodes:
    """Standardized error codes."""

    # Authentication (AUTH_001 - AUTH_010)
    AUTH_INVALID_TOKEN = "AUTH_001"
    AUTH_NOT_AUTHENTICATED = "AUTH_002"

    # Webhooks (WEBHOOK_001 - WEBHOOK_010)
    WEBHOOK_UNAUTHORIZED = "WEBHOOK_001"
    WEBHOOK_INVALID_PAYLOAD = "WEBHOOK_002"
    WEBHOOK_PROCESSING_FAILED = "WEBHOOK_003"
    WEBHOOK_NOT_CONFIGURED = "WEBHOOK_004"
    WEBHOOK_INVALID_SIGNATURE = "WEBHOOK_005"

    # General
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


# =============================================================================
# Custom Exceptions
# =============================================================================

class AppException(HTTPException):
    """Base application exception with structured error response."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        field: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
        **extra,
    ):
        self.code = code
        self.field = field
        self.extra = extra

        detail = {
            "code": code,
            "message": message,
        }

        if field:
            detail["field"] = field

        detail.update(extra)

        super().__init__(status_code=status_code, detail=detail, headers=headers)


class AuthenticationError(AppException):
    """Authentication-related errors."""

    def __init__(
        self,
        code: str = ErrorCodes.AUTH_INVALID_TOKEN,
        message: str = "Authentication failed",
        **extra,
    ):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            code=code,
            message=message,
            **extra,
        )


class ValidationError(AppException):
    """Validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        code: str = ErrorCodes.VALIDATION_ERROR,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        **extra,
    ):
        super().__init__(
            status_code=status_code,
            code=code,
            message=message,
            field=field,
            **extra,
        )


class ServiceUnavailableError(AppException):
    """External service unavailable errors."""

    def __init__(
        self,
        code: str = ErrorCodes.SERVICE_UNAVAILABLE,
        message: str = "Service temporarily unavailable",
        **extra,
    ):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            code=code,
            message=message,
            **extra,
        )


class WebhookProcessingError(AppException):
    """A webhook could not be applied; the sender should retry."""

    def __init__(
        self,
        message: str = "Error processing webhook",
        **extra,
    ):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code=ErrorCodes.WEBHOOK_PROCESSING_FAILED,
            message=message,
            **extra,
        )


# =============================================================================
# Exception Handlers
# =============================================================================

def _error_response(
    status_code: int,
    error: dict[str, Any],
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error},
        headers=headers,
    )


async def app_exception_handler(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    """Handler for AppException."""
    return _error_response(exc.status_code, exc.detail, exc.headers)


async def http_exception_handler(
    request: Request,
    exc: HTTPException,
) -> JSONResponse:
    """Handler for standard HTTPException (e.g. 404/405 from routing)."""
    if isinstance(exc.detail, dict) and "code" in exc.detail:
        error = exc.detail
    else:
        error = {"code": "HTTP_ERROR", "message": str(exc.detail)}

    return _error_response(exc.status_code, error, exc.headers)


async def validation_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handler for request validation errors; reports the first failing field."""
    errors = exc.errors() if isinstance(exc, (PydanticValidationError, RequestValidationError)) else []

    if not errors:
        return _error_response(
            422,
            {"code": ErrorCodes.VALIDATION_ERROR, "message": str(exc) or "Validation error"},
        )

    first_error = errors[0]
    return _error_response(
        422,
        {
            "code": ErrorCodes.VALIDATION_ERROR,
            "message": first_error.get("msg", "Validation error"),
            "field": ".".join(str(loc) for loc in first_error.get("loc", [])),
        },
    )


async def global_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)

    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"code": ErrorCodes.INTERNAL_ERROR, "message": "An unexpected error occurred"},
    )


def setup_exception_handlers(app):
    """
    Register exception handlers with FastAPI app.

    Usage:
        from app.core.errors import setup_exception_handlers
        setup_exception_handlers(app)
    """
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

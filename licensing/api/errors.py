"""
HTTP error shapes for the licensing API.

All API errors use the AppError shape:

    {"error": {"code": ..., "message": ..., "details": {...}}}

Stack traces are NEVER returned to clients.

Status codes:
- 400: settings validation failed
- 401: no principal on the request
- 403: authorization denied (details.reason carries the deny code)
- 404: no license for the principal
- 409: bot state conflict (ALREADY_RUNNING / NOT_RUNNING) or duplicate license
- 503: licensing store unavailable (fail-closed)
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from licensing.errors import (
    AuthorizationDeniedError,
    BotStateConflictError,
    LicenseAlreadyExistsError,
    LicenseNotFoundError,
    LicensingError,
    LicensingUnavailableError,
    SettingsValidationError,
)

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base application error with consistent error shape."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(AppError):
    """Validation error (400)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class AuthenticationError(AppError):
    """Authentication failure (401)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            code="AUTHENTICATION_ERROR",
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class ActionDeniedError(AppError):
    """Authorization denied (403). The code is the deny reason."""

    def __init__(self, reason: str, action: Optional[str] = None):
        details = {"reason": reason}
        if action is not None:
            details["action"] = action
        super().__init__(
            code=reason,
            message=f"{action or 'Action'} not permitted: {reason}",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details,
        )


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class ConflictError(AppError):
    """Resource or state conflict (409)."""

    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class ServiceUnavailableError(AppError):
    """Service unavailable (503)."""

    def __init__(self, code: str = "SERVICE_UNAVAILABLE", message: str = "Service temporarily unavailable"):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


def to_app_error(exc: LicensingError) -> AppError:
    """Map a domain error onto its HTTP shape."""
    if isinstance(exc, AuthorizationDeniedError):
        return ActionDeniedError(exc.reason.value, exc.action)
    if isinstance(exc, BotStateConflictError):
        return ConflictError(exc.error_code, exc.message, {"status": exc.current_status})
    if isinstance(exc, LicenseAlreadyExistsError):
        return ConflictError(exc.error_code, exc.message)
    if isinstance(exc, SettingsValidationError):
        return ValidationError("Validation failed", {"errors": exc.field_errors})
    if isinstance(exc, LicenseNotFoundError):
        return NotFoundError("License", exc.principal_id)
    if isinstance(exc, LicensingUnavailableError):
        return ServiceUnavailableError(exc.error_code, "Licensing is temporarily unavailable")
    return AppError(exc.error_code, exc.message)


def get_correlation_id(request: Request) -> str:
    correlation_id = request.headers.get("X-Correlation-ID")
    if correlation_id:
        return correlation_id
    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id
    return str(uuid.uuid4())


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catches domain and application errors and returns consistent error responses."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
            response.headers["X-Correlation-ID"] = correlation_id
            return response

        except (AppError, LicensingError) as e:
            error = e if isinstance(e, AppError) else to_app_error(e)
            # Denials and state conflicts are expected outcomes, not faults
            log = logger.warning if error.status_code >= 500 else logger.info
            log(
                "Application error",
                extra={
                    "correlation_id": correlation_id,
                    "error_code": error.code,
                    "status_code": error.status_code,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(),
                headers={"X-Correlation-ID": correlation_id},
            )

        except Exception as e:
            logger.exception(
                "Unhandled exception",
                extra={
                    "correlation_id": correlation_id,
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": "An unexpected error occurred",
                        "details": {"correlation_id": correlation_id},
                    }
                },
                headers={"X-Correlation-ID": correlation_id},
            )

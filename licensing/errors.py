"""
Licensing error hierarchy.

Provides:
- LicensingError: base for all licensing failures
- AuthorizationDeniedError: a decision came back denied and the caller needs an exception
- BotStateConflictError: bot transition requested from the wrong state
- LicensingUnavailableError: storage failed on the request path (fail-closed)
- SettingsValidationError: limits / warm-up payload rejected
- LicenseNotFoundError: lifecycle operation on an unknown principal
"""

from typing import Any, Dict, List, Optional

from licensing.models import DenyReason


class LicensingError(Exception):
    """Base exception for licensing failures."""

    error_code = "LICENSING_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class AuthorizationDeniedError(LicensingError):
    """Raised when an action is denied for the principal."""

    def __init__(self, principal_id: str, reason: DenyReason, action: Optional[str] = None):
        self.principal_id = principal_id
        self.reason = DenyReason(reason)
        self.action = action
        self.error_code = self.reason.value
        super().__init__(f"{action or 'action'} denied for {principal_id}: {self.reason.value}")

    def to_dict(self) -> dict:
        d: dict = {
            "error": self.error_code,
            "message": self.message,
            "principal_id": self.principal_id,
        }
        if self.action is not None:
            d["action"] = self.action
        return d


class BotStateConflictError(LicensingError):
    """ALREADY_RUNNING / NOT_RUNNING."""

    ALREADY_RUNNING = "ALREADY_RUNNING"
    NOT_RUNNING = "NOT_RUNNING"

    def __init__(self, principal_id: str, code: str, current_status: Optional[str] = None):
        self.principal_id = principal_id
        self.error_code = code
        self.current_status = current_status
        message = "Bot is already running" if code == self.ALREADY_RUNNING else "Bot is not running"
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "principal_id": self.principal_id,
            "status": self.current_status,
        }


class LicensingUnavailableError(LicensingError):
    """
    Raised when the license store cannot be read or written.

    Callers must treat this as a denial; the request never falls through to allow.
    """

    error_code = "LICENSING_UNAVAILABLE"

    def __init__(self, principal_id: Optional[str], detail: str, cause: Optional[Exception] = None):
        self.principal_id = principal_id
        self.detail = detail
        self.cause = cause
        super().__init__(f"Licensing unavailable for {principal_id or 'maintenance'}: {detail}")

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": "Licensing is temporarily unavailable. Access denied.",
            "principal_id": self.principal_id,
        }


class SettingsValidationError(LicensingError):
    """Carries one {"field", "message"} entry per rejected field."""

    error_code = "VALIDATION_ERROR"

    def __init__(self, field_errors: List[Dict[str, Any]]):
        self.field_errors = list(field_errors)
        fields = ", ".join(str(e.get("field")) for e in self.field_errors) or "payload"
        super().__init__(f"Invalid settings: {fields}")

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "errors": self.field_errors,
        }


class LicenseNotFoundError(LicensingError):
    error_code = "LICENSE_NOT_FOUND"

    def __init__(self, principal_id: str):
        self.principal_id = principal_id
        super().__init__(f"No license for principal {principal_id}")


class LicenseAlreadyExistsError(LicensingError):
    error_code = "LICENSE_EXISTS"

    def __init__(self, principal_id: str):
        self.principal_id = principal_id
        super().__init__(f"License already exists for principal {principal_id}")

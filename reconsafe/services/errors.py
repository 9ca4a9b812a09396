"""
ReconSafe Error Handling

Typed errors carrying a stable code, a user-facing message and debugging
context. The API layer maps each code to an HTTP status.
"""
from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes for client handling."""
    # Input errors (400s)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_FIELD = "MISSING_FIELD"

    # Auth errors (401/403)
    NO_AUTH = "NO_AUTH"
    INVALID_TOKEN = "INVALID_TOKEN"
    NO_TENANT = "NO_TENANT"
    FORBIDDEN = "FORBIDDEN"
    RATE_LIMITED = "RATE_LIMITED"

    # State errors
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"


class ReconSafeError(Exception):
    """Base exception with structured error info."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        detail: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.detail = detail
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        result = {
            "error": self.message,
            "code": self.code.value,
            "message": self.message,
        }
        if self.detail:
            result["detail"] = self.detail
        if self.context:
            result["context"] = self.context
        return result


class NotFoundError(ReconSafeError):
    """Referenced record does not exist (or belongs to another tenant)."""

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=f"{resource} not found",
            context={"resource": resource, "id": resource_id} if resource_id else {"resource": resource},
        )


class ConflictError(ReconSafeError):
    """Operation is not valid for the record's current state."""

    def __init__(self, message: str, detail: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.CONFLICT,
            message=message,
            detail=detail,
            context=context,
        )


class ValidationError(ReconSafeError):
    """Malformed input value."""

    def __init__(self, field: str, detail: str):
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=f"Invalid value for '{field}'",
            detail=detail,
            context={"field": field},
        )


class MissingFieldError(ReconSafeError):
    def __init__(self, field: str):
        super().__init__(
            code=ErrorCode.MISSING_FIELD,
            message=f"{field} is required",
            context={"field": field},
        )


class UnauthorizedError(ReconSafeError):
    """Caller identity missing or unverifiable."""

    def __init__(self, code: ErrorCode = ErrorCode.NO_AUTH, detail: Optional[str] = None):
        message = "Missing authorization" if code == ErrorCode.NO_AUTH else "Invalid token"
        super().__init__(code=code, message=message, detail=detail)


class ForbiddenError(ReconSafeError):
    """Caller is authenticated but may not act here."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.FORBIDDEN):
        super().__init__(code=code, message=message)


STATUS_MAP = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.MISSING_FIELD: 400,
    ErrorCode.NO_AUTH: 401,
    ErrorCode.INVALID_TOKEN: 401,
    ErrorCode.NO_TENANT: 403,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
}


def status_for(error: ReconSafeError) -> int:
    return STATUS_MAP.get(error.code, 500)
"""
Use-Case Errors

Error codes and exception classes surfaced synchronously to callers of a use
case. Each code maps to an HTTP status for whatever transport sits in front.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    # Client errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"

    # Business preconditions
    PACKAGE_INSUFFICIENT_UNITS = "PACKAGE_INSUFFICIENT_UNITS"
    LOYALTY_INSUFFICIENT_BALANCE = "LOYALTY_INSUFFICIENT_BALANCE"

    # Server errors (5xx)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"


ERROR_STATUS_CODES = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.PACKAGE_INSUFFICIENT_UNITS: 409,
    ErrorCode.LOYALTY_INSUFFICIENT_BALANCE: 409,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.DATABASE_ERROR: 500,
}


def get_status_code(error_code: ErrorCode) -> int:
    """HTTP status code for an error code (500 if unmapped)."""
    return ERROR_STATUS_CODES.get(error_code, 500)


class UseCaseError(Exception):
    """
    Base exception for errors a use case reports to its caller.

    Raising one of these from a handler means nothing was committed and
    nothing is cached under the request's idempotency key, so the same
    request may be retried later.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[List[Dict[str, Any]]] = None
    ):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = get_status_code(code)
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(UseCaseError):
    """Malformed or missing input. Never retried by the core."""

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(code=ErrorCode.VALIDATION_ERROR, message=message, details=details)


class NotFoundError(UseCaseError):
    """Referenced resource does not exist for this tenant."""

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' not found"
        super().__init__(code=ErrorCode.NOT_FOUND, message=message)
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(UseCaseError):
    """A business precondition was violated (e.g. insufficient balance)."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.CONFLICT):
        super().__init__(code=code, message=message)

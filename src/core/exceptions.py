"""Custom exception classes for the case log review service.

Every error raised by a manager carries a stable machine-readable ``kind``
and the HTTP status it maps to, so the application can render one envelope
for all of them.
"""

from typing import Dict, Optional


class CaseLogError(Exception):
    """Base exception for all case log review errors."""

    kind = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, fields: Optional[Dict[str, str]] = None):
        """Initialize the exception.

        Args:
            message: Human readable message.
            fields: Optional mapping of field name to field-level message.
        """
        self.message = message
        self.fields = fields or {}
        super().__init__(message)


class ValidationError(CaseLogError):
    """Raised when input is malformed or out of range."""

    kind = "VALIDATION_ERROR"
    status_code = 400


class AuthenticationError(CaseLogError):
    """Raised when the request carries no valid identity."""

    kind = "UNAUTHENTICATED"
    status_code = 401


class NotFoundError(CaseLogError):
    """Raised when a resource is absent or not visible to the actor."""

    kind = "NOT_FOUND"
    status_code = 404


class ForbiddenError(CaseLogError):
    """Raised when the actor lacks the required role or ownership."""

    kind = "FORBIDDEN"
    status_code = 403


class UnauthorizedError(ForbiddenError):
    """Raised when the actor is not entitled to act on a course."""

    kind = "UNAUTHORIZED"


class ConflictError(CaseLogError):
    """Raised on uniqueness violations."""

    kind = "CONFLICT"
    status_code = 409


class InvalidTransitionError(ConflictError):
    """Raised when a log's status does not allow the requested transition."""

    kind = "INVALID_TRANSITION"

    def __init__(self, log_id: str, current_status: str, action: str):
        """Initialize the exception.

        Args:
            log_id: The ID of the log.
            current_status: Status the log is in.
            action: The attempted action.
        """
        self.log_id = log_id
        self.current_status = getattr(current_status, "value", current_status)
        self.action = action
        super().__init__(
            f"Cannot {action} log '{log_id}' while it is {self.current_status}"
        )


class DependencyError(CaseLogError):
    """Raised when storage or an upstream service fails."""

    kind = "DEPENDENCY_ERROR"
    status_code = 503

# exceptions.py — Error taxonomy for TaskFlow
"""
Every error the API surfaces deliberately is a TaskFlowError subclass.
main.py maps them onto a single JSON shape:

    {"detail": message, "code": error_code, "request_id": ...}

Validation errors additionally carry an ``errors`` list of field messages.
"""
from typing import Any, Dict, List, Optional


class TaskFlowError(Exception):
    """Base class. Subclasses set ``status_code`` and ``default_error_code``."""

    status_code: int = 500
    default_error_code: str = "INTERNAL_ERROR"
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"detail": self.message, "code": self.error_code}
        body.update(self.details)
        return body


class Unauthenticated(TaskFlowError):
    """No valid session/token (HTTP 401)."""

    status_code = 401
    default_error_code = "UNAUTHENTICATED"
    default_message = "Unauthorized"


class Forbidden(TaskFlowError):
    """Authenticated, but the role or membership does not allow it (HTTP 403)."""

    status_code = 403
    default_error_code = "FORBIDDEN"
    default_message = "Admin access required"


class NotFound(TaskFlowError):
    status_code = 404
    default_error_code = "NOT_FOUND"
    default_message = "Resource not found"


class ValidationError(TaskFlowError):
    """Malformed or out-of-range input, detected before any store access (HTTP 400)."""

    status_code = 400
    default_error_code = "VALIDATION_ERROR"
    default_message = "Invalid data"

    def __init__(
        self,
        message: Optional[str] = None,
        errors: Optional[List[Dict[str, str]]] = None,
        error_code: Optional[str] = None,
    ):
        self.errors = errors or []
        super().__init__(message, error_code, {"errors": self.errors})

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, errors=[{"field": field, "message": message, "type": "value_error"}])


class ConflictError(TaskFlowError):
    status_code = 409
    default_error_code = "CONFLICT"
    default_message = "Resource conflict"


class RateLimited(TaskFlowError):
    status_code = 429
    default_error_code = "RATE_LIMITED"
    default_message = "Too many requests"


class UpstreamFailure(TaskFlowError):
    """The database or the language-model API failed. Never retried."""

    status_code = 500
    default_error_code = "UPSTREAM_FAILURE"
    default_message = "Upstream service failure"

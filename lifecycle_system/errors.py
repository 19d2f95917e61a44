# lifecycle_system/errors.py
"""
Typed error kinds raised by lifecycle services.

Each kind carries the HTTP status the API layer maps it to.
"""
from typing import Any, Dict, Optional


class LifecycleError(Exception):
    """Base class for all lifecycle engine errors."""

    http_status = 500
    kind = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LifecycleError):
    """Malformed or out-of-policy input. Never retried automatically."""
    http_status = 400
    kind = "validation_error"


class NotFoundError(LifecycleError):
    http_status = 404
    kind = "not_found"


class StateError(LifecycleError):
    """Operation illegal given the current state machine position."""
    http_status = 400
    kind = "state_error"


class ConflictError(LifecycleError):
    """Uniqueness violation, e.g. a second PENDING application."""
    http_status = 409
    kind = "conflict"


class AuthenticationError(LifecycleError):
    http_status = 401
    kind = "unauthorized"


class ExternalDependencyError(LifecycleError):
    """
    Billing, identity or notification provider failure.

    Reported in side effect results; never rolls back the state change
    it accompanied.
    """
    http_status = 502
    kind = "external_dependency_error"


class EvaluationTimeoutError(LifecycleError):
    """Eligibility fan-out exceeded its bound. Safe to retry as is."""
    http_status = 504
    kind = "evaluation_timeout"

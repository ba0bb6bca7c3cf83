"""
Application error hierarchy.

Services raise these; the handler registered in ``tally.main`` turns them
into JSON responses with the matching status code.
"""

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return {"error": payload}


class ValidationError(AppError):
    """Malformed input, rejected before touching the store."""

    status_code = 422
    code = "validation_error"


class NotFoundError(AppError):
    """Unknown id within the caller's dashboard."""

    status_code = 404
    code = "not_found"

    def __init__(self, resource: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{resource} not found", details)


class ForbiddenError(AppError):
    """Permission gate rejection."""

    status_code = 403
    code = "forbidden"


class ConcurrencyConflict(AppError):
    """Lock contention on a recurrence or installment group."""

    status_code = 409
    code = "conflict"


class ConsistencyViolation(AppError):
    """
    Installment numbering broke after a scoped mutation.

    Internal: the operation is rolled back and the error logged. Callers see a
    generic 500.
    """

    status_code = 500
    code = "consistency_violation"

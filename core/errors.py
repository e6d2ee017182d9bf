"""
Domain error taxonomy.

Services raise these; the HTTP layer maps them to responses in
core.middleware.error_handling.
"""

from typing import Any, Optional


class ATSError(Exception):
    """Base class for expected, client-facing failures."""

    status_code: int = 400
    code: str = "ATS_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class NotFoundError(ATSError):
    """A referenced job, job candidate, candidate, company or user does not exist."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")
        self.resource = resource


class ValidationError(ATSError):
    """Malformed input, keyed by field name."""

    status_code = 422
    code = "VALIDATION_ERROR"

    def __init__(self, errors: dict[str, list[str]]):
        super().__init__("Validation failed", details=errors)
        self.errors = errors

"""Typed failures raised by the POS core.

Every failure carries an operator-readable message. The HTTP layer maps the
``status_code`` and ``code`` attributes onto the response.
"""

from typing import Any, Dict, Optional


class PosError(Exception):
    code = "POS_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return error


class ValidationError(PosError):
    """Malformed or out-of-range input."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFound(PosError):
    code = "NOT_FOUND"
    status_code = 404


class PreconditionFailed(PosError):
    """Input is valid but the entity's current state forbids the operation."""

    code = "PRECONDITION_FAILED"
    status_code = 409


class PartialFailure(PosError):
    """A batch mutation stopped partway; applied steps were not undone.

    ``details`` holds the failing step index, its operation and order id, and
    the list of steps that had already been applied.
    """

    code = "PARTIAL_FAILURE"
    status_code = 500

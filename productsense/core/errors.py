"""Error taxonomy shared by the practice services.

Every service failure is one of a small set of kinds. The HTTP layer maps
the kind to a status code; services never raise ``HTTPException`` directly.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    OUT_OF_ORDER = "OUT_OF_ORDER"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    CONFLICT = "CONFLICT"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    UPSTREAM_FAILURE = "UPSTREAM_FAILURE"


class PracticeError(Exception):
    """Base exception for practice service errors."""

    kind: ErrorKind = ErrorKind.INVALID_ARGUMENT

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.kind.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(PracticeError):
    """Raised when a session or user does not exist or is not owned by the caller."""

    kind = ErrorKind.NOT_FOUND


class InvalidStateError(PracticeError):
    """Raised when an operation is illegal for the session's current status."""

    kind = ErrorKind.INVALID_STATE


class OutOfOrderError(PracticeError):
    """Raised when a step save skips ahead of the session's current step."""

    kind = ErrorKind.OUT_OF_ORDER


class ValidationFailedError(PracticeError):
    """Raised when a step payload breaks its structural rules."""

    kind = ErrorKind.VALIDATION_FAILED

    def __init__(self, errors: Dict[str, str], message: str = "Step data is invalid"):
        super().__init__(message, details={"fields": dict(errors)})
        self.errors = dict(errors)


class ConflictError(PracticeError):
    kind = ErrorKind.CONFLICT


class InvalidArgumentError(PracticeError):
    kind = ErrorKind.INVALID_ARGUMENT


class UpstreamFailureError(PracticeError):
    """Raised when the external judge errors, times out or answers malformed."""

    kind = ErrorKind.UPSTREAM_FAILURE

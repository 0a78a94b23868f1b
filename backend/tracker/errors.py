"""
Launch Tracker - Error Taxonomy

Every failure is classified once, where it happens, into an ErrorKind.
The API layer renders any TrackerError through a single status table;
nothing downstream re-inspects exception types to decide what went wrong.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Closed set of failure classes surfaced to callers."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT_SAME_IDENTITY = "CONFLICT_SAME_IDENTITY"
    CONFLICT_SAME_NETWORK = "CONFLICT_SAME_NETWORK"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    BOT_DETECTED = "BOT_DETECTED"
    NETWORK_UNIDENTIFIED = "NETWORK_UNIDENTIFIED"
    SERVER_ERROR = "SERVER_ERROR"


# HTTP status per kind, and whether a caller may retry the same request.
ERROR_KIND_CONFIG = {
    ErrorKind.VALIDATION_ERROR: {"status": 400, "retryable": False},
    ErrorKind.CONFLICT_SAME_IDENTITY: {"status": 409, "retryable": False},
    ErrorKind.CONFLICT_SAME_NETWORK: {"status": 409, "retryable": False},
    ErrorKind.NOT_FOUND: {"status": 404, "retryable": False},
    ErrorKind.RATE_LIMIT_EXCEEDED: {"status": 429, "retryable": True},
    ErrorKind.CAPACITY_EXCEEDED: {"status": 503, "retryable": True},
    ErrorKind.BOT_DETECTED: {"status": 503, "retryable": False},
    ErrorKind.NETWORK_UNIDENTIFIED: {"status": 400, "retryable": False},
    ErrorKind.SERVER_ERROR: {"status": 500, "retryable": True},
}


def status_for(kind: ErrorKind) -> int:
    return ERROR_KIND_CONFIG[kind]["status"]


def is_retryable(kind: ErrorKind) -> bool:
    return ERROR_KIND_CONFIG[kind]["retryable"]


class TrackerError(Exception):
    """Base class for all errors the API reports to callers."""
    kind: ErrorKind = ErrorKind.SERVER_ERROR

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        retry_after: Optional[int] = None,
        kind: Optional[ErrorKind] = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.retry_after = retry_after
        if kind is not None:
            self.kind = kind

    @property
    def status_code(self) -> int:
        return status_for(self.kind)

    def to_dict(self) -> Dict[str, Any]:
        """Render the public error envelope."""
        error: Dict[str, Any] = {
            "code": self.kind.value,
            "message": self.message,
            "retryable": is_retryable(self.kind),
        }
        if self.field:
            error["field"] = self.field
        if self.retry_after is not None:
            error["retry_after"] = self.retry_after
        return {"success": False, "error": error}


class ValidationError(TrackerError):
    """Client-fixable input problem, tagged with the offending field."""
    kind = ErrorKind.VALIDATION_ERROR

    @classmethod
    def from_result(cls, result) -> "ValidationError":
        return cls(result.message, field=result.field)


class ConflictError(TrackerError):
    """
    Duplicate submission. The kind tells the UI which guidance to show:
    CONFLICT_SAME_IDENTITY means "use update", CONFLICT_SAME_NETWORK means
    someone else on this network already predicted.
    """
    kind = ErrorKind.CONFLICT_SAME_IDENTITY

    @classmethod
    def same_identity(cls) -> "ConflictError":
        return cls(
            "You've already submitted a prediction. Use update instead.",
            kind=ErrorKind.CONFLICT_SAME_IDENTITY,
        )

    @classmethod
    def same_network(cls) -> "ConflictError":
        return cls(
            "A prediction has already been submitted from your network.",
            kind=ErrorKind.CONFLICT_SAME_NETWORK,
        )


class NotFoundError(TrackerError):
    kind = ErrorKind.NOT_FOUND


class RateLimitError(TrackerError):
    """Per-caller pacing; retry after `retry_after` seconds."""
    kind = ErrorKind.RATE_LIMIT_EXCEEDED


class CapacityExceededError(TrackerError):
    """Whole-system admission is closed until the daily reset."""
    kind = ErrorKind.CAPACITY_EXCEEDED


class BotDetectedError(TrackerError):
    kind = ErrorKind.BOT_DETECTED


class ServerError(TrackerError):
    kind = ErrorKind.SERVER_ERROR


class NetworkIdentityError(TrackerError):
    """The caller's network address could not be resolved or hashed."""
    kind = ErrorKind.NETWORK_UNIDENTIFIED

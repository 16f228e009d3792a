"""
Custom exceptions for GuardianLink.

Provides structured errors with error codes, grouped by the error taxonomy:
validation, quota, permission, invalid transition, media acquisition and
store errors.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Standard error codes for GuardianLink."""
    # General errors (1xxx)
    UNKNOWN_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"
    CONFIGURATION_ERROR = "E1002"

    # Data errors (2xxx)
    DATA_NOT_FOUND = "E2000"
    STORE_ERROR = "E2001"

    # Security errors (3xxx)
    PERMISSION_DENIED = "E3001"

    # Workflow errors (5xxx)
    INVALID_TRANSITION = "E5000"
    QUOTA_EXCEEDED = "E5001"

    # Media errors (6xxx)
    MEDIA_PERMISSION_DENIED = "E6000"
    MEDIA_NO_DEVICE = "E6001"
    MEDIA_UNAVAILABLE = "E6002"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: Optional[str] = None
    student_id: Optional[str] = None
    session_id: Optional[str] = None
    additional: Dict[str, Any] = field(default_factory=dict)


class GuardianLinkError(Exception):
    """
    Base exception for GuardianLink.

    All custom exceptions should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or ErrorContext()
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
            "timestamp": self.context.timestamp.isoformat(),
        }
        if self.context.session_id:
            result["session_id"] = self.context.session_id
        return result

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"


class ValidationError(GuardianLinkError):
    """Raised when caller input is malformed (e.g. metric out of range)."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs,
    ):
        super().__init__(message=message, error_code=ErrorCode.VALIDATION_ERROR, **kwargs)
        self.field = field
        self.value = value


class DataNotFoundError(GuardianLinkError):
    """Raised when requested data is not found."""

    def __init__(self, message: str, resource_type: str = "", resource_id: str = "", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.DATA_NOT_FOUND, **kwargs)
        self.resource_type = resource_type
        self.resource_id = resource_id


class PermissionDeniedError(GuardianLinkError):
    """Raised when an actor lacks the capability for an operation."""

    def __init__(self, message: str, role: str = "", capability: str = "", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.PERMISSION_DENIED, **kwargs)
        self.role = role
        self.capability = capability


class InvalidTransitionError(GuardianLinkError):
    """Raised when a state machine is asked for a transition it does not allow."""

    def __init__(self, message: str, from_state: str = "", action: str = "", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.INVALID_TRANSITION, **kwargs)
        self.from_state = from_state
        self.action = action


class QuotaExceededError(GuardianLinkError):
    """Raised when a bounded counter is already at its cap. Nothing is mutated."""

    def __init__(self, message: str, limit: int = 0, current: int = 0, **kwargs):
        super().__init__(message=message, error_code=ErrorCode.QUOTA_EXCEEDED, **kwargs)
        self.limit = limit
        self.current = current


class MediaErrorCause(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    NO_DEVICE = "no_device"
    UNKNOWN = "unknown"


_MEDIA_CODES = {
    MediaErrorCause.PERMISSION_DENIED: ErrorCode.MEDIA_PERMISSION_DENIED,
    MediaErrorCause.NO_DEVICE: ErrorCode.MEDIA_NO_DEVICE,
    MediaErrorCause.UNKNOWN: ErrorCode.MEDIA_UNAVAILABLE,
}

_MEDIA_MESSAGES = {
    MediaErrorCause.PERMISSION_DENIED: (
        "Camera/microphone access denied. Please allow access and try again."
    ),
    MediaErrorCause.NO_DEVICE: "No camera or microphone found on this device.",
    MediaErrorCause.UNKNOWN: "Failed to start call",
}


class MediaAcquisitionError(GuardianLinkError):
    """Camera/microphone could not be acquired. Terminal for that call session only."""

    def __init__(
        self,
        cause_kind: MediaErrorCause = MediaErrorCause.UNKNOWN,
        message: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(
            message=message or _MEDIA_MESSAGES[cause_kind],
            error_code=_MEDIA_CODES[cause_kind],
            **kwargs,
        )
        self.cause_kind = cause_kind


class StoreError(GuardianLinkError):
    """Raised by document store implementations on a failed read/write."""

    def __init__(self, message: str, path: str = "", **kwargs):
        super().__init__(message=message, error_code=ErrorCode.STORE_ERROR, **kwargs)
        self.path = path

"""Custom exceptions and error handling for the shift reschedule workflow.

Every failure carries a stable string code. Callers map the code to
user-facing text through their translation layer; nothing here formats
human-readable messages.
"""
from typing import Optional, Dict, Any, Iterable
from datetime import datetime
import enum


class ErrorCode(str, enum.Enum):
    """Stable error codes returned to callers."""
    # Validation
    REASON_REQUIRED = "REASON_REQUIRED"
    REASON_TOO_LONG = "REASON_TOO_LONG"
    INVALID_PRIORITY = "INVALID_PRIORITY"
    INVALID_TYPE = "INVALID_TYPE"
    EXPIRY_INVALID = "EXPIRY_INVALID"
    ADVANCE_NOTICE_REQUIRED = "ADVANCE_NOTICE_REQUIRED"
    # Not found
    RESCHEDULE_REQUEST_NOT_FOUND = "RESCHEDULE_REQUEST_NOT_FOUND"
    TARGET_SHIFT_NOT_FOUND = "TARGET_SHIFT_NOT_FOUND"
    # Conflict
    ALREADY_EXISTS = "ALREADY_EXISTS"
    CONFLICT_DETECTED = "CONFLICT_DETECTED"
    # Authorization
    OWNER_ONLY = "OWNER_ONLY"
    CANCEL_OWN_ONLY = "CANCEL_OWN_ONLY"
    BRANCH_ACCESS = "BRANCH_ACCESS"
    APPROVER_PERMISSION = "APPROVER_PERMISSION"
    APPROVER_BRANCH = "APPROVER_BRANCH"
    # State
    INVALID_STATUS = "INVALID_STATUS"
    CANNOT_ACCEPT = "CANNOT_ACCEPT"
    CANNOT_APPROVE = "CANNOT_APPROVE"
    CANNOT_REJECT = "CANNOT_REJECT"
    CANNOT_CANCEL = "CANNOT_CANCEL"
    EXPIRED = "EXPIRED"


class RescheduleError(Exception):
    """Base class for all reschedule workflow errors."""

    http_status = 400

    def __init__(self, error_code: ErrorCode, details: Optional[Dict[str, Any]] = None):
        """
        Initialize reschedule error.

        Args:
            error_code: Machine-readable error code
            details: Optional additional error details
        """
        self.error_code = ErrorCode(error_code)
        self.details = details or {}
        super().__init__(self.error_code.value)

    @property
    def code(self) -> str:
        return self.error_code.value

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary format for API responses.

        Returns:
            Dictionary with error information
        """
        return {
            "success": False,
            "error": {
                "code": self.code,
                "details": self.details
            }
        }


class RequestValidationError(RescheduleError):
    """Input rejected before any state is read."""
    http_status = 400


class NotFoundError(RescheduleError):
    """A referenced request or shift does not exist."""
    http_status = 404


class ConflictError(RescheduleError):
    """Duplicate request or schedule overlap."""
    http_status = 409


class AuthorizationError(RescheduleError):
    """The actor may not perform the action on this request."""
    http_status = 403


class StateError(RescheduleError):
    """The action is not legal from the request's current state."""
    http_status = 409

    def __init__(self, error_code: ErrorCode, details: Optional[Dict[str, Any]] = None):
        super().__init__(error_code, details)
        if self.error_code == ErrorCode.EXPIRED:
            self.http_status = 410


class RequestNotFoundError(NotFoundError):
    """Error raised when a reschedule request does not exist."""

    def __init__(self, request_id: str):
        super().__init__(
            ErrorCode.RESCHEDULE_REQUEST_NOT_FOUND,
            details={"request_id": request_id}
        )


class ShiftNotFoundError(NotFoundError):
    """Error raised when a referenced shift does not exist."""

    def __init__(self, shift_id: str, field: str = "target_shift_id"):
        super().__init__(
            ErrorCode.TARGET_SHIFT_NOT_FOUND,
            details={"shift_id": shift_id, "field": field}
        )


class AlreadyExistsError(ConflictError):
    """Error raised when the source shift already has an open request."""

    def __init__(self, source_shift_id: str, existing_request_id: Optional[str] = None):
        super().__init__(
            ErrorCode.ALREADY_EXISTS,
            details={
                "source_shift_id": source_shift_id,
                "existing_request_id": existing_request_id
            }
        )


class ConflictDetectedError(ConflictError):
    """Error raised when a staff member already has an overlapping shift."""

    def __init__(self, staff_id: str, shift_id: str, conflicting_shift_ids: Iterable[str]):
        super().__init__(
            ErrorCode.CONFLICT_DETECTED,
            details={
                "staff_id": staff_id,
                "shift_id": shift_id,
                "conflicting_shift_ids": list(conflicting_shift_ids)
            }
        )


class InvalidTransitionError(StateError):
    """Error raised when attempting an illegal status transition."""

    def __init__(self, error_code: ErrorCode, current_status: str, attempted_action: str):
        super().__init__(
            error_code,
            details={
                "current_status": current_status,
                "attempted_action": attempted_action
            }
        )


class RequestExpiredError(StateError):
    """Error raised when acting on a request past its validity window."""

    def __init__(self, request_id: str, expires_at: Optional[datetime]):
        super().__init__(
            ErrorCode.EXPIRED,
            details={
                "request_id": request_id,
                "expires_at": expires_at.isoformat() if expires_at else None
            }
        )


class StaleVersionError(Exception):
    """Raised by the request store when a compare-and-swap loses.

    Never leaves the engine: the transition executor translates it into
    a state error.
    """

    def __init__(self, request_id: str, expected_version: int):
        self.request_id = request_id
        self.expected_version = expected_version
        super().__init__(f"Stale version {expected_version} for request {request_id}")


def format_error_for_api(error: RescheduleError) -> Dict[str, Any]:
    """
    Format reschedule error for API response.

    Args:
        error: Error to format

    Returns:
        Dictionary suitable for JSON API response
    """
    return error.to_dict()

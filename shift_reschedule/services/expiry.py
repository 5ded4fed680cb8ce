"""Expiry evaluation for reschedule requests.

Everything here is a pure function of its arguments; the sweep that acts
on the results lives in RescheduleService.expire_stale_requests.
"""
from datetime import datetime, timedelta
from typing import Optional

from shift_reschedule.models.reschedule_request import RescheduleStatus, NON_TERMINAL_STATUSES
from shift_reschedule.exceptions import RequestValidationError, ErrorCode


def is_lapsed(status: RescheduleStatus, expires_at: Optional[datetime], now: datetime) -> bool:
    """
    Check if a request has silently run past its validity window.

    Args:
        status: Current stored status
        expires_at: Expiry time of the request
        now: Evaluation time

    Returns:
        True if the request is still non-terminal and now > expires_at
    """
    if status not in NON_TERMINAL_STATUSES or expires_at is None:
        return False
    return now > expires_at


def is_expired(status: RescheduleStatus, expires_at: Optional[datetime], now: datetime) -> bool:
    """Expired either in storage or by the clock."""
    return status == RescheduleStatus.EXPIRED or is_lapsed(status, expires_at, now)


def time_remaining(status: RescheduleStatus, expires_at: Optional[datetime], now: datetime) -> Optional[timedelta]:
    """
    Time left before the request lapses.

    Returns:
        Remaining time (never negative) for non-terminal requests,
        None once the request can no longer expire
    """
    if status not in NON_TERMINAL_STATUSES or expires_at is None:
        return None
    return max(expires_at - now, timedelta(0))


def validate_expiry(expires_at: Optional[datetime], now: datetime) -> None:
    """
    Reject an explicit expiry that is not strictly in the future.

    Raises:
        RequestValidationError: EXPIRY_INVALID
    """
    if expires_at is None:
        return
    if expires_at <= now:
        raise RequestValidationError(
            ErrorCode.EXPIRY_INVALID,
            details={"expires_at": expires_at.isoformat(), "now": now.isoformat()}
        )


def resolve_expiry(
    expires_at: Optional[datetime],
    now: datetime,
    shift_start: datetime,
    min_notice: timedelta,
    default_ttl: timedelta
) -> datetime:
    """
    Work out the expiry of a new request against its source shift.

    The latest acceptable expiry is shift_start - min_notice. Without an
    explicit expiry the default TTL is used, clamped to that boundary.

    Args:
        expires_at: Requested expiry, if any
        now: Creation time
        shift_start: Start of the source shift
        min_notice: Minimum advance notice before the shift starts
        default_ttl: Validity window used when no expiry is given

    Returns:
        The expiry to store

    Raises:
        RequestValidationError: ADVANCE_NOTICE_REQUIRED
    """
    deadline = shift_start - min_notice
    if deadline <= now:
        raise RequestValidationError(
            ErrorCode.ADVANCE_NOTICE_REQUIRED,
            details={
                "shift_start": shift_start.isoformat(),
                "min_notice_minutes": int(min_notice.total_seconds() // 60)
            }
        )

    if expires_at is None:
        return min(now + default_ttl, deadline)

    if expires_at > deadline:
        raise RequestValidationError(
            ErrorCode.ADVANCE_NOTICE_REQUIRED,
            details={
                "expires_at": expires_at.isoformat(),
                "latest_expiry": deadline.isoformat(),
                "min_notice_minutes": int(min_notice.total_seconds() // 60)
            }
        )
    return expires_at

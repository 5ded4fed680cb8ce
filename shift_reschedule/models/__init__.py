"""Database models package."""
from shift_reschedule.models.staff import Staff, StaffRole
from shift_reschedule.models.branch import Branch, StaffBranch
from shift_reschedule.models.work_shift import WorkShift, ShiftStatus
from shift_reschedule.models.reschedule_request import (
    RescheduleRequest,
    RescheduleStatus,
    ReschedulePriority,
    SwapType,
    NON_TERMINAL_STATUSES,
    TERMINAL_STATUSES,
    ALLOWED_TRANSITIONS,
    can_transition,
)
from shift_reschedule.models.state_history import RescheduleStateHistory
from shift_reschedule.models.notification_outbox import NotificationOutbox, OutboxStatus, RecipientRole

__all__ = [
    "Staff",
    "StaffRole",
    "Branch",
    "StaffBranch",
    "WorkShift",
    "ShiftStatus",
    "RescheduleRequest",
    "RescheduleStatus",
    "ReschedulePriority",
    "SwapType",
    "NON_TERMINAL_STATUSES",
    "TERMINAL_STATUSES",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "RescheduleStateHistory",
    "NotificationOutbox",
    "OutboxStatus",
    "RecipientRole",
]

"""Scheduler and background tasks package."""
from shift_reschedule.scheduler.expiry_scheduler import (
    start_scheduler,
    stop_scheduler,
    sweep_expired_requests,
    dispatch_pending_notifications
)

__all__ = [
    'start_scheduler',
    'stop_scheduler',
    'sweep_expired_requests',
    'dispatch_pending_notifications'
]

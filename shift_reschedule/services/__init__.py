"""Business logic services package."""
from shift_reschedule.services.authorization import Actor, Action, Capability, AuthorizationGuard
from shift_reschedule.services.calendar_service import ShiftCalendarService
from shift_reschedule.services.conflict_detector import ConflictDetector
from shift_reschedule.services.directory_service import StaffDirectoryService
from shift_reschedule.services.notification_service import (
    EventBus,
    IdempotentHandler,
    NotificationService,
    RescheduleEvent,
    Subscription,
    event_bus
)
from shift_reschedule.services.request_store import RescheduleRequestStore, RequestFilters, RequestPage
from shift_reschedule.services.reschedule_service import RescheduleService

__all__ = [
    "Actor",
    "Action",
    "Capability",
    "AuthorizationGuard",
    "ShiftCalendarService",
    "ConflictDetector",
    "StaffDirectoryService",
    "EventBus",
    "IdempotentHandler",
    "NotificationService",
    "RescheduleEvent",
    "Subscription",
    "event_bus",
    "RescheduleRequestStore",
    "RequestFilters",
    "RequestPage",
    "RescheduleService"
]

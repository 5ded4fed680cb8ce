"""Notification fan-out for reschedule request transitions.

Transitions are recorded as outbox rows in the same transaction as the
status change. The dispatcher later publishes each row to the event bus,
marking it SENT only once every active subscriber has handled it, so a
crash between commit and delivery never loses an event. Delivery is
at-least-once; subscribers deduplicate with IdempotentHandler.
"""
from sqlalchemy.orm import Session
from sqlalchemy import or_
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from datetime import datetime, timedelta
from collections import OrderedDict
import threading
import logging
import uuid

from shift_reschedule.config import settings
from shift_reschedule.models.reschedule_request import (
    RescheduleRequest,
    RescheduleStatus,
    ReschedulePriority,
    URGENT_PRIORITIES,
)
from shift_reschedule.models.notification_outbox import NotificationOutbox, OutboxStatus, RecipientRole
from shift_reschedule.services.directory_service import StaffDirectoryService
from shift_reschedule.utils import utc_now


logger = logging.getLogger(__name__)


EVENT_CATEGORY = "reschedule"

# Seconds to wait before the n-th retry
RETRY_DELAYS = [1, 3, 10, 60]


def next_retry_delay(attempts: int) -> int:
    """
    Get the backoff delay after a failed attempt.

    Args:
        attempts: Number of attempts made so far (1-based)

    Returns:
        Delay in seconds
    """
    index = max(attempts, 1) - 1
    return RETRY_DELAYS[min(index, len(RETRY_DELAYS) - 1)]


@dataclass(frozen=True)
class RescheduleEvent:
    """A committed transition as seen by one interested party."""
    event_id: str
    request_id: str
    recipient_staff_id: str
    recipient_role: RecipientRole
    new_status: RescheduleStatus
    priority: ReschedulePriority
    urgent: bool
    occurred_at: datetime
    changed_fields: Dict[str, Any] = field(default_factory=dict)
    category: str = EVENT_CATEGORY

    @property
    def dedupe_key(self) -> Tuple[str, str, str]:
        return (self.request_id, self.new_status.value, self.recipient_staff_id)

    @classmethod
    def from_outbox(cls, row: NotificationOutbox) -> "RescheduleEvent":
        return cls(
            event_id=row.event_id,
            request_id=row.request_id,
            recipient_staff_id=row.recipient_staff_id,
            recipient_role=row.recipient_role,
            new_status=row.new_status,
            priority=row.priority,
            urgent=row.urgent,
            occurred_at=row.occurred_at,
            changed_fields=dict(row.changed_fields or {}),
            category=row.category,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "category": self.category,
            "request_id": self.request_id,
            "recipient_staff_id": self.recipient_staff_id,
            "recipient_role": self.recipient_role.value,
            "new_status": self.new_status.value,
            "priority": self.priority.value,
            "urgent": self.urgent,
            "occurred_at": self.occurred_at.isoformat(),
            "changed_fields": self.changed_fields,
        }


EventHandler = Callable[[RescheduleEvent], None]


class Subscription:
    """Handle for one handler attached to an EventBus.

    Created stopped or started; stop() detaches the handler and is safe
    to call more than once.
    """

    def __init__(self, bus: "EventBus", handler: EventHandler, name: Optional[str] = None):
        self.bus = bus
        self.handler = handler
        self.name = name or getattr(handler, "__name__", type(handler).__name__)
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> "Subscription":
        if not self._active:
            self.bus._attach(self)
            self._active = True
            logger.info(f"Subscription '{self.name}' started")
        return self

    def stop(self) -> None:
        if self._active:
            self.bus._detach(self)
            self._active = False
            logger.info(f"Subscription '{self.name}' stopped")

    def __enter__(self) -> "Subscription":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


class EventBus:
    """Publishes reschedule events to explicitly subscribed handlers."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: EventHandler, name: Optional[str] = None, start: bool = True) -> Subscription:
        """
        Register a handler.

        Args:
            handler: Callable receiving each RescheduleEvent
            name: Name used in logs
            start: Attach immediately

        Returns:
            Subscription handle owning the registration
        """
        subscription = Subscription(self, handler, name)
        if start:
            subscription.start()
        return subscription

    @property
    def subscriptions(self) -> List[Subscription]:
        with self._lock:
            return list(self._subscriptions)

    def publish(self, event: RescheduleEvent) -> None:
        """
        Deliver an event to every active subscriber.

        All subscribers are attempted; if any of them fails the first
        error is re-raised after the rest have run.

        Raises:
            Exception: First handler failure
        """
        first_error: Optional[Exception] = None
        for subscription in self.subscriptions:
            try:
                subscription.handler(event)
            except Exception as e:
                logger.error(
                    f"Subscriber '{subscription.name}' failed for event {event.event_id} "
                    f"(request {event.request_id}): {e}"
                )
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error

    def _attach(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription not in self._subscriptions:
                self._subscriptions.append(subscription)

    def _detach(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)


class IdempotentHandler:
    """Wraps a handler so redelivered events are processed once.

    Events are keyed by (request_id, new_status, recipient). A key is
    recorded only after the wrapped handler succeeds, so failures are
    retried on redelivery.
    """

    def __init__(self, handler: EventHandler, max_keys: int = 10000):
        self.handler = handler
        self.max_keys = max_keys
        self.__name__ = getattr(handler, "__name__", type(handler).__name__)
        self._seen: "OrderedDict[Tuple[str, str, str], None]" = OrderedDict()
        self._lock = threading.Lock()

    def seen(self, event: RescheduleEvent) -> bool:
        with self._lock:
            return event.dedupe_key in self._seen

    def __call__(self, event: RescheduleEvent) -> None:
        key = event.dedupe_key
        if self.seen(event):
            logger.debug(f"Duplicate event skipped: {key}")
            return
        self.handler(event)
        with self._lock:
            self._seen[key] = None
            while len(self._seen) > self.max_keys:
                self._seen.popitem(last=False)


class NotificationService:
    """Writes outbox rows for transitions and dispatches them to the bus."""

    def __init__(
        self,
        db: Session,
        bus: Optional[EventBus] = None,
        directory: Optional[StaffDirectoryService] = None,
        max_attempts: Optional[int] = None,
        batch_size: Optional[int] = None
    ):
        """
        Initialize notification service.

        Args:
            db: Database session
            bus: Event bus to publish to (defaults to the application bus)
            directory: Staff directory used to find approvers
            max_attempts: Delivery attempts before a row is marked FAILED
            batch_size: Rows handled per dispatch run
        """
        self.db = db
        self.bus = bus if bus is not None else event_bus
        self.directory = directory or StaffDirectoryService(db, settings.approver_job_titles)
        self.max_attempts = max_attempts or settings.notification_max_attempts
        self.batch_size = batch_size or settings.notification_batch_size

    def recipients_for(self, request: RescheduleRequest) -> List[Tuple[str, RecipientRole]]:
        """
        Get the interested parties of a request.

        Each staff member appears once, under the first matching role of
        requester, target, approver.

        Args:
            request: Request that changed

        Returns:
            List of (staff_id, role) pairs
        """
        recipients: List[Tuple[str, RecipientRole]] = []
        seen = set()

        def add(staff_id: Optional[str], role: RecipientRole) -> None:
            if staff_id and staff_id not in seen:
                seen.add(staff_id)
                recipients.append((staff_id, role))

        add(request.requester_staff_id, RecipientRole.REQUESTER)
        add(request.target_staff_id, RecipientRole.TARGET)
        for approver in self.directory.list_approvers(request.branch_id):
            add(approver.id, RecipientRole.APPROVER)
        return recipients

    def enqueue_transition(
        self,
        request: RescheduleRequest,
        changed_fields: Dict[str, Any],
        occurred_at: Optional[datetime] = None
    ) -> List[NotificationOutbox]:
        """
        Add one outbox row per interested party.

        Rows are added to the session without committing, so they share
        the caller's transaction.

        Args:
            request: Request after the transition
            changed_fields: Fields set by the transition
            occurred_at: Commit time (defaults to now)

        Returns:
            List of added outbox rows
        """
        occurred_at = occurred_at or utc_now()
        rows = []
        for staff_id, role in self.recipients_for(request):
            row = NotificationOutbox(
                event_id=str(uuid.uuid4()),
                category=EVENT_CATEGORY,
                request_id=request.id,
                recipient_staff_id=staff_id,
                recipient_role=role,
                new_status=request.status,
                changed_fields=changed_fields,
                priority=request.priority,
                urgent=request.priority in URGENT_PRIORITIES,
                occurred_at=occurred_at,
                status=OutboxStatus.PENDING,
                attempts=0,
                next_retry_at=None,
            )
            self.db.add(row)
            rows.append(row)

        logger.info(
            f"Queued {len(rows)} notification(s) for request {request.id} -> {request.status.value}"
        )
        return rows

    def dispatch_pending(self, now: Optional[datetime] = None) -> int:
        """
        Publish due outbox rows to the event bus.

        This method should be called periodically and after each commit.

        Args:
            now: Evaluation time (defaults to now)

        Returns:
            Number of rows delivered in this run
        """
        now = now or utc_now()
        rows = self.db.query(NotificationOutbox).filter(
            NotificationOutbox.status == OutboxStatus.PENDING,
            or_(NotificationOutbox.next_retry_at.is_(None), NotificationOutbox.next_retry_at <= now)
        ).order_by(NotificationOutbox.id.asc()).limit(self.batch_size).all()

        if not rows:
            return 0

        sent = 0
        for row in rows:
            row.attempts = (row.attempts or 0) + 1
            try:
                self.bus.publish(RescheduleEvent.from_outbox(row))
                row.status = OutboxStatus.SENT
                row.sent_at = now
                row.next_retry_at = None
                row.last_error = None
                sent += 1
            except Exception as e:
                row.last_error = (str(e) or type(e).__name__)[:2000]
                if row.attempts >= self.max_attempts:
                    row.status = OutboxStatus.FAILED
                    row.next_retry_at = None
                    logger.error(
                        f"Giving up on event {row.event_id} for {row.recipient_staff_id} "
                        f"after {row.attempts} attempts: {e}"
                    )
                else:
                    delay = next_retry_delay(row.attempts)
                    row.next_retry_at = now + timedelta(seconds=delay)
                    logger.warning(
                        f"Delivery of event {row.event_id} failed (attempt {row.attempts}), "
                        f"retrying in {delay} seconds"
                    )

        self.db.commit()
        logger.info(f"Dispatched {sent}/{len(rows)} notification(s)")
        return sent

    def get_pending_count(self) -> int:
        """Get the number of undelivered outbox rows."""
        return self.db.query(NotificationOutbox).filter(
            NotificationOutbox.status == OutboxStatus.PENDING
        ).count()


# Global event bus instance
event_bus = EventBus()

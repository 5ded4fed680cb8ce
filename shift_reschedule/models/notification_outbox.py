"""NotificationOutbox model for at-least-once event delivery."""
from sqlalchemy import Column, String, Integer, DateTime, Enum, Boolean, JSON, Index
import enum

from shift_reschedule.database import Base
from shift_reschedule.models.reschedule_request import RescheduleStatus, ReschedulePriority
from shift_reschedule.utils import utc_now


class OutboxStatus(str, enum.Enum):
    """Delivery status of an outbox row."""
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class RecipientRole(str, enum.Enum):
    """Why a recipient is interested in a request."""
    REQUESTER = "REQUESTER"
    TARGET = "TARGET"
    APPROVER = "APPROVER"


class NotificationOutbox(Base):
    """One pending event per (committed transition, interested party).

    Rows are written in the same transaction as the status change they
    describe, and delivered afterwards by the notification dispatcher.
    """

    __tablename__ = "notification_outbox"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(36), nullable=False, unique=True)
    category = Column(String(50), nullable=False, default="reschedule")
    request_id = Column(String(36), nullable=False, index=True)
    recipient_staff_id = Column(String(36), nullable=False)
    recipient_role = Column(Enum(RecipientRole), nullable=False)
    new_status = Column(Enum(RescheduleStatus), nullable=False)
    changed_fields = Column(JSON, nullable=False, default=dict)
    priority = Column(Enum(ReschedulePriority), nullable=False, default=ReschedulePriority.NORMAL)
    urgent = Column(Boolean, nullable=False, default=False)
    occurred_at = Column(DateTime, nullable=False, default=utc_now)

    status = Column(Enum(OutboxStatus), nullable=False, default=OutboxStatus.PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    next_retry_at = Column(DateTime, nullable=True)
    last_error = Column(String(2000), nullable=True)
    sent_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_notification_outbox_due", "status", "next_retry_at"),
    )

    def __repr__(self) -> str:
        return f"<NotificationOutbox(id={self.id}, request_id={self.request_id}, recipient={self.recipient_staff_id}, status={self.status})>"

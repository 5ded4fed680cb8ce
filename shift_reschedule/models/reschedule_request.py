"""RescheduleRequest model for shift swap, giveaway and cover requests."""
from sqlalchemy import Column, String, DateTime, Enum, Boolean, Integer, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
import enum

from shift_reschedule.config import REASON_COLUMN_LENGTH
from shift_reschedule.database import Base
from shift_reschedule.utils import utc_now


class SwapType(str, enum.Enum):
    """Kind of reschedule being requested."""
    SWAP = "SWAP"
    GIVEAWAY = "GIVEAWAY"
    COVER_REQUEST = "COVER_REQUEST"


class ReschedulePriority(str, enum.Enum):
    """Request priority. Affects notification urgency only."""
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class RescheduleStatus(str, enum.Enum):
    """Request status enumeration."""
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    APPROVED = "APPROVED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


# Still eligible for accept / approve / reject / cancel / expiry
NON_TERMINAL_STATUSES = frozenset({RescheduleStatus.PENDING, RescheduleStatus.ACCEPTED})

TERMINAL_STATUSES = frozenset({
    RescheduleStatus.COMPLETED,
    RescheduleStatus.REJECTED,
    RescheduleStatus.CANCELLED,
    RescheduleStatus.EXPIRED,
})

# Legal status edges
ALLOWED_TRANSITIONS = {
    RescheduleStatus.PENDING: frozenset({
        RescheduleStatus.ACCEPTED,
        RescheduleStatus.APPROVED,
        RescheduleStatus.REJECTED,
        RescheduleStatus.CANCELLED,
        RescheduleStatus.EXPIRED,
    }),
    RescheduleStatus.ACCEPTED: frozenset({
        RescheduleStatus.APPROVED,
        RescheduleStatus.REJECTED,
        RescheduleStatus.CANCELLED,
        RescheduleStatus.EXPIRED,
    }),
    RescheduleStatus.APPROVED: frozenset({RescheduleStatus.COMPLETED}),
    RescheduleStatus.COMPLETED: frozenset(),
    RescheduleStatus.REJECTED: frozenset(),
    RescheduleStatus.CANCELLED: frozenset(),
    RescheduleStatus.EXPIRED: frozenset(),
}


def can_transition(from_status: RescheduleStatus, to_status: RescheduleStatus) -> bool:
    """Check if a status edge is part of the lifecycle graph."""
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


# Types that name their counterpart at creation
TARGETED_SWAP_TYPES = frozenset({SwapType.SWAP, SwapType.COVER_REQUEST})

PRIORITY_RANK = {
    ReschedulePriority.LOW: 0,
    ReschedulePriority.NORMAL: 1,
    ReschedulePriority.HIGH: 2,
    ReschedulePriority.URGENT: 3,
}

URGENT_PRIORITIES = frozenset({ReschedulePriority.HIGH, ReschedulePriority.URGENT})


class RescheduleRequest(Base):
    """Reschedule request and its full field history."""

    __tablename__ = "reschedule_requests"

    id = Column(String(36), primary_key=True)
    requester_staff_id = Column(String(36), ForeignKey("staff.id"), nullable=False, index=True)
    target_staff_id = Column(String(36), ForeignKey("staff.id"), nullable=True, index=True)
    branch_id = Column(String(36), ForeignKey("branches.id"), nullable=False, index=True)
    swap_type = Column(Enum(SwapType), nullable=False)
    source_shift_id = Column(String(36), ForeignKey("work_shifts.id"), nullable=False, index=True)
    target_shift_id = Column(String(36), ForeignKey("work_shifts.id"), nullable=True)
    reason = Column(String(REASON_COLUMN_LENGTH), nullable=False)
    priority = Column(Enum(ReschedulePriority), nullable=False, default=ReschedulePriority.NORMAL)
    status = Column(Enum(RescheduleStatus), nullable=False, default=RescheduleStatus.PENDING, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)

    accepted_by = Column(String(36), ForeignKey("staff.id"), nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    approved_by = Column(String(36), ForeignKey("staff.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(String(36), ForeignKey("staff.id"), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(String(REASON_COLUMN_LENGTH), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)

    conflict_detected = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)

    # Mirrors source_shift_id while the request is PENDING/ACCEPTED and is
    # NULL otherwise, so the unique constraint allows one open request per shift.
    open_source_shift_id = Column(String(36), nullable=True)

    __table_args__ = (
        UniqueConstraint("open_source_shift_id", name="uq_open_request_source_shift"),
        Index("ix_reschedule_requests_branch_status", "branch_id", "status"),
    )

    # Relationships
    history = relationship(
        "RescheduleStateHistory",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RescheduleStateHistory.changed_at",
    )

    def __repr__(self) -> str:
        return f"<RescheduleRequest(id={self.id}, type={self.swap_type}, status={self.status}, version={self.version})>"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_open(self) -> bool:
        return self.status in NON_TERMINAL_STATUSES

    @property
    def is_open_giveaway(self) -> bool:
        return self.swap_type == SwapType.GIVEAWAY and not self.target_staff_id

    def validate(self) -> None:
        """Validate request data and the per-status field invariants."""
        if not self.id:
            raise ValueError("Request ID is required")
        if not self.requester_staff_id:
            raise ValueError("Requester staff ID is required")
        if not self.branch_id:
            raise ValueError("Branch ID is required")
        if not self.source_shift_id:
            raise ValueError("Source shift ID is required")
        if not self.reason:
            raise ValueError("Reason is required")
        if not self.expires_at:
            raise ValueError("Expiry time is required")
        if self.swap_type in TARGETED_SWAP_TYPES and not self.target_staff_id:
            raise ValueError(f"{self.swap_type.value} requests require a target staff member")

        if self.status == RescheduleStatus.ACCEPTED and not self.accepted_by:
            raise ValueError("Accepted requests must record who accepted them")
        if self.status in (RescheduleStatus.ACCEPTED, RescheduleStatus.APPROVED, RescheduleStatus.COMPLETED):
            if not self.target_staff_id:
                raise ValueError("Accepted requests must have a target staff member")

        decisions = {
            "approved_by": self.approved_by,
            "rejected_by": self.rejected_by,
            "cancelled_at": self.cancelled_at,
            "expired_at": self.expired_at,
        }
        populated = [name for name, value in decisions.items() if value]
        if len(populated) > 1:
            raise ValueError(f"Conflicting decision fields populated: {populated}")

        expected = {
            RescheduleStatus.APPROVED: "approved_by",
            RescheduleStatus.COMPLETED: "approved_by",
            RescheduleStatus.REJECTED: "rejected_by",
            RescheduleStatus.CANCELLED: "cancelled_at",
            RescheduleStatus.EXPIRED: "expired_at",
        }.get(self.status)
        if expected and populated != [expected]:
            raise ValueError(f"{self.status.value} requests must have {expected}")
        if expected is None and populated:
            raise ValueError(f"{self.status.value} requests must not have decision fields")

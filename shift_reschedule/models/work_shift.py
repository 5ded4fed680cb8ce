"""WorkShift model for committed shift assignments."""
from sqlalchemy import Column, String, DateTime, Enum, ForeignKey, Index
from sqlalchemy.orm import relationship
import enum

from shift_reschedule.database import Base
from shift_reschedule.utils import utc_now


class ShiftStatus(str, enum.Enum):
    """Shift status enumeration."""
    SCHEDULED = "SCHEDULED"
    CANCELLED = "CANCELLED"


class WorkShift(Base):
    """WorkShift model as exposed by the shift/calendar service."""

    __tablename__ = "work_shifts"

    id = Column(String(36), primary_key=True)
    staff_id = Column(String(36), ForeignKey("staff.id"), nullable=False, index=True)
    branch_id = Column(String(36), ForeignKey("branches.id"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(Enum(ShiftStatus), nullable=False, default=ShiftStatus.SCHEDULED)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("ix_work_shifts_staff_range", "staff_id", "start_time", "end_time"),
    )

    # Relationships
    staff = relationship("Staff", back_populates="shifts")

    def __repr__(self) -> str:
        return f"<WorkShift(id={self.id}, staff_id={self.staff_id}, start={self.start_time}, end={self.end_time})>"

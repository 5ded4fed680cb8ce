"""RescheduleStateHistory model for the per-request audit trail."""
from sqlalchemy import Column, String, Integer, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship

from shift_reschedule.config import REASON_COLUMN_LENGTH
from shift_reschedule.database import Base
from shift_reschedule.models.reschedule_request import RescheduleStatus
from shift_reschedule.utils import utc_now


class RescheduleStateHistory(Base):
    """One row per committed status change of a reschedule request."""

    __tablename__ = "reschedule_state_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(String(36), ForeignKey("reschedule_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = Column(Enum(RescheduleStatus), nullable=True)
    to_status = Column(Enum(RescheduleStatus), nullable=False)
    changed_by = Column(String(36), nullable=True)
    changed_at = Column(DateTime, nullable=False, default=utc_now)
    reason = Column(String(REASON_COLUMN_LENGTH), nullable=True)
    version = Column(Integer, nullable=False)

    # Relationships
    request = relationship("RescheduleRequest", back_populates="history")

    def __repr__(self) -> str:
        return f"<RescheduleStateHistory(request_id={self.request_id}, {self.from_status} -> {self.to_status})>"

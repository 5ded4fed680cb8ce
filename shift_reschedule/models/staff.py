"""Staff model for employees, managers and owners."""
from sqlalchemy import Column, String, Enum, DateTime, Boolean
from sqlalchemy.orm import relationship
import enum

from shift_reschedule.database import Base
from shift_reschedule.utils import utc_now


class StaffRole(str, enum.Enum):
    """Staff role enumeration."""
    OWNER = "OWNER"
    MANAGER = "MANAGER"
    STAFF = "STAFF"


class Staff(Base):
    """Staff model as exposed by the staff/branch directory."""

    __tablename__ = "staff"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    role = Column(Enum(StaffRole), nullable=False, default=StaffRole.STAFF)
    job_title = Column(String(100), nullable=True)
    line_user_id = Column(String(255), nullable=True, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    # Relationships
    memberships = relationship("StaffBranch", back_populates="staff", cascade="all, delete-orphan")
    shifts = relationship("WorkShift", back_populates="staff")

    def __repr__(self) -> str:
        return f"<Staff(id={self.id}, name={self.name}, role={self.role})>"

    @property
    def branch_ids(self) -> list:
        return [membership.branch_id for membership in self.memberships]

"""Branch and branch membership models."""
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from shift_reschedule.database import Base
from shift_reschedule.utils import utc_now


class Branch(Base):
    """Branch (gym location) of a tenant."""

    __tablename__ = "branches"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    # Relationships
    members = relationship("StaffBranch", back_populates="branch", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Branch(id={self.id}, name={self.name})>"


class StaffBranch(Base):
    """Membership of a staff member in a branch."""

    __tablename__ = "staff_branches"

    staff_id = Column(String(36), ForeignKey("staff.id"), primary_key=True)
    branch_id = Column(String(36), ForeignKey("branches.id"), primary_key=True, index=True)
    joined_at = Column(DateTime, nullable=False, default=utc_now)

    # Relationships
    staff = relationship("Staff", back_populates="memberships")
    branch = relationship("Branch", back_populates="members")

    def __repr__(self) -> str:
        return f"<StaffBranch(staff_id={self.staff_id}, branch_id={self.branch_id})>"

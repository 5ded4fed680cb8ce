"""Staff/branch directory collaborator."""
from sqlalchemy.orm import Session
from typing import Iterable, List, Optional
import logging

from shift_reschedule.models.staff import Staff
from shift_reschedule.models.branch import StaffBranch
from shift_reschedule.services.authorization import Actor, is_approver


logger = logging.getLogger(__name__)


class StaffDirectoryService:
    """Service for looking up staff, their roles and branch memberships."""

    def __init__(self, db: Session, approver_job_titles: Iterable[str] = ()):
        """
        Initialize directory service.

        Args:
            db: Database session
            approver_job_titles: Job titles treated as approvers
        """
        self.db = db
        self.approver_job_titles = tuple(approver_job_titles)

    def get_staff(self, staff_id: str) -> Optional[Staff]:
        """Get an active staff member by ID."""
        if not staff_id:
            return None
        return self.db.query(Staff).filter(
            Staff.id == staff_id,
            Staff.is_active == True  # noqa: E712
        ).first()

    def get_actor(self, staff_id: str) -> Optional[Actor]:
        """
        Build the acting identity for a staff member.

        Args:
            staff_id: ID of the staff member

        Returns:
            Actor with role and branch memberships, or None if unknown or inactive
        """
        staff = self.get_staff(staff_id)
        if staff is None:
            logger.warning(f"Unknown or inactive staff member: {staff_id}")
            return None
        return Actor(
            id=staff.id,
            role=staff.role,
            job_title=staff.job_title,
            branch_ids=frozenset(staff.branch_ids)
        )

    def is_member(self, staff_id: str, branch_id: str) -> bool:
        """Check if a staff member belongs to a branch."""
        return self.db.query(StaffBranch).filter(
            StaffBranch.staff_id == staff_id,
            StaffBranch.branch_id == branch_id
        ).first() is not None

    def list_approvers(self, branch_id: str) -> List[Staff]:
        """
        Get all active approvers of a branch.

        Args:
            branch_id: Branch to look up

        Returns:
            Staff members with an approver role or job title in that branch
        """
        members = self.db.query(Staff).join(
            StaffBranch, StaffBranch.staff_id == Staff.id
        ).filter(
            StaffBranch.branch_id == branch_id,
            Staff.is_active == True  # noqa: E712
        ).order_by(Staff.id).all()

        return [
            staff for staff in members
            if is_approver(staff.role, staff.job_title, self.approver_job_titles)
        ]

"""Shift/calendar collaborator backed by the work_shifts table."""
from sqlalchemy.orm import Session
from typing import Iterable, List, Optional
from datetime import datetime
import logging

from shift_reschedule.models.work_shift import WorkShift, ShiftStatus
from shift_reschedule.models.reschedule_request import RescheduleRequest
from shift_reschedule.utils import utc_now


logger = logging.getLogger(__name__)


class ShiftCalendarService:
    """Service for reading committed shifts and applying approved swaps."""

    def __init__(self, db: Session):
        """
        Initialize calendar service.

        Args:
            db: Database session
        """
        self.db = db

    def get_shift(self, shift_id: str) -> Optional[WorkShift]:
        """
        Get a scheduled shift by ID.

        Args:
            shift_id: ID of the shift

        Returns:
            WorkShift if it exists and is not cancelled, None otherwise
        """
        if not shift_id:
            return None
        return self.db.query(WorkShift).populate_existing().filter(
            WorkShift.id == shift_id,
            WorkShift.status == ShiftStatus.SCHEDULED
        ).first()

    def list_overlapping_shifts(
        self,
        staff_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_ids: Iterable[str] = ()
    ) -> List[WorkShift]:
        """
        Get committed shifts of a staff member overlapping a time range.

        Always re-reads the table so that a check made earlier in the
        request lifecycle is never reused.

        Args:
            staff_id: Staff member to check
            start_time: Range start
            end_time: Range end
            exclude_ids: Shift IDs to leave out

        Returns:
            List of overlapping WorkShift objects ordered by start time
        """
        query = self.db.query(WorkShift).populate_existing().filter(
            WorkShift.staff_id == staff_id,
            WorkShift.status == ShiftStatus.SCHEDULED,
            WorkShift.start_time < end_time,
            WorkShift.end_time > start_time
        )
        excluded = [shift_id for shift_id in exclude_ids if shift_id]
        if excluded:
            query = query.filter(WorkShift.id.notin_(excluded))

        return query.order_by(WorkShift.start_time.asc()).all()

    def commit_swap(self, request: RescheduleRequest) -> None:
        """
        Reassign shifts for an approved request.

        The source shift moves to the target staff member; for a SWAP with
        a target shift, that shift moves to the requester. Changes are
        flushed but not committed so they land in the caller's transaction.

        Args:
            request: The request being approved, with target_staff_id bound
        """
        if not request.target_staff_id:
            raise ValueError(f"Request {request.id} has no staff member to take the shift")

        now = utc_now()
        source = self.db.get(WorkShift, request.source_shift_id)
        if source is None:
            raise ValueError(f"Source shift {request.source_shift_id} not found")
        source.staff_id = request.target_staff_id
        source.updated_at = now

        if request.target_shift_id:
            target = self.db.get(WorkShift, request.target_shift_id)
            if target is None:
                raise ValueError(f"Target shift {request.target_shift_id} not found")
            target.staff_id = request.requester_staff_id
            target.updated_at = now

        self.db.flush()
        logger.info(
            f"Swap committed for request {request.id}: "
            f"shift {request.source_shift_id} -> {request.target_staff_id}"
            + (f", shift {request.target_shift_id} -> {request.requester_staff_id}" if request.target_shift_id else "")
        )

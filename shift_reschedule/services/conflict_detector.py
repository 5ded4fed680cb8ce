"""Schedule conflict detection for reschedule requests."""
from typing import Iterable, List
from datetime import datetime
import logging

from shift_reschedule.models.work_shift import WorkShift
from shift_reschedule.services.calendar_service import ShiftCalendarService


logger = logging.getLogger(__name__)


def shifts_overlap(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime
) -> bool:
    """Half-open interval overlap; shifts that only touch do not conflict."""
    return start_a < end_b and start_b < end_a


class ConflictDetector:
    """Checks whether a staff member already holds an overlapping shift.

    Stateless apart from the calendar it reads; every call queries the
    calendar afresh.
    """

    def __init__(self, calendar: ShiftCalendarService):
        """
        Initialize conflict detector.

        Args:
            calendar: Shift/calendar collaborator
        """
        self.calendar = calendar

    def find_conflicts(
        self,
        staff_id: str,
        candidate_shift: WorkShift,
        exclude_shift_ids: Iterable[str] = ()
    ) -> List[WorkShift]:
        """
        Get committed shifts of staff_id that overlap the candidate shift.

        Args:
            staff_id: Staff member who would take the candidate shift
            candidate_shift: Shift being taken
            exclude_shift_ids: Shifts to ignore, e.g. one given away in the same swap

        Returns:
            List of conflicting shifts, empty when there is no conflict
        """
        excluded = {candidate_shift.id, *exclude_shift_ids}
        existing = self.calendar.list_overlapping_shifts(
            staff_id,
            candidate_shift.start_time,
            candidate_shift.end_time,
            exclude_ids=excluded
        )
        conflicts = [
            shift for shift in existing
            if shifts_overlap(shift.start_time, shift.end_time, candidate_shift.start_time, candidate_shift.end_time)
        ]
        if conflicts:
            logger.info(
                f"Staff {staff_id} has {len(conflicts)} shift(s) overlapping {candidate_shift.id}: "
                f"{[shift.id for shift in conflicts]}"
            )
        return conflicts

    def has_conflict(
        self,
        staff_id: str,
        candidate_shift: WorkShift,
        exclude_shift_ids: Iterable[str] = ()
    ) -> bool:
        """Check if staff_id has any committed shift overlapping the candidate."""
        return bool(self.find_conflicts(staff_id, candidate_shift, exclude_shift_ids))

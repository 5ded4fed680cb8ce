"""Reschedule request workflow: creation, transitions, expiry and reads."""
from sqlalchemy.orm import Session
from typing import Any, Callable, Dict, FrozenSet, List, Optional
from datetime import datetime, timedelta
import logging
import uuid

from shift_reschedule.config import settings
from shift_reschedule.models.reschedule_request import (
    RescheduleRequest,
    RescheduleStatus,
    ReschedulePriority,
    SwapType,
    NON_TERMINAL_STATUSES,
    TARGETED_SWAP_TYPES,
)
from shift_reschedule.models.state_history import RescheduleStateHistory
from shift_reschedule.exceptions import (
    ErrorCode,
    RescheduleError,
    RequestValidationError,
    RequestNotFoundError,
    ShiftNotFoundError,
    ConflictError,
    ConflictDetectedError,
    AuthorizationError,
    InvalidTransitionError,
    StaleVersionError,
)
from shift_reschedule.services.authorization import Action, Actor, AuthorizationGuard, Capability
from shift_reschedule.services.calendar_service import ShiftCalendarService
from shift_reschedule.services.conflict_detector import ConflictDetector
from shift_reschedule.services.directory_service import StaffDirectoryService
from shift_reschedule.services.expiry import is_lapsed, validate_expiry, resolve_expiry
from shift_reschedule.services.notification_service import EventBus, NotificationService
from shift_reschedule.services.request_store import (
    RescheduleRequestStore,
    RequestFilters,
    RequestPage,
    SORT_FIELDS,
)
from shift_reschedule.utils import utc_now, to_naive_utc


logger = logging.getLogger(__name__)


MAX_PAGE_SIZE = 100


def _parse_enum(enum_cls, value: Any, error_code: ErrorCode, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except (ValueError, AttributeError):
        raise RequestValidationError(error_code, details={"field": field_name, "value": value})


def parse_swap_type(value: Any) -> SwapType:
    """Parse a swap type, failing with INVALID_TYPE."""
    return _parse_enum(SwapType, value, ErrorCode.INVALID_TYPE, "swap_type")


def parse_priority(value: Any) -> ReschedulePriority:
    """Parse a priority, failing with INVALID_PRIORITY. Missing means NORMAL."""
    if value is None or value == "":
        return ReschedulePriority.NORMAL
    return _parse_enum(ReschedulePriority, value, ErrorCode.INVALID_PRIORITY, "priority")


def parse_status(value: Any) -> RescheduleStatus:
    """Parse a status filter, failing with INVALID_STATUS."""
    return _parse_enum(RescheduleStatus, value, ErrorCode.INVALID_STATUS, "status")


def validate_reason(reason: Optional[str], max_length: int, field_name: str = "reason") -> str:
    """
    Validate a free-text reason.

    Args:
        reason: Text to validate
        max_length: Maximum length after trimming
        field_name: Field reported in error details

    Returns:
        The trimmed reason

    Raises:
        RequestValidationError: REASON_REQUIRED or REASON_TOO_LONG
    """
    if reason is None or not str(reason).strip():
        raise RequestValidationError(ErrorCode.REASON_REQUIRED, details={"field": field_name})
    reason = str(reason).strip()
    if len(reason) > max_length:
        raise RequestValidationError(
            ErrorCode.REASON_TOO_LONG,
            details={"field": field_name, "max_length": max_length, "length": len(reason)}
        )
    return reason


def build_filters(
    status: Optional[str] = None,
    swap_type: Optional[str] = None,
    priority: Optional[str] = None,
    requester_staff_id: Optional[str] = None,
    target_staff_id: Optional[str] = None,
    branch_id: Optional[str] = None,
    is_expired: Optional[bool] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None
) -> RequestFilters:
    """
    Build list filters from raw query values.

    Raises:
        RequestValidationError: For unknown status, swap type or priority values
    """
    return RequestFilters(
        requester_staff_id=requester_staff_id,
        target_staff_id=target_staff_id,
        branch_ids=[branch_id] if branch_id else None,
        statuses=[parse_status(status)] if status else None,
        swap_type=parse_swap_type(swap_type) if swap_type else None,
        priority=parse_priority(priority) if priority else None,
        start_date=to_naive_utc(start_date) if start_date else None,
        end_date=to_naive_utc(end_date) if end_date else None,
        is_expired=is_expired,
    )


class RescheduleService:
    """Service for handling reschedule request operations.

    Every mutation goes through the same path: load the request (forcing
    it to EXPIRED first if it has lapsed), ask the authorization guard,
    run a fresh conflict check where the schedule changes, then commit
    through the store's compare-and-swap together with the outbox rows.
    """

    def __init__(
        self,
        db: Session,
        bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], datetime]] = None,
        directory: Optional[StaffDirectoryService] = None,
        calendar: Optional[ShiftCalendarService] = None,
        guard: Optional[AuthorizationGuard] = None,
        notifier: Optional[NotificationService] = None
    ):
        """
        Initialize reschedule service.

        Args:
            db: Database session
            bus: Event bus notifications are dispatched to
            clock: Returns the current naive UTC time
            directory: Staff/branch directory
            calendar: Shift calendar
            guard: Authorization guard
            notifier: Notification fan-out
        """
        self.db = db
        self.clock = clock or utc_now
        self.directory = directory or StaffDirectoryService(db, settings.approver_job_titles)
        self.calendar = calendar or ShiftCalendarService(db)
        self.conflicts = ConflictDetector(self.calendar)
        self.guard = guard or AuthorizationGuard(settings.approver_job_titles)
        self.notifier = notifier or NotificationService(db, bus=bus, directory=self.directory)
        self.store = RescheduleRequestStore(db)

        self.reason_max_length = settings.reschedule_reason_max_length
        self.min_notice = timedelta(minutes=settings.reschedule_min_advance_notice_minutes)
        self.default_ttl = timedelta(hours=settings.reschedule_default_expiry_hours)

    def create_request(
        self,
        actor: Actor,
        source_shift_id: str,
        swap_type: Any,
        reason: Optional[str],
        priority: Any = None,
        target_staff_id: Optional[str] = None,
        target_shift_id: Optional[str] = None,
        expires_at: Optional[datetime] = None
    ) -> RescheduleRequest:
        """
        Create a new PENDING reschedule request.

        Args:
            actor: Staff member making the request
            source_shift_id: Shift being rescheduled
            swap_type: SWAP, GIVEAWAY or COVER_REQUEST
            reason: Free-text reason
            priority: LOW, NORMAL, HIGH or URGENT (default NORMAL)
            target_staff_id: Counterpart; required for SWAP and COVER_REQUEST
            target_shift_id: Shift offered in exchange (SWAP only)
            expires_at: Explicit expiry (defaults to the configured TTL)

        Returns:
            Newly created RescheduleRequest

        Raises:
            RequestValidationError: Invalid reason, priority, type or expiry
            ShiftNotFoundError: Source or target shift does not exist
            AuthorizationError: Source shift is not the actor's, or target outside the branch
            AlreadyExistsError: Source shift already has an open request
        """
        now = self.clock()

        reason = validate_reason(reason, self.reason_max_length)
        priority = parse_priority(priority)
        swap_type = parse_swap_type(swap_type)
        if expires_at is not None:
            expires_at = to_naive_utc(expires_at)
            validate_expiry(expires_at, now)

        source = self.calendar.get_shift(source_shift_id)
        if source is None:
            logger.warning(f"Source shift not found: {source_shift_id}")
            raise ShiftNotFoundError(source_shift_id, field="source_shift_id")
        if source.staff_id != actor.id:
            logger.warning(f"Staff {actor.id} tried to reschedule shift {source.id} owned by {source.staff_id}")
            raise AuthorizationError(
                ErrorCode.OWNER_ONLY,
                details={"shift_id": source.id, "staff_id": actor.id}
            )

        expires_at = resolve_expiry(expires_at, now, source.start_time, self.min_notice, self.default_ttl)

        target_shift = None
        if target_shift_id:
            target_shift = self.calendar.get_shift(target_shift_id)
            if target_shift is None:
                raise ShiftNotFoundError(target_shift_id)
            if not target_staff_id and swap_type == SwapType.SWAP:
                target_staff_id = target_shift.staff_id

        if swap_type in TARGETED_SWAP_TYPES and not target_staff_id:
            raise RequestValidationError(
                ErrorCode.INVALID_TYPE,
                details={"field": "target_staff_id", "swap_type": swap_type.value}
            )
        if target_shift is not None:
            if swap_type != SwapType.SWAP:
                raise RequestValidationError(
                    ErrorCode.INVALID_TYPE,
                    details={"field": "target_shift_id", "swap_type": swap_type.value}
                )
            if target_shift.staff_id != target_staff_id:
                raise RequestValidationError(
                    ErrorCode.INVALID_TYPE,
                    details={"field": "target_shift_id", "reason": "not_assigned_to_target"}
                )

        if target_staff_id:
            if target_staff_id == actor.id:
                raise RequestValidationError(
                    ErrorCode.INVALID_TYPE,
                    details={"field": "target_staff_id", "reason": "self_target"}
                )
            target = self.directory.get_staff(target_staff_id)
            if target is None or not self.directory.is_member(target_staff_id, source.branch_id):
                raise AuthorizationError(
                    ErrorCode.BRANCH_ACCESS,
                    details={"staff_id": target_staff_id, "branch_id": source.branch_id}
                )
            if target_shift is not None and target_shift.branch_id != source.branch_id:
                raise AuthorizationError(
                    ErrorCode.BRANCH_ACCESS,
                    details={"shift_id": target_shift.id, "branch_id": source.branch_id}
                )

        # Informational only; the blocking check runs at accept/approve time
        conflict_detected = False
        if target_staff_id:
            conflict_detected = self.conflicts.has_conflict(
                target_staff_id, source, [target_shift_id] if target_shift_id else []
            )

        request = RescheduleRequest(
            id=str(uuid.uuid4()),
            requester_staff_id=actor.id,
            target_staff_id=target_staff_id,
            branch_id=source.branch_id,
            swap_type=swap_type,
            source_shift_id=source.id,
            target_shift_id=target_shift_id,
            reason=reason,
            priority=priority,
            status=RescheduleStatus.PENDING,
            expires_at=expires_at,
            conflict_detected=conflict_detected,
            created_at=now,
        )

        request = self.store.create(request, actor.id, before_commit=self._enqueue_notifications)
        logger.info(
            f"Reschedule request {request.id} created by {actor.id}: "
            f"{swap_type.value} of shift {source.id}, expires {expires_at.isoformat()}"
        )
        return request

    def accept_request(self, request_id: str, actor: Actor) -> RescheduleRequest:
        """
        Accept a request as its target, or claim an open giveaway.

        Raises:
            RescheduleError: CANNOT_ACCEPT, BRANCH_ACCESS, EXPIRED, CONFLICT_DETECTED, ...
        """
        def changes(request: RescheduleRequest, now: datetime) -> Dict[str, Any]:
            return {
                "status": RescheduleStatus.ACCEPTED,
                "accepted_by": actor.id,
                "accepted_at": now,
                "target_staff_id": request.target_staff_id or actor.id,
                "conflict_detected": False,
            }

        return self._transition(
            Action.ACCEPT,
            request_id,
            actor,
            changes,
            check=lambda request: self._check_schedule_conflicts(request, actor.id),
        )

    def approve_request(
        self,
        request_id: str,
        actor: Actor,
        approver_id: Optional[str] = None
    ) -> RescheduleRequest:
        """
        Approve a request and commit the shift swap.

        Args:
            request_id: ID of the request
            actor: Approver
            approver_id: Approver named by the caller; must be the actor

        Raises:
            RescheduleError: APPROVER_PERMISSION, APPROVER_BRANCH, CANNOT_APPROVE, EXPIRED, CONFLICT_DETECTED, ...
        """
        if approver_id and approver_id != actor.id:
            logger.warning(f"Staff {actor.id} tried to approve request {request_id} as {approver_id}")
            raise AuthorizationError(
                ErrorCode.APPROVER_PERMISSION,
                details={"staff_id": actor.id, "approver_id": approver_id}
            )

        def changes(request: RescheduleRequest, now: datetime) -> Dict[str, Any]:
            return {
                "status": RescheduleStatus.APPROVED,
                "approved_by": actor.id,
                "approved_at": now,
                "conflict_detected": False,
            }

        return self._transition(
            Action.APPROVE,
            request_id,
            actor,
            changes,
            check=lambda request: self._check_schedule_conflicts(request, request.target_staff_id),
            side_effect=self.calendar.commit_swap,
        )

    def reject_request(
        self,
        request_id: str,
        actor: Actor,
        rejection_reason: Optional[str]
    ) -> RescheduleRequest:
        """
        Reject a non-terminal request.

        Raises:
            RescheduleError: REASON_REQUIRED, APPROVER_PERMISSION, CANNOT_REJECT, EXPIRED, ...
        """
        rejection_reason = validate_reason(rejection_reason, self.reason_max_length, "rejection_reason")

        def changes(request: RescheduleRequest, now: datetime) -> Dict[str, Any]:
            return {
                "status": RescheduleStatus.REJECTED,
                "rejected_by": actor.id,
                "rejected_at": now,
                "rejection_reason": rejection_reason,
            }

        return self._transition(Action.REJECT, request_id, actor, changes, reason=rejection_reason)

    def cancel_request(self, request_id: str, actor: Actor) -> RescheduleRequest:
        """
        Cancel the actor's own non-terminal request.

        Raises:
            RescheduleError: CANCEL_OWN_ONLY, CANNOT_CANCEL, EXPIRED, ...
        """
        def changes(request: RescheduleRequest, now: datetime) -> Dict[str, Any]:
            return {
                "status": RescheduleStatus.CANCELLED,
                "cancelled_at": now,
            }

        return self._transition(Action.CANCEL, request_id, actor, changes)

    def complete_request(self, request_id: str, actor: Actor) -> RescheduleRequest:
        """
        Mark an approved request as completed once the calendar confirms it.

        Raises:
            RescheduleError: APPROVER_PERMISSION, APPROVER_BRANCH, INVALID_STATUS, ...
        """
        def changes(request: RescheduleRequest, now: datetime) -> Dict[str, Any]:
            return {
                "status": RescheduleStatus.COMPLETED,
                "completed_at": now,
            }

        return self._transition(Action.COMPLETE, request_id, actor, changes)

    def delete_request(self, request_id: str, actor: Actor) -> None:
        """
        Hard-delete a terminal request with its history.

        Raises:
            RescheduleError: OWNER_ONLY, INVALID_STATUS, RESCHEDULE_REQUEST_NOT_FOUND
        """
        now = self.clock()
        request = self._load(request_id, now)
        self._require(Action.DELETE, actor, request, now)
        self.store.delete(request)
        logger.info(f"Reschedule request {request_id} deleted by {actor.id}")

    def expire_stale_requests(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> int:
        """
        Move every lapsed PENDING/ACCEPTED request to EXPIRED.

        This method should be called periodically by the scheduler.

        Args:
            now: Evaluation time (defaults to the service clock)
            limit: Maximum number of requests to expire in this run

        Returns:
            Number of requests expired
        """
        now = now or self.clock()
        expired = 0
        for request in self.store.find_lapsed(now, limit=limit):
            try:
                self._commit_expiry(request, now)
                expired += 1
            except StaleVersionError:
                logger.info(f"Request {request.id} changed during sweep, skipping")

        if expired:
            logger.info(f"Expired {expired} lapsed reschedule request(s)")
        return expired

    def cleanup_expired(self, actor: Actor) -> int:
        """Run the expiry sweep on demand. OWNER role only."""
        self.guard.require_owner(actor)
        count = self.expire_stale_requests()
        logger.info(f"Expiry cleanup triggered by {actor.id}: {count} request(s) expired")
        return count

    def get_request(self, request_id: str, actor: Actor) -> RescheduleRequest:
        """
        Get a request visible to the actor.

        Raises:
            RequestNotFoundError: If the request does not exist
            AuthorizationError: BRANCH_ACCESS
        """
        request = self._load(request_id, self.clock())
        self.guard.require_view(actor, request)
        return request

    def get_state_history(self, request_id: str, actor: Actor) -> List[RescheduleStateHistory]:
        """Get the status change history of a request visible to the actor."""
        request = self.get_request(request_id, actor)
        return self.store.get_history(request.id)

    def get_capabilities(self, request_id: str, actor: Actor) -> FrozenSet[Capability]:
        """Get the actions the actor may currently take on a request."""
        request = self.get_request(request_id, actor)
        return self.guard.capabilities(actor, request, self.clock())

    def list_my_requests(
        self,
        actor: Actor,
        filters: Optional[RequestFilters] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc"
    ) -> RequestPage:
        """
        Get requests the actor is a party to, plus open giveaways they may claim.

        Returns:
            RequestPage of matching requests
        """
        filters = filters or RequestFilters()
        filters.party_staff_id = actor.id
        filters.open_giveaway_branch_ids = sorted(actor.branch_ids)
        return self._list(filters, page, limit, sort_by, sort_order)

    def list_for_approval(
        self,
        actor: Actor,
        filters: Optional[RequestFilters] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc"
    ) -> RequestPage:
        """
        Get requests awaiting a decision in the approver's branches.

        Without a status filter only PENDING and ACCEPTED requests are listed.

        Raises:
            AuthorizationError: APPROVER_PERMISSION or APPROVER_BRANCH
        """
        self.guard.require_approver(actor)
        filters = filters or RequestFilters()
        filters.branch_ids = self._approver_branches(actor, filters.branch_ids)
        if not filters.statuses:
            filters.statuses = sorted(NON_TERMINAL_STATUSES, key=lambda status: status.value)
        return self._list(filters, page, limit, sort_by, sort_order)

    def list_branch_requests(
        self,
        actor: Actor,
        branch_id: str,
        filters: Optional[RequestFilters] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc"
    ) -> RequestPage:
        """
        Get all requests of a branch.

        Raises:
            AuthorizationError: APPROVER_PERMISSION or APPROVER_BRANCH
        """
        self.guard.require_approver(actor, branch_id)
        filters = filters or RequestFilters()
        filters.branch_ids = [branch_id]
        return self._list(filters, page, limit, sort_by, sort_order)

    def list_staff_requests(
        self,
        actor: Actor,
        staff_id: str,
        filters: Optional[RequestFilters] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc"
    ) -> RequestPage:
        """
        Get requests a staff member is a party to.

        Staff may list their own requests; approvers may list those of
        staff in a branch they share.

        Raises:
            AuthorizationError: APPROVER_PERMISSION or BRANCH_ACCESS
        """
        filters = filters or RequestFilters()
        if staff_id != actor.id:
            self.guard.require_approver(actor)
            staff = self.directory.get_staff(staff_id)
            shared = set(staff.branch_ids) & actor.branch_ids if staff else set()
            if not shared:
                raise AuthorizationError(
                    ErrorCode.BRANCH_ACCESS,
                    details={"staff_id": staff_id}
                )
            filters.branch_ids = sorted(shared)
        filters.party_staff_id = staff_id
        return self._list(filters, page, limit, sort_by, sort_order)

    def get_stats(self, actor: Actor, branch_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Get request counts per status, swap type and priority.

        Args:
            actor: Approver
            branch_id: Single branch to report on (defaults to all of the actor's branches)

        Returns:
            Dictionary with total and per-dimension counts

        Raises:
            AuthorizationError: APPROVER_PERMISSION or APPROVER_BRANCH
        """
        self.guard.require_approver(actor, branch_id)
        now = self.clock()
        filters = RequestFilters(branch_ids=[branch_id] if branch_id else sorted(actor.branch_ids))
        self._expire_lapsed(filters, now)

        by_status = self.store.count_by(RescheduleRequest.status, filters, now)
        by_type = self.store.count_by(RescheduleRequest.swap_type, filters, now)
        by_priority = self.store.count_by(RescheduleRequest.priority, filters, now)

        return {
            "total": sum(by_status.values()),
            "by_status": {status.value: by_status.get(status, 0) for status in RescheduleStatus},
            "by_swap_type": {swap_type.value: by_type.get(swap_type, 0) for swap_type in SwapType},
            "by_priority": {priority.value: by_priority.get(priority, 0) for priority in ReschedulePriority},
        }

    def _enqueue_notifications(self, request: RescheduleRequest, changed_fields: Dict[str, Any]) -> None:
        self.notifier.enqueue_transition(request, changed_fields, occurred_at=request.updated_at)

    def _require(self, action: Action, actor: Actor, request: RescheduleRequest, now: datetime) -> None:
        try:
            self.guard.require(action, actor, request, now)
        except RescheduleError as e:
            logger.warning(f"{action.value} of request {request.id} by {actor.id} refused: {e.code}")
            raise

    def _load(self, request_id: str, now: datetime) -> RescheduleRequest:
        """Read a request, expiring it first if it has lapsed."""
        request = self.store.get_by_id(request_id)
        if request is None:
            raise RequestNotFoundError(request_id)

        while is_lapsed(request.status, request.expires_at, now):
            try:
                return self._commit_expiry(request, now)
            except StaleVersionError:
                request = self.store.get_by_id(request_id)
                if request is None:
                    raise RequestNotFoundError(request_id)
        return request

    def _commit_expiry(self, request: RescheduleRequest, now: datetime) -> RescheduleRequest:
        return self.store.commit_transition(
            request.id,
            request.version,
            request.status,
            {"status": RescheduleStatus.EXPIRED, "expired_at": now},
            actor_id=None,
            reason="expired",
            before_commit=self._enqueue_notifications,
            now=now,
        )

    def _transition(
        self,
        action: Action,
        request_id: str,
        actor: Actor,
        changes: Callable[[RescheduleRequest, datetime], Dict[str, Any]],
        check: Optional[Callable[[RescheduleRequest], None]] = None,
        side_effect: Optional[Callable[[RescheduleRequest], None]] = None,
        reason: Optional[str] = None
    ) -> RescheduleRequest:
        now = self.clock()
        request = self._load(request_id, now)
        self._require(action, actor, request, now)

        if check is not None:
            try:
                check(request)
            except RescheduleError as e:
                logger.warning(f"{action.value} of request {request.id} by {actor.id} blocked: {e.code}")
                raise

        def before_commit(updated: RescheduleRequest, changed_fields: Dict[str, Any]) -> None:
            if side_effect is not None:
                side_effect(updated)
            self._enqueue_notifications(updated, changed_fields)

        try:
            return self.store.commit_transition(
                request.id,
                request.version,
                request.status,
                changes(request, now),
                actor_id=actor.id,
                reason=reason,
                before_commit=before_commit,
                now=now,
            )
        except StaleVersionError:
            current = self.store.get_by_id(request_id)
            current_status = current.status.value if current else None
            logger.warning(
                f"{action.value} of request {request_id} by {actor.id} lost a concurrent update "
                f"(now {current_status})"
            )
            raise InvalidTransitionError(
                ErrorCode.INVALID_STATUS,
                current_status=current_status,
                attempted_action=action.value
            )

    def _check_schedule_conflicts(self, request: RescheduleRequest, taker_id: str) -> None:
        """
        Fresh conflict check for the staff taking the source shift.

        For a SWAP with a target shift the requester is also checked
        against that shift.

        Raises:
            ShiftNotFoundError: A referenced shift no longer exists
            ConflictError: CONFLICT_DETECTED
        """
        source = self.calendar.get_shift(request.source_shift_id)
        if source is None:
            raise ShiftNotFoundError(request.source_shift_id, field="source_shift_id")
        if source.staff_id != request.requester_staff_id:
            raise ConflictError(
                ErrorCode.CONFLICT_DETECTED,
                details={"shift_id": source.id, "reason": "source_shift_reassigned"}
            )

        given_away = [request.target_shift_id] if request.target_shift_id else []
        conflicts = self.conflicts.find_conflicts(taker_id, source, given_away)
        if conflicts:
            raise ConflictDetectedError(taker_id, source.id, [shift.id for shift in conflicts])

        if request.target_shift_id:
            target_shift = self.calendar.get_shift(request.target_shift_id)
            if target_shift is None:
                raise ShiftNotFoundError(request.target_shift_id)
            conflicts = self.conflicts.find_conflicts(request.requester_staff_id, target_shift, [source.id])
            if conflicts:
                raise ConflictDetectedError(
                    request.requester_staff_id, target_shift.id, [shift.id for shift in conflicts]
                )

    def _approver_branches(self, actor: Actor, requested: Optional[List[str]]) -> List[str]:
        if not requested:
            return sorted(actor.branch_ids)
        for branch_id in requested:
            if not actor.is_member_of(branch_id):
                raise AuthorizationError(
                    ErrorCode.APPROVER_BRANCH,
                    details={"staff_id": actor.id, "branch_id": branch_id}
                )
        return list(requested)

    def _expire_lapsed(self, filters: RequestFilters, now: datetime) -> int:
        expired = 0
        for request in self.store.find_lapsed(now, filters):
            try:
                self._commit_expiry(request, now)
                expired += 1
            except StaleVersionError:
                logger.info(f"Request {request.id} changed before it could be expired, skipping")
        return expired

    def _list(
        self,
        filters: RequestFilters,
        page: int,
        limit: int,
        sort_by: str,
        sort_order: str
    ) -> RequestPage:
        now = self.clock()
        page = max(int(page or 1), 1)
        limit = min(max(int(limit or 20), 1), MAX_PAGE_SIZE)
        if sort_by not in SORT_FIELDS:
            sort_by = "created_at"
        sort_order = "asc" if str(sort_order).lower() == "asc" else "desc"

        self._expire_lapsed(filters, now)
        return self.store.list_requests(filters, now, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)

"""Authorization guard for reschedule request actions.

Answers "may this actor perform this action on this request now?" as a
pure function of the actor, the request and the current time. Checks run
in a fixed order so that the reported error code is deterministic:
identity/role/branch first, then expiry, then the request state.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, Iterable, Optional
import enum

from shift_reschedule.models.staff import StaffRole
from shift_reschedule.models.reschedule_request import (
    RescheduleRequest,
    RescheduleStatus,
    TERMINAL_STATUSES,
    can_transition,
)
from shift_reschedule.exceptions import (
    ErrorCode,
    RescheduleError,
    AuthorizationError,
    InvalidTransitionError,
    RequestExpiredError,
)
from shift_reschedule.services.expiry import is_expired


APPROVER_ROLES = frozenset({StaffRole.OWNER, StaffRole.MANAGER})


@dataclass(frozen=True)
class Actor:
    """Authenticated staff member performing an action."""
    id: str
    role: StaffRole
    job_title: Optional[str] = None
    branch_ids: FrozenSet[str] = field(default_factory=frozenset)

    def is_member_of(self, branch_id: str) -> bool:
        return branch_id in self.branch_ids


class Action(str, enum.Enum):
    """Actions that can be attempted on a request."""
    ACCEPT = "accept"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    COMPLETE = "complete"
    DELETE = "delete"


class Capability(str, enum.Enum):
    """Capability flags exposed to clients for a (actor, request) pair."""
    CAN_ACCEPT = "CAN_ACCEPT"
    CAN_APPROVE = "CAN_APPROVE"
    CAN_REJECT = "CAN_REJECT"
    CAN_CANCEL = "CAN_CANCEL"
    CAN_COMPLETE = "CAN_COMPLETE"
    CAN_DELETE = "CAN_DELETE"


ACTION_CAPABILITIES = {
    Action.ACCEPT: Capability.CAN_ACCEPT,
    Action.APPROVE: Capability.CAN_APPROVE,
    Action.REJECT: Capability.CAN_REJECT,
    Action.CANCEL: Capability.CAN_CANCEL,
    Action.COMPLETE: Capability.CAN_COMPLETE,
    Action.DELETE: Capability.CAN_DELETE,
}

# Status each action moves the request to
ACTION_TARGETS = {
    Action.ACCEPT: RescheduleStatus.ACCEPTED,
    Action.APPROVE: RescheduleStatus.APPROVED,
    Action.REJECT: RescheduleStatus.REJECTED,
    Action.CANCEL: RescheduleStatus.CANCELLED,
    Action.COMPLETE: RescheduleStatus.COMPLETED,
}

# Error reported when the request is in the wrong state for the action
STATE_ERRORS = {
    Action.ACCEPT: ErrorCode.CANNOT_ACCEPT,
    Action.APPROVE: ErrorCode.CANNOT_APPROVE,
    Action.REJECT: ErrorCode.CANNOT_REJECT,
    Action.CANCEL: ErrorCode.CANNOT_CANCEL,
    Action.COMPLETE: ErrorCode.INVALID_STATUS,
    Action.DELETE: ErrorCode.INVALID_STATUS,
}


def is_approver(role: StaffRole, job_title: Optional[str], approver_job_titles: Iterable[str] = ()) -> bool:
    """
    Check if a staff member holds an approver role.

    Args:
        role: Staff role
        job_title: Free-text job title from the directory
        approver_job_titles: Job titles that also confer approver rights

    Returns:
        True for owners, managers and configured job titles
    """
    if role in APPROVER_ROLES:
        return True
    if not job_title:
        return False
    titles = {title.strip().lower() for title in approver_job_titles}
    return job_title.strip().lower() in titles


class AuthorizationGuard:
    """Decides which actions an actor may take on a request."""

    def __init__(self, approver_job_titles: Iterable[str] = ()):
        """
        Initialize authorization guard.

        Args:
            approver_job_titles: Job titles treated as approvers in addition to OWNER/MANAGER
        """
        self.approver_job_titles = tuple(approver_job_titles)

    def is_approver(self, actor: Actor) -> bool:
        return is_approver(actor.role, actor.job_title, self.approver_job_titles)

    def denial(
        self,
        action: Action,
        actor: Actor,
        request: RescheduleRequest,
        now: datetime
    ) -> Optional[RescheduleError]:
        """
        Get the error an action would fail with, or None if it is allowed.

        Args:
            action: Action being attempted
            actor: Staff member attempting it
            request: Current state of the request
            now: Evaluation time

        Returns:
            The first failing check as an error, None if every check passes
        """
        identity_error = self._identity_denial(action, actor, request)
        if identity_error is not None:
            return identity_error

        if action != Action.DELETE and is_expired(request.status, request.expires_at, now):
            return RequestExpiredError(request.id, request.expires_at)

        if not self._state_allows(action, request):
            return InvalidTransitionError(
                STATE_ERRORS[action],
                current_status=request.status.value,
                attempted_action=action.value
            )
        return None

    def require(
        self,
        action: Action,
        actor: Actor,
        request: RescheduleRequest,
        now: datetime
    ) -> None:
        """
        Raise the deterministic error for a disallowed action.

        Raises:
            RescheduleError: Authorization, expiry or state error
        """
        error = self.denial(action, actor, request, now)
        if error is not None:
            raise error

    def capabilities(
        self,
        actor: Actor,
        request: RescheduleRequest,
        now: datetime
    ) -> FrozenSet[Capability]:
        """
        Get the capability set for an actor on a request.

        Returns:
            Capabilities whose action would currently pass every check
        """
        return frozenset(
            capability for action, capability in ACTION_CAPABILITIES.items()
            if self.denial(action, actor, request, now) is None
        )

    def can_view(self, actor: Actor, request: RescheduleRequest) -> bool:
        """Parties to a request and members of its branch may read it."""
        if actor.id in (request.requester_staff_id, request.target_staff_id, request.accepted_by):
            return True
        return actor.is_member_of(request.branch_id)

    def require_view(self, actor: Actor, request: RescheduleRequest) -> None:
        if not self.can_view(actor, request):
            raise AuthorizationError(
                ErrorCode.BRANCH_ACCESS,
                details={"request_id": request.id, "branch_id": request.branch_id}
            )

    def require_approver(self, actor: Actor, branch_id: Optional[str] = None) -> None:
        """
        Require approver rights, optionally within a specific branch.

        Raises:
            AuthorizationError: APPROVER_PERMISSION or APPROVER_BRANCH
        """
        if not self.is_approver(actor):
            raise AuthorizationError(ErrorCode.APPROVER_PERMISSION, details={"staff_id": actor.id})
        if branch_id is not None and not actor.is_member_of(branch_id):
            raise AuthorizationError(
                ErrorCode.APPROVER_BRANCH,
                details={"staff_id": actor.id, "branch_id": branch_id}
            )

    def require_owner(self, actor: Actor) -> None:
        """Require the OWNER role for maintenance operations."""
        if actor.role != StaffRole.OWNER:
            raise AuthorizationError(ErrorCode.OWNER_ONLY, details={"staff_id": actor.id})

    def _identity_denial(
        self,
        action: Action,
        actor: Actor,
        request: RescheduleRequest
    ) -> Optional[RescheduleError]:
        if action == Action.ACCEPT:
            if request.target_staff_id:
                if actor.id == request.target_staff_id:
                    return None
                if not actor.is_member_of(request.branch_id):
                    return AuthorizationError(
                        ErrorCode.BRANCH_ACCESS,
                        details={"request_id": request.id, "branch_id": request.branch_id}
                    )
                return InvalidTransitionError(
                    ErrorCode.CANNOT_ACCEPT,
                    current_status=request.status.value,
                    attempted_action=action.value
                )
            if actor.id == request.requester_staff_id:
                return InvalidTransitionError(
                    ErrorCode.CANNOT_ACCEPT,
                    current_status=request.status.value,
                    attempted_action=action.value
                )
            if not actor.is_member_of(request.branch_id):
                return AuthorizationError(
                    ErrorCode.BRANCH_ACCESS,
                    details={"request_id": request.id, "branch_id": request.branch_id}
                )
            return None

        if action in (Action.APPROVE, Action.REJECT, Action.COMPLETE):
            if not self.is_approver(actor):
                return AuthorizationError(
                    ErrorCode.APPROVER_PERMISSION,
                    details={"staff_id": actor.id}
                )
            if not actor.is_member_of(request.branch_id):
                return AuthorizationError(
                    ErrorCode.APPROVER_BRANCH,
                    details={"staff_id": actor.id, "branch_id": request.branch_id}
                )
            return None

        if action == Action.CANCEL:
            if actor.id != request.requester_staff_id:
                return AuthorizationError(
                    ErrorCode.CANCEL_OWN_ONLY,
                    details={"request_id": request.id}
                )
            return None

        if action == Action.DELETE:
            if actor.id == request.requester_staff_id:
                return None
            if actor.role == StaffRole.OWNER and actor.is_member_of(request.branch_id):
                return None
            return AuthorizationError(ErrorCode.OWNER_ONLY, details={"request_id": request.id})

        raise ValueError(f"Unknown action: {action}")

    @staticmethod
    def _state_allows(action: Action, request: RescheduleRequest) -> bool:
        if action == Action.DELETE:
            return request.status in TERMINAL_STATUSES
        if action == Action.APPROVE and request.is_open_giveaway:
            return False
        return can_transition(request.status, ACTION_TARGETS[action])

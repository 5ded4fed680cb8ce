"""Unit tests for the authorization guard."""
import pytest
from datetime import timedelta

from shift_reschedule.models import RescheduleRequest, RescheduleStatus, SwapType, StaffRole
from shift_reschedule.exceptions import AuthorizationError, RescheduleError
from shift_reschedule.services.authorization import (
    Action,
    Actor,
    AuthorizationGuard,
    Capability,
    is_approver,
)
from tests.conftest import NOW


TITLES = ["manager", "branch manager"]

S1 = Actor(id="s1", role=StaffRole.STAFF, branch_ids=frozenset({"b1"}))
S2 = Actor(id="s2", role=StaffRole.STAFF, branch_ids=frozenset({"b1"}))
S3 = Actor(id="s3", role=StaffRole.STAFF, branch_ids=frozenset({"b1"}))
S4 = Actor(id="s4", role=StaffRole.STAFF, branch_ids=frozenset({"b2"}))
M1 = Actor(id="m1", role=StaffRole.MANAGER, branch_ids=frozenset({"b1"}))
M2 = Actor(id="m2", role=StaffRole.MANAGER, branch_ids=frozenset({"b2"}))
O1 = Actor(id="o1", role=StaffRole.OWNER, branch_ids=frozenset({"b1"}))
T1 = Actor(id="t1", role=StaffRole.STAFF, job_title="Branch Manager", branch_ids=frozenset({"b1"}))


def make_request(**overrides) -> RescheduleRequest:
    values = dict(
        id="req-1",
        requester_staff_id="s1",
        target_staff_id="s2",
        branch_id="b1",
        swap_type=SwapType.SWAP,
        source_shift_id="shift-100",
        reason="Family event",
        status=RescheduleStatus.PENDING,
        expires_at=NOW + timedelta(hours=48),
    )
    values.update(overrides)
    return RescheduleRequest(**values)


def denial_code(action, actor, request, now=NOW):
    error = AuthorizationGuard(TITLES).denial(action, actor, request, now)
    return error.code if error else None


class TestIsApprover:
    """Test approver role resolution."""

    def test_owner_and_manager_are_approvers(self):
        assert is_approver(StaffRole.OWNER, None)
        assert is_approver(StaffRole.MANAGER, None)

    def test_staff_is_not_approver(self):
        assert not is_approver(StaffRole.STAFF, "Trainer", TITLES)

    def test_job_title_match_is_case_insensitive(self):
        assert is_approver(StaffRole.STAFF, "  Branch MANAGER ", TITLES)

    def test_job_title_ignored_without_configuration(self):
        assert not is_approver(StaffRole.STAFF, "Branch Manager")


class TestAccept:
    """Test accept rules."""

    def test_target_may_accept(self):
        assert denial_code(Action.ACCEPT, S2, make_request()) is None

    def test_other_member_cannot_accept_targeted_request(self):
        assert denial_code(Action.ACCEPT, S3, make_request()) == "CANNOT_ACCEPT"

    def test_requester_cannot_accept_targeted_request(self):
        assert denial_code(Action.ACCEPT, S1, make_request()) == "CANNOT_ACCEPT"

    def test_outsider_gets_branch_access(self):
        assert denial_code(Action.ACCEPT, S4, make_request()) == "BRANCH_ACCESS"

    def test_any_member_may_claim_open_giveaway(self):
        request = make_request(swap_type=SwapType.GIVEAWAY, target_staff_id=None)
        assert denial_code(Action.ACCEPT, S3, request) is None

    def test_requester_cannot_claim_own_giveaway(self):
        request = make_request(swap_type=SwapType.GIVEAWAY, target_staff_id=None)
        assert denial_code(Action.ACCEPT, S1, request) == "CANNOT_ACCEPT"

    def test_outsider_cannot_claim_giveaway(self):
        request = make_request(swap_type=SwapType.GIVEAWAY, target_staff_id=None)
        assert denial_code(Action.ACCEPT, S4, request) == "BRANCH_ACCESS"

    def test_accepted_request_cannot_be_accepted_again(self):
        request = make_request(status=RescheduleStatus.ACCEPTED, accepted_by="s2")
        assert denial_code(Action.ACCEPT, S2, request) == "CANNOT_ACCEPT"


class TestApproveReject:
    """Test approver rules."""

    def test_manager_may_approve(self):
        assert denial_code(Action.APPROVE, M1, make_request()) is None

    def test_titled_staff_may_approve(self):
        assert denial_code(Action.APPROVE, T1, make_request()) is None

    def test_staff_cannot_approve(self):
        assert denial_code(Action.APPROVE, S3, make_request()) == "APPROVER_PERMISSION"

    def test_manager_of_other_branch(self):
        assert denial_code(Action.APPROVE, M2, make_request()) == "APPROVER_BRANCH"
        assert denial_code(Action.REJECT, M2, make_request()) == "APPROVER_BRANCH"

    def test_open_giveaway_cannot_be_approved(self):
        request = make_request(swap_type=SwapType.GIVEAWAY, target_staff_id=None)
        assert denial_code(Action.APPROVE, M1, request) == "CANNOT_APPROVE"

    def test_open_giveaway_can_be_rejected(self):
        request = make_request(swap_type=SwapType.GIVEAWAY, target_staff_id=None)
        assert denial_code(Action.REJECT, M1, request) is None

    def test_approved_request_cannot_be_rejected(self):
        request = make_request(status=RescheduleStatus.APPROVED, approved_by="m1")
        assert denial_code(Action.REJECT, M1, request) == "CANNOT_REJECT"

    def test_rejected_request_cannot_be_approved(self):
        request = make_request(status=RescheduleStatus.REJECTED, rejected_by="m1")
        assert denial_code(Action.APPROVE, M1, request) == "CANNOT_APPROVE"


class TestCancel:
    """Test cancel rules."""

    def test_requester_may_cancel(self):
        assert denial_code(Action.CANCEL, S1, make_request()) is None

    def test_owner_cannot_cancel_others_request(self):
        assert denial_code(Action.CANCEL, O1, make_request()) == "CANCEL_OWN_ONLY"

    def test_identity_checked_before_state(self):
        request = make_request(status=RescheduleStatus.APPROVED, approved_by="m1")
        assert denial_code(Action.CANCEL, O1, request) == "CANCEL_OWN_ONLY"

    def test_approved_request_cannot_be_cancelled(self):
        request = make_request(status=RescheduleStatus.APPROVED, approved_by="m1")
        assert denial_code(Action.CANCEL, S1, request) == "CANNOT_CANCEL"


class TestExpiryPrecedence:
    """Expiry is reported after identity and before state."""

    @pytest.mark.parametrize("action,actor", [
        (Action.ACCEPT, S2),
        (Action.APPROVE, M1),
        (Action.REJECT, M1),
        (Action.CANCEL, S1),
    ])
    def test_lapsed_request_reports_expired(self, action, actor):
        request = make_request(expires_at=NOW - timedelta(minutes=1))
        assert denial_code(action, actor, request) == "EXPIRED"

    def test_stored_expired_reports_expired_not_state(self):
        request = make_request(status=RescheduleStatus.EXPIRED, expired_at=NOW)
        assert denial_code(Action.APPROVE, M1, request) == "EXPIRED"

    def test_identity_error_wins_over_expiry(self):
        request = make_request(expires_at=NOW - timedelta(minutes=1))
        assert denial_code(Action.CANCEL, S3, request) == "CANCEL_OWN_ONLY"
        assert denial_code(Action.APPROVE, S3, request) == "APPROVER_PERMISSION"


class TestCompleteAndDelete:
    """Test complete and delete rules."""

    def test_complete_approved_request(self):
        request = make_request(status=RescheduleStatus.APPROVED, approved_by="m1")
        assert denial_code(Action.COMPLETE, M1, request) is None

    def test_complete_pending_request_is_invalid(self):
        assert denial_code(Action.COMPLETE, M1, make_request()) == "INVALID_STATUS"

    def test_requester_may_delete_terminal_request(self):
        request = make_request(status=RescheduleStatus.CANCELLED, cancelled_at=NOW)
        assert denial_code(Action.DELETE, S1, request) is None

    def test_branch_owner_may_delete(self):
        request = make_request(status=RescheduleStatus.EXPIRED, expired_at=NOW)
        assert denial_code(Action.DELETE, O1, request) is None

    def test_manager_cannot_delete(self):
        request = make_request(status=RescheduleStatus.EXPIRED, expired_at=NOW)
        assert denial_code(Action.DELETE, M1, request) == "OWNER_ONLY"

    def test_open_request_cannot_be_deleted(self):
        assert denial_code(Action.DELETE, S1, make_request()) == "INVALID_STATUS"


class TestCapabilities:
    """Test capability sets."""

    def test_target_of_pending_swap(self):
        caps = AuthorizationGuard(TITLES).capabilities(S2, make_request(), NOW)
        assert caps == {Capability.CAN_ACCEPT}

    def test_requester_of_pending_swap(self):
        caps = AuthorizationGuard(TITLES).capabilities(S1, make_request(), NOW)
        assert caps == {Capability.CAN_CANCEL}

    def test_manager_of_accepted_swap(self):
        request = make_request(status=RescheduleStatus.ACCEPTED, accepted_by="s2")
        caps = AuthorizationGuard(TITLES).capabilities(M1, request, NOW)
        assert caps == {Capability.CAN_APPROVE, Capability.CAN_REJECT}

    def test_expired_request_only_allows_delete(self):
        request = make_request(status=RescheduleStatus.EXPIRED, expired_at=NOW)
        assert AuthorizationGuard(TITLES).capabilities(S1, request, NOW) == {Capability.CAN_DELETE}

    def test_lapsed_request_has_no_capabilities(self):
        request = make_request(expires_at=NOW - timedelta(seconds=1))
        assert AuthorizationGuard(TITLES).capabilities(M1, request, NOW) == frozenset()


class TestViewAndRoles:
    """Test read access and role requirements."""

    def test_branch_member_can_view(self):
        assert AuthorizationGuard(TITLES).can_view(S3, make_request())

    def test_outsider_cannot_view(self):
        guard = AuthorizationGuard(TITLES)
        assert not guard.can_view(S4, make_request())
        with pytest.raises(AuthorizationError) as exc_info:
            guard.require_view(S4, make_request())
        assert exc_info.value.code == "BRANCH_ACCESS"

    def test_require_approver(self):
        guard = AuthorizationGuard(TITLES)
        guard.require_approver(M1, "b1")
        with pytest.raises(AuthorizationError) as exc_info:
            guard.require_approver(S1)
        assert exc_info.value.code == "APPROVER_PERMISSION"
        with pytest.raises(AuthorizationError) as exc_info:
            guard.require_approver(M1, "b2")
        assert exc_info.value.code == "APPROVER_BRANCH"

    def test_require_owner(self):
        guard = AuthorizationGuard(TITLES)
        guard.require_owner(O1)
        with pytest.raises(AuthorizationError) as exc_info:
            guard.require_owner(M1)
        assert exc_info.value.code == "OWNER_ONLY"

    def test_require_raises_denial(self):
        with pytest.raises(RescheduleError) as exc_info:
            AuthorizationGuard(TITLES).require(Action.ACCEPT, S3, make_request(), NOW)
        assert exc_info.value.code == "CANNOT_ACCEPT"

"""Unit tests for the request store's compare-and-swap persistence."""
import pytest
from datetime import timedelta
from sqlalchemy.orm import Session

from shift_reschedule.exceptions import AlreadyExistsError, StaleVersionError
from shift_reschedule.models import (
    RescheduleRequest,
    RescheduleStatus,
    ReschedulePriority,
    SwapType,
    NotificationOutbox,
    RecipientRole,
    RescheduleStateHistory,
)
from shift_reschedule.services.request_store import RescheduleRequestStore, RequestFilters, RequestPage
from tests.conftest import NOW, add_shift


def new_request(request_id="req-1", source_shift_id="shift-100", **overrides) -> RescheduleRequest:
    values = dict(
        id=request_id,
        requester_staff_id="s1",
        target_staff_id="s2",
        branch_id="b1",
        swap_type=SwapType.SWAP,
        source_shift_id=source_shift_id,
        reason="Exam",
        priority=ReschedulePriority.NORMAL,
        status=RescheduleStatus.PENDING,
        expires_at=NOW + timedelta(hours=48),
        conflict_detected=False,
        created_at=NOW,
    )
    values.update(overrides)
    return RescheduleRequest(**values)


class TestCreate:
    """Test request creation."""

    def test_create_sets_version_and_history(self, test_db: Session, team):
        store = RescheduleRequestStore(test_db)

        request = store.create(new_request(), "s1")

        assert request.version == 1
        assert request.open_source_shift_id == "shift-100"
        history = store.get_history(request.id)
        assert len(history) == 1
        assert history[0].from_status is None
        assert history[0].to_status == RescheduleStatus.PENDING
        assert history[0].changed_by == "s1"

    def test_second_open_request_for_shift_rejected(self, test_db: Session, team):
        store = RescheduleRequestStore(test_db)
        store.create(new_request("req-1"), "s1")

        with pytest.raises(AlreadyExistsError) as exc_info:
            store.create(new_request("req-2"), "s1")
        assert exc_info.value.details["existing_request_id"] == "req-1"

    def test_unique_constraint_backs_the_check(self, test_db: Session, team):
        store = RescheduleRequestStore(test_db)
        store.create(new_request("req-1"), "s1")

        # Simulate a concurrent writer that passed the pre-check
        store.find_open_by_source_shift = lambda shift_id: None
        with pytest.raises(AlreadyExistsError):
            store.create(new_request("req-2"), "s1")

        assert test_db.query(RescheduleRequest).count() == 1

    def test_before_commit_runs_in_transaction(self, test_db: Session, team):
        store = RescheduleRequestStore(test_db)
        seen = {}

        def before_commit(request, changed_fields):
            seen.update(changed_fields)

        store.create(new_request(), "s1", before_commit=before_commit)

        assert seen == {"status": "PENDING", "version": 1}

    def test_failing_side_effect_rolls_back(self, test_db: Session, team):
        store = RescheduleRequestStore(test_db)

        def before_commit(request, changed_fields):
            raise RuntimeError("outbox unavailable")

        with pytest.raises(RuntimeError):
            store.create(new_request(), "s1", before_commit=before_commit)

        assert test_db.query(RescheduleRequest).count() == 0


class TestCommitTransition:
    """Test versioned status changes."""

    def test_transition_bumps_version_and_records_history(self, test_db: Session, team):
        store = RescheduleRequestStore(test_db)
        store.create(new_request(), "s1")

        request = store.commit_transition(
            "req-1", 1, RescheduleStatus.PENDING,
            {"status": RescheduleStatus.ACCEPTED, "accepted_by": "s2", "accepted_at": NOW},
            actor_id="s2"
        )

        assert request.status == RescheduleStatus.ACCEPTED
        assert request.version == 2
        assert request.open_source_shift_id == "shift-100"
        history = store.get_history("req-1")
        assert [(h.from_status, h.to_status, h.version) for h in history] == [
            (None, RescheduleStatus.PENDING, 1),
            (RescheduleStatus.PENDING, RescheduleStatus.ACCEPTED, 2),
        ]

    def test_stale_version_rejected_without_change(self, test_db: Session, team):
        store = RescheduleRequestStore(test_db)
        store.create(new_request(), "s1")
        store.commit_transition(
            "req-1", 1, RescheduleStatus.PENDING,
            {"status": RescheduleStatus.CANCELLED, "cancelled_at": NOW},
            actor_id="s1"
        )

        with pytest.raises(StaleVersionError):
            store.commit_transition(
                "req-1", 1, RescheduleStatus.PENDING,
                {"status": RescheduleStatus.REJECTED, "rejected_by": "m1", "rejected_at": NOW},
                actor_id="m1"
            )

        request = store.get_by_id("req-1")
        assert request.status == RescheduleStatus.CANCELLED
        assert request.version == 2
        assert request.rejected_by is None
        assert len(store.get_history("req-1")) == 2

    def test_terminal_transition_frees_source_shift(self, test_db: Session, team):
        store = RescheduleRequestStore(test_db)
        store.create(new_request("req-1"), "s1")
        store.commit_transition(
            "req-1", 1, RescheduleStatus.PENDING,
            {"status": RescheduleStatus.CANCELLED, "cancelled_at": NOW},
            actor_id="s1"
        )

        assert store.get_by_id("req-1").open_source_shift_id is None
        assert store.find_open_by_source_shift("shift-100") is None
        store.create(new_request("req-2"), "s1")

    def test_invalid_field_combination_rolls_back(self, test_db: Session, team):
        store = RescheduleRequestStore(test_db)
        store.create(new_request(), "s1")

        with pytest.raises(ValueError):
            store.commit_transition(
                "req-1", 1, RescheduleStatus.PENDING,
                {"status": RescheduleStatus.APPROVED},
                actor_id="m1"
            )

        request = store.get_by_id("req-1")
        assert request.status == RescheduleStatus.PENDING
        assert request.version == 1

    def test_changed_fields_are_serialized(self, test_db: Session, team):
        store = RescheduleRequestStore(test_db)
        store.create(new_request(), "s1")
        seen = {}

        store.commit_transition(
            "req-1", 1, RescheduleStatus.PENDING,
            {"status": RescheduleStatus.CANCELLED, "cancelled_at": NOW},
            actor_id="s1",
            before_commit=lambda request, fields: seen.update(fields)
        )

        assert seen == {"status": "CANCELLED", "cancelled_at": NOW.isoformat(), "version": 2}


class TestDelete:
    """Test hard delete."""

    def test_delete_removes_history_and_outbox(self, test_db: Session, team):
        store = RescheduleRequestStore(test_db)
        request = store.create(new_request(), "s1")
        test_db.add(NotificationOutbox(
            event_id="evt-1",
            request_id="req-1",
            recipient_staff_id="s1",
            recipient_role=RecipientRole.REQUESTER,
            new_status=RescheduleStatus.PENDING,
            changed_fields={},
            occurred_at=NOW
        ))
        test_db.commit()

        store.delete(request)

        assert store.get_by_id("req-1") is None
        assert test_db.query(RescheduleStateHistory).count() == 0
        assert test_db.query(NotificationOutbox).count() == 0


class TestListing:
    """Test filtering, sorting and paging."""

    @pytest.fixture
    def stored(self, test_db: Session, team):
        store = RescheduleRequestStore(test_db)
        monday = team["monday"]
        for index, priority in enumerate([
            ReschedulePriority.LOW,
            ReschedulePriority.URGENT,
            ReschedulePriority.NORMAL,
        ]):
            add_shift(test_db, f"extra-{index}", "s1", monday + timedelta(days=2 + index))
            store.create(new_request(
                f"req-{index}",
                f"extra-{index}",
                priority=priority,
                created_at=NOW + timedelta(minutes=index),
            ), "s1")
        store.create(new_request(
            "giveaway",
            "shift-200",
            requester_staff_id="s2",
            target_staff_id=None,
            swap_type=SwapType.GIVEAWAY,
            created_at=NOW + timedelta(minutes=10),
            expires_at=NOW + timedelta(hours=1),
        ), "s2")
        return store

    def test_default_order_newest_first(self, stored):
        page = stored.list_requests(RequestFilters(), NOW)
        assert [r.id for r in page.items] == ["giveaway", "req-2", "req-1", "req-0"]
        assert page.total == 4

    def test_sort_by_priority(self, stored):
        page = stored.list_requests(RequestFilters(requester_staff_id="s1"), NOW, sort_by="priority", sort_order="desc")
        assert [r.id for r in page.items] == ["req-1", "req-2", "req-0"]

    def test_paging(self, stored):
        page = stored.list_requests(RequestFilters(), NOW, page=2, limit=3, sort_order="asc")
        assert isinstance(page, RequestPage)
        assert [r.id for r in page.items] == ["giveaway"]
        assert page.total == 4
        assert page.pages == 2

    def test_party_filter_with_open_giveaways(self, stored):
        mine = stored.list_requests(RequestFilters(party_staff_id="s3"), NOW)
        assert mine.total == 0

        claimable = stored.list_requests(
            RequestFilters(party_staff_id="s3", open_giveaway_branch_ids=["b1"]), NOW
        )
        assert [r.id for r in claimable.items] == ["giveaway"]

    def test_party_filter_matches_target(self, stored):
        page = stored.list_requests(RequestFilters(party_staff_id="s2"), NOW)
        assert page.total == 4

    def test_swap_type_and_priority_filters(self, stored):
        assert stored.list_requests(RequestFilters(swap_type=SwapType.GIVEAWAY), NOW).total == 1
        assert stored.list_requests(RequestFilters(priority=ReschedulePriority.URGENT), NOW).total == 1

    def test_date_range_filter(self, stored):
        filters = RequestFilters(start_date=NOW + timedelta(minutes=1), end_date=NOW + timedelta(minutes=2))
        page = stored.list_requests(filters, NOW)
        assert sorted(r.id for r in page.items) == ["req-1", "req-2"]

    def test_is_expired_filter_uses_clock(self, stored):
        later = NOW + timedelta(hours=2)
        expired = stored.list_requests(RequestFilters(is_expired=True), later)
        assert [r.id for r in expired.items] == ["giveaway"]
        assert stored.list_requests(RequestFilters(is_expired=False), later).total == 3

    def test_find_lapsed(self, stored):
        assert stored.find_lapsed(NOW) == []
        lapsed = stored.find_lapsed(NOW + timedelta(hours=2))
        assert [r.id for r in lapsed] == ["giveaway"]
        assert stored.find_lapsed(NOW + timedelta(hours=2), RequestFilters(branch_ids=["b2"])) == []

    def test_count_by_status(self, stored):
        counts = stored.count_by(RescheduleRequest.status, RequestFilters(), NOW)
        assert counts == {RescheduleStatus.PENDING: 4}

    def test_branch_filter(self, stored):
        assert stored.list_requests(RequestFilters(branch_ids=["b2"]), NOW).total == 0
        assert stored.list_requests(RequestFilters(branch_ids=["b1"]), NOW).total == 4

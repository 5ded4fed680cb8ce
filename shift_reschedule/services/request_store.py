"""Persistence for reschedule requests with versioned compare-and-swap."""
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import update, func, or_, and_, case
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime, date
import enum
import logging
import math

from shift_reschedule.models.reschedule_request import (
    RescheduleRequest,
    RescheduleStatus,
    ReschedulePriority,
    SwapType,
    NON_TERMINAL_STATUSES,
    PRIORITY_RANK,
)
from shift_reschedule.models.state_history import RescheduleStateHistory
from shift_reschedule.models.notification_outbox import NotificationOutbox
from shift_reschedule.exceptions import AlreadyExistsError, StaleVersionError
from shift_reschedule.utils import utc_now


logger = logging.getLogger(__name__)


SORT_FIELDS = ("created_at", "updated_at", "expires_at", "priority")


@dataclass
class RequestFilters:
    """Filters for listing requests. Unset fields do not filter."""
    party_staff_id: Optional[str] = None
    requester_staff_id: Optional[str] = None
    target_staff_id: Optional[str] = None
    branch_ids: Optional[List[str]] = None
    open_giveaway_branch_ids: Optional[List[str]] = None
    statuses: Optional[List[RescheduleStatus]] = None
    swap_type: Optional[SwapType] = None
    priority: Optional[ReschedulePriority] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_expired: Optional[bool] = None


@dataclass
class RequestPage:
    """One page of list results."""
    items: List[RescheduleRequest]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def _serialize(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


BeforeCommit = Callable[[RescheduleRequest, Dict[str, Any]], None]


class RescheduleRequestStore:
    """Stores requests and applies status changes atomically.

    Every status change goes through commit_transition, which updates the
    row only if its version is unchanged, appends a history entry and runs
    the caller's side effects in the same database transaction.
    """

    def __init__(self, db: Session):
        """
        Initialize request store.

        Args:
            db: Database session
        """
        self.db = db

    def get_by_id(self, request_id: str) -> Optional[RescheduleRequest]:
        """
        Get a request by ID, re-reading it from the database.

        Args:
            request_id: ID of the request

        Returns:
            RescheduleRequest if found, None otherwise
        """
        return self.db.query(RescheduleRequest).populate_existing().filter(
            RescheduleRequest.id == request_id
        ).first()

    def find_open_by_source_shift(self, source_shift_id: str) -> Optional[RescheduleRequest]:
        """Get the PENDING/ACCEPTED request for a source shift, if any."""
        return self.db.query(RescheduleRequest).filter(
            RescheduleRequest.open_source_shift_id == source_shift_id
        ).first()

    def create(
        self,
        request: RescheduleRequest,
        actor_id: str,
        before_commit: Optional[BeforeCommit] = None
    ) -> RescheduleRequest:
        """
        Insert a new PENDING request.

        Args:
            request: Request to insert, status PENDING and version 1
            actor_id: Staff member creating the request
            before_commit: Side effects to run inside the same transaction

        Returns:
            The stored request

        Raises:
            AlreadyExistsError: If the source shift already has an open request
        """
        existing = self.find_open_by_source_shift(request.source_shift_id)
        if existing:
            raise AlreadyExistsError(request.source_shift_id, existing.id)

        now = request.created_at or utc_now()
        request.created_at = now
        request.updated_at = now
        request.version = 1
        request.open_source_shift_id = request.source_shift_id
        request.validate()

        try:
            self.db.add(request)
            self.db.flush()
            self.db.add(RescheduleStateHistory(
                request_id=request.id,
                from_status=None,
                to_status=request.status,
                changed_by=actor_id,
                changed_at=now,
                reason=request.reason,
                version=request.version
            ))
            if before_commit:
                before_commit(request, {
                    "status": request.status.value,
                    "version": request.version,
                })
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if "uq_open_request_source_shift" in str(e) or "open_source_shift_id" in str(e):
                logger.warning(f"Concurrent request for source shift {request.source_shift_id}")
                raise AlreadyExistsError(request.source_shift_id)
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(request)
        logger.info(f"Request {request.id} created for shift {request.source_shift_id}")
        return request

    def commit_transition(
        self,
        request_id: str,
        expected_version: int,
        from_status: RescheduleStatus,
        changes: Dict[str, Any],
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
        before_commit: Optional[BeforeCommit] = None,
        now: Optional[datetime] = None
    ) -> RescheduleRequest:
        """
        Apply a status change if the stored version still matches.

        Args:
            request_id: ID of the request
            expected_version: Version the caller read
            from_status: Status the caller read
            changes: Column values to set; must include "status"
            actor_id: Staff member causing the change, None for the system
            reason: Optional note for the history entry
            before_commit: Side effects to run inside the same transaction
            now: Commit time stamped on the row and its history (defaults to now)

        Returns:
            The updated request

        Raises:
            StaleVersionError: If another writer committed first
        """
        now = now or utc_now()
        new_status = changes["status"]
        values = dict(changes)
        values["version"] = expected_version + 1
        values["updated_at"] = now
        values["open_source_shift_id"] = (
            RescheduleRequest.source_shift_id if new_status in NON_TERMINAL_STATUSES else None
        )

        stmt = (
            update(RescheduleRequest)
            .where(
                RescheduleRequest.id == request_id,
                RescheduleRequest.version == expected_version
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        try:
            result = self.db.execute(stmt)
            if result.rowcount != 1:
                raise StaleVersionError(request_id, expected_version)

            request = self.get_by_id(request_id)
            request.validate()
            self.db.add(RescheduleStateHistory(
                request_id=request_id,
                from_status=from_status,
                to_status=new_status,
                changed_by=actor_id,
                changed_at=now,
                reason=reason,
                version=expected_version + 1
            ))

            changed_fields = {name: _serialize(value) for name, value in changes.items()}
            changed_fields["version"] = expected_version + 1
            if before_commit:
                before_commit(request, changed_fields)

            self.db.commit()
        except StaleVersionError:
            self.db.rollback()
            logger.info(f"Version conflict on request {request_id} at version {expected_version}")
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(request)
        logger.info(
            f"Reschedule request {request_id} {from_status.value} -> {new_status.value} "
            f"by {actor_id or 'system'} (version {request.version})"
        )
        return request

    def delete(self, request: RescheduleRequest) -> None:
        """Delete a request together with its history and outbox rows."""
        request_id = request.id
        try:
            self.db.query(NotificationOutbox).filter(
                NotificationOutbox.request_id == request_id
            ).delete(synchronize_session=False)
            self.db.delete(request)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Request {request_id} deleted")

    def get_history(self, request_id: str) -> List[RescheduleStateHistory]:
        """Get the state history of a request in commit order."""
        return self.db.query(RescheduleStateHistory).filter(
            RescheduleStateHistory.request_id == request_id
        ).order_by(RescheduleStateHistory.version.asc(), RescheduleStateHistory.id.asc()).all()

    def find_lapsed(
        self,
        now: datetime,
        filters: Optional[RequestFilters] = None,
        limit: Optional[int] = None
    ) -> List[RescheduleRequest]:
        """
        Get non-terminal requests whose expiry has passed.

        Args:
            now: Evaluation time
            filters: Optional scope (status and expiry filters are ignored)
            limit: Maximum number of rows

        Returns:
            List of lapsed requests, oldest expiry first
        """
        query = self.db.query(RescheduleRequest).filter(
            RescheduleRequest.status.in_(list(NON_TERMINAL_STATUSES)),
            RescheduleRequest.expires_at < now
        )
        if filters is not None:
            query = self._apply_filters(query, replace(filters, statuses=None, is_expired=None), now)
        query = query.order_by(RescheduleRequest.expires_at.asc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def list_requests(
        self,
        filters: RequestFilters,
        now: datetime,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc"
    ) -> RequestPage:
        """
        Get a page of requests.

        Args:
            filters: Row filters
            now: Evaluation time for the is_expired filter
            page: 1-based page number
            limit: Page size
            sort_by: One of created_at, updated_at, expires_at, priority
            sort_order: asc or desc

        Returns:
            RequestPage with the items and total count
        """
        query = self._apply_filters(self.db.query(RescheduleRequest), filters, now)
        total = query.count()

        sort_column = {
            "created_at": RescheduleRequest.created_at,
            "updated_at": RescheduleRequest.updated_at,
            "expires_at": RescheduleRequest.expires_at,
            "priority": case(
                *[(RescheduleRequest.priority == priority, rank) for priority, rank in PRIORITY_RANK.items()],
                else_=0
            ),
        }.get(sort_by, RescheduleRequest.created_at)
        ordering = sort_column.asc() if sort_order == "asc" else sort_column.desc()

        items = query.order_by(ordering, RescheduleRequest.id.asc()).offset(
            (page - 1) * limit
        ).limit(limit).all()

        return RequestPage(items=items, page=page, limit=limit, total=total)

    def count_by(self, column, filters: RequestFilters, now: datetime) -> Dict[Any, int]:
        """
        Count requests grouped by a column.

        Args:
            column: RescheduleRequest column to group by
            filters: Row filters
            now: Evaluation time for the is_expired filter

        Returns:
            Mapping of column value to count
        """
        query = self._apply_filters(
            self.db.query(column, func.count(RescheduleRequest.id)),
            filters,
            now
        )
        return {value: count for value, count in query.group_by(column).all()}

    def _apply_filters(self, query, filters: RequestFilters, now: datetime):
        if filters.party_staff_id:
            party = or_(
                RescheduleRequest.requester_staff_id == filters.party_staff_id,
                RescheduleRequest.target_staff_id == filters.party_staff_id
            )
            if filters.open_giveaway_branch_ids:
                party = or_(party, and_(
                    RescheduleRequest.swap_type == SwapType.GIVEAWAY,
                    RescheduleRequest.target_staff_id.is_(None),
                    RescheduleRequest.status == RescheduleStatus.PENDING,
                    RescheduleRequest.branch_id.in_(filters.open_giveaway_branch_ids)
                ))
            query = query.filter(party)
        if filters.requester_staff_id:
            query = query.filter(RescheduleRequest.requester_staff_id == filters.requester_staff_id)
        if filters.target_staff_id:
            query = query.filter(RescheduleRequest.target_staff_id == filters.target_staff_id)
        if filters.branch_ids is not None:
            query = query.filter(RescheduleRequest.branch_id.in_(filters.branch_ids))
        if filters.statuses:
            query = query.filter(RescheduleRequest.status.in_(filters.statuses))
        if filters.swap_type:
            query = query.filter(RescheduleRequest.swap_type == filters.swap_type)
        if filters.priority:
            query = query.filter(RescheduleRequest.priority == filters.priority)
        if filters.start_date:
            query = query.filter(RescheduleRequest.created_at >= filters.start_date)
        if filters.end_date:
            query = query.filter(RescheduleRequest.created_at <= filters.end_date)
        if filters.is_expired is not None:
            expired = or_(
                RescheduleRequest.status == RescheduleStatus.EXPIRED,
                and_(
                    RescheduleRequest.status.in_(list(NON_TERMINAL_STATUSES)),
                    RescheduleRequest.expires_at < now
                )
            )
            query = query.filter(expired if filters.is_expired else ~expired)
        return query

"""Pytest configuration and fixtures for tests."""
import os

# Must be set before the application settings are imported
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LINE_CHANNEL_ACCESS_TOKEN", "")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator, Iterable, Optional
from contextlib import contextmanager
from datetime import datetime, timedelta

from shift_reschedule.database import Base
from shift_reschedule.models import Branch, Staff, StaffRole, StaffBranch, WorkShift, ShiftStatus
from shift_reschedule.services.authorization import Actor
from shift_reschedule.services.directory_service import StaffDirectoryService
from shift_reschedule.services.notification_service import EventBus
from shift_reschedule.services.reschedule_service import RescheduleService


# Thursday; shift-100 starts the following Monday 08:00
NOW = datetime(2026, 3, 5, 8, 0, 0)


class FakeClock:
    """Controllable clock for expiry tests."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def add_branch(db: Session, branch_id: str, name: Optional[str] = None) -> Branch:
    branch = Branch(id=branch_id, name=name or f"Branch {branch_id}")
    db.add(branch)
    db.commit()
    return branch


def add_staff(
    db: Session,
    staff_id: str,
    role: StaffRole = StaffRole.STAFF,
    branch_ids: Iterable[str] = ("b1",),
    job_title: Optional[str] = None,
    line_user_id: Optional[str] = None
) -> Staff:
    staff = Staff(
        id=staff_id,
        name=f"Staff {staff_id}",
        role=role,
        job_title=job_title,
        line_user_id=line_user_id
    )
    db.add(staff)
    db.flush()
    for branch_id in branch_ids:
        db.add(StaffBranch(staff_id=staff_id, branch_id=branch_id))
    db.commit()
    return staff


def add_shift(
    db: Session,
    shift_id: str,
    staff_id: str,
    start_time: datetime,
    hours: float = 4,
    branch_id: str = "b1"
) -> WorkShift:
    shift = WorkShift(
        id=shift_id,
        staff_id=staff_id,
        branch_id=branch_id,
        start_time=start_time,
        end_time=start_time + timedelta(hours=hours),
        status=ShiftStatus.SCHEDULED
    )
    db.add(shift)
    db.commit()
    return shift


def get_actor(db: Session, staff_id: str) -> Actor:
    actor = StaffDirectoryService(db, ["manager", "branch manager"]).get_actor(staff_id)
    assert actor is not None, f"Unknown staff {staff_id}"
    return actor


def seed_team(db: Session, now: datetime = NOW) -> dict:
    """
    Create two branches with staff and two shifts.

    b1: s1, s2, s3 (STAFF), m1, m3 (MANAGER), o1 (OWNER), t1 (STAFF titled "Branch Manager")
    b2: m2 (MANAGER), s4 (STAFF)
    shift-100: s1, Monday 08:00-12:00
    shift-200: s2, Tuesday 08:00-12:00
    """
    add_branch(db, "b1")
    add_branch(db, "b2")
    for staff_id in ("s1", "s2", "s3"):
        add_staff(db, staff_id)
    add_staff(db, "m1", StaffRole.MANAGER)
    add_staff(db, "m3", StaffRole.MANAGER)
    add_staff(db, "o1", StaffRole.OWNER)
    add_staff(db, "t1", job_title="Branch Manager")
    add_staff(db, "m2", StaffRole.MANAGER, branch_ids=("b2",))
    add_staff(db, "s4", branch_ids=("b2",))

    monday = (now + timedelta(days=4)).replace(hour=8, minute=0, second=0, microsecond=0)
    return {
        "shift-100": add_shift(db, "shift-100", "s1", monday),
        "shift-200": add_shift(db, "shift-200", "s2", monday + timedelta(days=1)),
        "monday": monday,
    }


def _memory_engine():
    return create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a test database session for each test.
    Uses an in-memory SQLite database for fast testing.
    """
    engine = _memory_engine()
    Base.metadata.create_all(bind=engine)

    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@contextmanager
def get_test_db_session():
    """
    Context manager for creating test database sessions.
    Used for property-based tests where fixtures don't work well.
    """
    engine = _memory_engine()
    Base.metadata.create_all(bind=engine)

    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def file_sessions(tmp_path) -> Generator[sessionmaker, None, None]:
    """
    Session factory over a file-backed SQLite database.
    Sessions from it use separate connections, so two of them behave
    like two concurrent callers.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'reschedule.db'}",
        echo=False,
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield factory
    finally:
        engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def team(test_db: Session) -> dict:
    return seed_team(test_db, NOW)


@pytest.fixture
def service(test_db: Session, bus: EventBus, clock: FakeClock) -> RescheduleService:
    return RescheduleService(test_db, bus=bus, clock=clock)


@pytest.fixture
def api(tmp_path):
    """
    TestClient with the database and background session factory pointed
    at an in-memory test database.

    Yields:
        (client, session_factory)
    """
    from fastapi.testclient import TestClient
    from main import app
    from shift_reschedule.database import get_db
    from shift_reschedule.api.dependencies import get_session_factory

    engine = _memory_engine()
    Base.metadata.create_all(bind=engine)
    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestSessionLocal

    try:
        yield TestClient(app), TestSessionLocal
    finally:
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()

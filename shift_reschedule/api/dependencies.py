"""Shared FastAPI dependencies."""
from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session, sessionmaker
from typing import Optional
import logging

from shift_reschedule.config import settings
from shift_reschedule.database import get_db, SessionLocal
from shift_reschedule.services.authorization import Actor
from shift_reschedule.services.directory_service import StaffDirectoryService
from shift_reschedule.services.reschedule_service import RescheduleService


logger = logging.getLogger(__name__)


def get_session_factory() -> sessionmaker:
    """
    Session factory for work that outlives the request, such as
    background notification dispatch.
    """
    return SessionLocal


def get_current_actor(
    x_staff_id: Optional[str] = Header(None),
    db: Session = Depends(get_db)
) -> Actor:
    """
    Resolve the acting staff member from the session layer's header.

    Args:
        x_staff_id: Staff ID supplied in the X-Staff-Id header
        db: Database session

    Returns:
        Actor with role and branch memberships

    Raises:
        HTTPException: If the header is missing or the staff member is unknown
    """
    if not x_staff_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    actor = StaffDirectoryService(db, settings.approver_job_titles).get_actor(x_staff_id)
    if actor is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return actor


def get_reschedule_service(db: Session = Depends(get_db)) -> RescheduleService:
    """Reschedule service bound to the request's database session."""
    return RescheduleService(db)

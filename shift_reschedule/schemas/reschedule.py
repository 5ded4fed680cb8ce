"""Pydantic schemas for reschedule requests."""
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel

from shift_reschedule.models.reschedule_request import (
    RescheduleRequest,
    RescheduleStatus,
    ReschedulePriority,
    SwapType,
)
from shift_reschedule.services.expiry import is_expired, time_remaining
from shift_reschedule.services.request_store import RequestPage


class RescheduleRequestCreate(BaseModel):
    # Enum fields stay plain strings so the service reports its own codes
    source_shift_id: str
    swap_type: Optional[str] = None
    reason: Optional[str] = None
    priority: Optional[str] = None
    target_staff_id: Optional[str] = None
    target_shift_id: Optional[str] = None
    expires_at: Optional[datetime] = None


class ApproveRequestBody(BaseModel):
    approved_by: Optional[str] = None


class RejectRequestBody(BaseModel):
    rejection_reason: Optional[str] = None


class RescheduleRequestOut(BaseModel):
    id: str
    requester_staff_id: str
    target_staff_id: Optional[str] = None
    branch_id: str
    swap_type: SwapType
    source_shift_id: str
    target_shift_id: Optional[str] = None
    reason: str
    priority: ReschedulePriority
    status: RescheduleStatus
    expires_at: datetime
    accepted_by: Optional[str] = None
    accepted_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    conflict_detected: bool
    version: int
    created_at: datetime
    updated_at: datetime
    is_expired: bool = False
    time_remaining_seconds: Optional[int] = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_request(cls, request: RescheduleRequest, now: datetime) -> "RescheduleRequestOut":
        """Build the response model, adding the virtual expiry fields."""
        remaining = time_remaining(request.status, request.expires_at, now)
        out = cls.model_validate(request)
        out.is_expired = is_expired(request.status, request.expires_at, now)
        out.time_remaining_seconds = int(remaining.total_seconds()) if remaining is not None else None
        return out


class PaginationOut(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class RescheduleRequestListOut(BaseModel):
    data: List[RescheduleRequestOut]
    pagination: PaginationOut

    @classmethod
    def from_page(cls, page: RequestPage, now: datetime) -> "RescheduleRequestListOut":
        return cls(
            data=[RescheduleRequestOut.from_request(item, now) for item in page.items],
            pagination=PaginationOut(
                page=page.page,
                limit=page.limit,
                total=page.total,
                pages=page.pages,
            ),
        )


class StateHistoryOut(BaseModel):
    from_status: Optional[RescheduleStatus] = None
    to_status: RescheduleStatus
    changed_by: Optional[str] = None
    changed_at: datetime
    reason: Optional[str] = None
    version: int

    model_config = {"from_attributes": True}


class CapabilitiesOut(BaseModel):
    request_id: str
    capabilities: List[str]


class StatsOut(BaseModel):
    total: int
    by_status: Dict[str, int]
    by_swap_type: Dict[str, int]
    by_priority: Dict[str, int]


class CleanupOut(BaseModel):
    expired_count: int

"""Reschedule request API routes."""
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Body
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker
from typing import Optional
from datetime import datetime

from shift_reschedule.config import settings
from shift_reschedule.api.dependencies import get_current_actor, get_reschedule_service, get_session_factory
from shift_reschedule.scheduler.expiry_scheduler import dispatch_pending_notifications
from shift_reschedule.services.authorization import Actor
from shift_reschedule.services.reschedule_service import RescheduleService, build_filters
from shift_reschedule.services.request_store import RequestFilters
from shift_reschedule.schemas.reschedule import (
    RescheduleRequestCreate,
    ApproveRequestBody,
    RejectRequestBody,
    RescheduleRequestOut,
    RescheduleRequestListOut,
    StateHistoryOut,
    CapabilitiesOut,
    StatsOut,
    CleanupOut,
)


# Create router
router = APIRouter(prefix=f"{settings.api_prefix}/reschedule", tags=["reschedule"])


class ListParams:
    """Common list query parameters."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        sort_by: str = Query("created_at", pattern="^(created_at|updated_at|expires_at|priority)$"),
        sort_order: str = Query("desc", pattern="^(asc|desc)$"),
        status: Optional[str] = Query(None),
        swap_type: Optional[str] = Query(None),
        priority: Optional[str] = Query(None),
        requester_staff_id: Optional[str] = Query(None),
        target_staff_id: Optional[str] = Query(None),
        is_expired: Optional[bool] = Query(None),
        start_date: Optional[datetime] = Query(None),
        end_date: Optional[datetime] = Query(None)
    ):
        self.page = page
        self.limit = limit
        self.sort_by = sort_by
        self.sort_order = sort_order
        self.status = status
        self.swap_type = swap_type
        self.priority = priority
        self.requester_staff_id = requester_staff_id
        self.target_staff_id = target_staff_id
        self.is_expired = is_expired
        self.start_date = start_date
        self.end_date = end_date

    def filters(self, branch_id: Optional[str] = None) -> RequestFilters:
        return build_filters(
            status=self.status,
            swap_type=self.swap_type,
            priority=self.priority,
            requester_staff_id=self.requester_staff_id,
            target_staff_id=self.target_staff_id,
            branch_id=branch_id,
            is_expired=self.is_expired,
            start_date=self.start_date,
            end_date=self.end_date,
        )

    def paging(self) -> dict:
        return {
            "page": self.page,
            "limit": self.limit,
            "sort_by": self.sort_by,
            "sort_order": self.sort_order,
        }


def _request_response(service: RescheduleService, request, status_code: int = 200) -> JSONResponse:
    out = RescheduleRequestOut.from_request(request, service.clock())
    return JSONResponse(status_code=status_code, content={"success": True, "data": out.model_dump(mode="json")})


def _list_response(service: RescheduleService, page) -> JSONResponse:
    out = RescheduleRequestListOut.from_page(page, service.clock())
    return JSONResponse(content={"success": True, **out.model_dump(mode="json")})


def _schedule_dispatch(background_tasks: BackgroundTasks, session_factory: sessionmaker) -> None:
    background_tasks.add_task(dispatch_pending_notifications, session_factory)


@router.post("/")
def create_request(
    background_tasks: BackgroundTasks,
    body: RescheduleRequestCreate,
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service),
    session_factory: sessionmaker = Depends(get_session_factory)
):
    """
    Create a reschedule request for one of the actor's shifts.

    Returns:
        JSON response with the created request (201)
    """
    request = service.create_request(
        actor,
        source_shift_id=body.source_shift_id,
        swap_type=body.swap_type,
        reason=body.reason,
        priority=body.priority,
        target_staff_id=body.target_staff_id,
        target_shift_id=body.target_shift_id,
        expires_at=body.expires_at,
    )
    _schedule_dispatch(background_tasks, session_factory)
    return _request_response(service, request, status_code=201)


@router.get("/my-requests")
def list_my_requests(
    params: ListParams = Depends(),
    branch_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service)
):
    """Get requests the actor is a party to, plus open giveaways they can claim."""
    page = service.list_my_requests(actor, params.filters(branch_id), **params.paging())
    return _list_response(service, page)


@router.get("/approval-requests")
def list_approval_requests(
    params: ListParams = Depends(),
    branch_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service)
):
    """Get requests awaiting a decision in the approver's branches."""
    page = service.list_for_approval(actor, params.filters(branch_id), **params.paging())
    return _list_response(service, page)


@router.get("/branch/{branch_id}")
def list_branch_requests(
    branch_id: str,
    params: ListParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service)
):
    """Get all requests of a branch. Approvers of that branch only."""
    page = service.list_branch_requests(actor, branch_id, params.filters(), **params.paging())
    return _list_response(service, page)


@router.get("/staff/{staff_id}")
def list_staff_requests(
    staff_id: str,
    params: ListParams = Depends(),
    branch_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service)
):
    """Get requests a staff member is a party to."""
    page = service.list_staff_requests(actor, staff_id, params.filters(branch_id), **params.paging())
    return _list_response(service, page)


@router.get("/stats")
def get_stats(
    branch_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service)
):
    """Get request counts per status, swap type and priority."""
    stats = StatsOut(**service.get_stats(actor, branch_id))
    return JSONResponse(content={"success": True, "data": stats.model_dump()})


@router.post("/admin/cleanup")
def cleanup_expired(
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service),
    session_factory: sessionmaker = Depends(get_session_factory)
):
    """Expire every lapsed request now. OWNER role only."""
    count = service.cleanup_expired(actor)
    _schedule_dispatch(background_tasks, session_factory)
    return JSONResponse(content={"success": True, "data": CleanupOut(expired_count=count).model_dump()})


@router.get("/{request_id}")
def get_request(
    request_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service),
    session_factory: sessionmaker = Depends(get_session_factory)
):
    """Get a single request with its expiry countdown."""
    request = service.get_request(request_id, actor)
    _schedule_dispatch(background_tasks, session_factory)
    return _request_response(service, request)


@router.get("/{request_id}/history")
def get_state_history(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service)
):
    """Get the status change history of a request."""
    history = service.get_state_history(request_id, actor)
    return JSONResponse(content={
        "success": True,
        "data": [StateHistoryOut.model_validate(entry).model_dump(mode="json") for entry in history]
    })


@router.get("/{request_id}/capabilities")
def get_capabilities(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service)
):
    """Get the actions the actor may currently take on a request."""
    capabilities = service.get_capabilities(request_id, actor)
    out = CapabilitiesOut(
        request_id=request_id,
        capabilities=sorted(capability.value for capability in capabilities)
    )
    return JSONResponse(content={"success": True, "data": out.model_dump()})


@router.post("/{request_id}/accept")
def accept_request(
    request_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service),
    session_factory: sessionmaker = Depends(get_session_factory)
):
    """Accept a request as its target, or claim an open giveaway."""
    request = service.accept_request(request_id, actor)
    _schedule_dispatch(background_tasks, session_factory)
    return _request_response(service, request)


@router.post("/{request_id}/approve")
def approve_request(
    request_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[ApproveRequestBody] = Body(None),
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service),
    session_factory: sessionmaker = Depends(get_session_factory)
):
    """Approve a request and commit the shift swap."""
    approver_id = body.approved_by if body else None
    request = service.approve_request(request_id, actor, approver_id=approver_id)
    _schedule_dispatch(background_tasks, session_factory)
    return _request_response(service, request)


@router.post("/{request_id}/reject")
def reject_request(
    request_id: str,
    background_tasks: BackgroundTasks,
    body: Optional[RejectRequestBody] = Body(None),
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service),
    session_factory: sessionmaker = Depends(get_session_factory)
):
    """Reject a request with a reason."""
    rejection_reason = body.rejection_reason if body else None
    request = service.reject_request(request_id, actor, rejection_reason)
    _schedule_dispatch(background_tasks, session_factory)
    return _request_response(service, request)


@router.post("/{request_id}/cancel")
def cancel_request(
    request_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service),
    session_factory: sessionmaker = Depends(get_session_factory)
):
    """Cancel the actor's own request."""
    request = service.cancel_request(request_id, actor)
    _schedule_dispatch(background_tasks, session_factory)
    return _request_response(service, request)


@router.post("/{request_id}/complete")
def complete_request(
    request_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service),
    session_factory: sessionmaker = Depends(get_session_factory)
):
    """Mark an approved request as completed."""
    request = service.complete_request(request_id, actor)
    _schedule_dispatch(background_tasks, session_factory)
    return _request_response(service, request)


@router.delete("/{request_id}")
def delete_request(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    service: RescheduleService = Depends(get_reschedule_service)
):
    """Delete a terminal request."""
    service.delete_request(request_id, actor)
    return JSONResponse(content={"success": True, "data": {"id": request_id}})

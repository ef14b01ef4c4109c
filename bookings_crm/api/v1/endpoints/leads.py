from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError

from bookings_crm.api.deps import (
    get_audit_repo,
    get_current_actor,
    get_filter_planner,
    get_lead_intake_service,
    get_lead_repo,
    get_lead_transition_service,
    get_outbox_repo,
    get_user_repo,
)
from bookings_crm.core.config import settings
from bookings_crm.core.exceptions import (
    LeadNotFoundError,
    LeadPermissionError,
    LeadValidationError,
    UserNotFoundError,
)
from bookings_crm.core.rate_limit import limiter
from bookings_crm.repositories.audit_repository import AuditRepository
from bookings_crm.repositories.lead_repository import LeadRepository
from bookings_crm.repositories.outbox_repository import OutboxRepository
from bookings_crm.repositories.user_repository import UserRepository
from bookings_crm.schemas.common import LeadStatus
from bookings_crm.schemas.filters import DateRange, FilterRequest
from bookings_crm.schemas.lead import (
    Actor,
    AssignRequest,
    CallStatusRequest,
    LeadChange,
    LeadCreateRequest,
    LeadCreateResponse,
    LeadDeleteResponse,
    LeadListResponse,
    LeadOut,
    LeadTagsResponse,
    QuickStatusRequest,
    RejectRequest,
    StatusUpdateRequest,
    TagRequest,
    TagsReplaceRequest,
    TransitionResponse,
)
from bookings_crm.services.filter_planner import FilterPlanner, visible_to
from bookings_crm.services.lead_intake_service import LeadIntakeService
from bookings_crm.services.lead_transition_service import LeadTransitionService

router = APIRouter(prefix="/leads", tags=["Leads"])


@router.post(
    "",
    response_model=LeadCreateResponse,
    status_code=201,
)
@limiter.limit("10/minute")
async def create_lead(
    request: Request,
    request_body: LeadCreateRequest,
    actor: Actor = Depends(get_current_actor),
    service: LeadIntakeService = Depends(get_lead_intake_service),
    lead_repo: LeadRepository = Depends(get_lead_repo),
    audit_repo: AuditRepository = Depends(get_audit_repo),
    outbox_repo: OutboxRepository = Depends(get_outbox_repo),
) -> LeadCreateResponse:
    """Create a lead by hand.

    Rate-limited to 10 requests/minute per IP.  A submission repeated
    within a few seconds returns ``is_duplicate`` instead of a second
    lead; a booking for a lead that already exists is merged into it.
    """
    result = await service.create_lead(
        request=request_body,
        actor=actor,
        lead_repo=lead_repo,
        audit_repo=audit_repo,
        outbox_repo=outbox_repo,
    )
    return LeadCreateResponse(**result)


@router.get("", response_model=LeadListResponse)
async def list_leads(
    status: str = Query("all"),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    search: Optional[str] = Query(None),
    booker_id: Optional[UUID] = Query(None),
    sort_by: str = Query("created_at"),
    descending: bool = Query(True),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=settings.MAX_PAGE_SIZE),
    actor: Actor = Depends(get_current_actor),
    planner: FilterPlanner = Depends(get_filter_planner),
) -> LeadListResponse:
    """List leads under a status/date filter.

    ``status`` accepts a primary status, a call-status value, ``Sales``,
    ``Ever Booked`` or ``all``.  The date range applies to the moment
    the lead entered that status.
    """
    try:
        date_range = None
        if date_from is not None or date_to is not None:
            date_range = DateRange(start=date_from, end=date_to)
        filter_request = FilterRequest(
            status=status,
            date_range=date_range,
            search=search,
            booker_id=booker_id,
            sort_by=sort_by,
            descending=descending,
        )
    except ValidationError as exc:
        raise LeadValidationError(exc.errors()[0]["msg"])

    plan = planner.plan(filter_request, actor)
    result = await planner.execute(plan, page, page_size)
    return LeadListResponse(
        items=[LeadOut.model_validate(lead) for lead in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


@router.get("/{lead_id}", response_model=LeadOut)
async def get_lead(
    lead_id: UUID,
    actor: Actor = Depends(get_current_actor),
    lead_repo: LeadRepository = Depends(get_lead_repo),
) -> LeadOut:
    lead = await lead_repo.get_by_id(lead_id)
    if not lead or not visible_to(lead, actor):
        raise LeadNotFoundError("Lead not found")
    return LeadOut.model_validate(lead)


@router.patch("/{lead_id}/status", response_model=TransitionResponse)
async def update_status(
    lead_id: UUID,
    request_body: StatusUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    service: LeadTransitionService = Depends(get_lead_transition_service),
    lead_repo: LeadRepository = Depends(get_lead_repo),
    audit_repo: AuditRepository = Depends(get_audit_repo),
    outbox_repo: OutboxRepository = Depends(get_outbox_repo),
) -> TransitionResponse:
    """Change a lead's status, booking or sub-status.

    Business logic is delegated to :class:`LeadTransitionService`.
    """
    result = await service.apply_change(
        lead_id, request_body.to_change(), actor, lead_repo, audit_repo, outbox_repo
    )
    return TransitionResponse(**result)


@router.post("/{lead_id}/quick-status", response_model=TransitionResponse)
async def quick_status(
    lead_id: UUID,
    request_body: QuickStatusRequest,
    actor: Actor = Depends(get_current_actor),
    service: LeadTransitionService = Depends(get_lead_transition_service),
    lead_repo: LeadRepository = Depends(get_lead_repo),
    audit_repo: AuditRepository = Depends(get_audit_repo),
    outbox_repo: OutboxRepository = Depends(get_outbox_repo),
) -> TransitionResponse:
    change = LeadChange(quick_status=request_body.button, reason=request_body.reason)
    result = await service.apply_change(
        lead_id, change, actor, lead_repo, audit_repo, outbox_repo
    )
    return TransitionResponse(**result)


@router.post("/{lead_id}/call-status", response_model=TransitionResponse)
async def call_status(
    lead_id: UUID,
    request_body: CallStatusRequest,
    actor: Actor = Depends(get_current_actor),
    service: LeadTransitionService = Depends(get_lead_transition_service),
    lead_repo: LeadRepository = Depends(get_lead_repo),
    audit_repo: AuditRepository = Depends(get_audit_repo),
    outbox_repo: OutboxRepository = Depends(get_outbox_repo),
) -> TransitionResponse:
    """Log a call outcome.

    Repeated "No answer" outcomes escalate; some outcomes queue an email,
    a close-out message or a callback reminder.
    """
    change = LeadChange(**request_body.model_dump())
    result = await service.apply_change(
        lead_id, change, actor, lead_repo, audit_repo, outbox_repo
    )
    return TransitionResponse(**result)


@router.post("/{lead_id}/reject", response_model=TransitionResponse)
async def reject_lead(
    lead_id: UUID,
    request_body: RejectRequest,
    actor: Actor = Depends(get_current_actor),
    service: LeadTransitionService = Depends(get_lead_transition_service),
    lead_repo: LeadRepository = Depends(get_lead_repo),
    audit_repo: AuditRepository = Depends(get_audit_repo),
    outbox_repo: OutboxRepository = Depends(get_outbox_repo),
) -> TransitionResponse:
    change = LeadChange(status=LeadStatus.REJECTED, reason=request_body.reason)
    result = await service.apply_change(
        lead_id, change, actor, lead_repo, audit_repo, outbox_repo
    )
    return TransitionResponse(**result)


@router.post("/{lead_id}/assign", response_model=TransitionResponse)
async def assign_lead(
    lead_id: UUID,
    request_body: AssignRequest,
    actor: Actor = Depends(get_current_actor),
    service: LeadTransitionService = Depends(get_lead_transition_service),
    lead_repo: LeadRepository = Depends(get_lead_repo),
    audit_repo: AuditRepository = Depends(get_audit_repo),
    outbox_repo: OutboxRepository = Depends(get_outbox_repo),
    user_repo: UserRepository = Depends(get_user_repo),
) -> TransitionResponse:
    if not await user_repo.get_by_id(request_body.booker_id):
        raise UserNotFoundError(f"User {request_body.booker_id} not found")
    change = LeadChange(booker_id=request_body.booker_id)
    result = await service.apply_change(
        lead_id, change, actor, lead_repo, audit_repo, outbox_repo
    )
    return TransitionResponse(**result)


@router.get("/{lead_id}/tags", response_model=LeadTagsResponse)
async def get_tags(
    lead_id: UUID,
    actor: Actor = Depends(get_current_actor),
    lead_repo: LeadRepository = Depends(get_lead_repo),
) -> LeadTagsResponse:
    lead = await lead_repo.get_by_id(lead_id)
    if not lead or not visible_to(lead, actor):
        raise LeadNotFoundError("Lead not found")
    return LeadTagsResponse(lead_id=lead_id, tags=lead.tags or [])


@router.put("/{lead_id}/tags", response_model=TransitionResponse)
async def replace_tags(
    lead_id: UUID,
    request_body: TagsReplaceRequest,
    actor: Actor = Depends(get_current_actor),
    service: LeadTransitionService = Depends(get_lead_transition_service),
    lead_repo: LeadRepository = Depends(get_lead_repo),
    audit_repo: AuditRepository = Depends(get_audit_repo),
    outbox_repo: OutboxRepository = Depends(get_outbox_repo),
) -> TransitionResponse:
    change = LeadChange(tags=request_body.tags)
    result = await service.apply_change(
        lead_id, change, actor, lead_repo, audit_repo, outbox_repo
    )
    return TransitionResponse(**result)


@router.post("/{lead_id}/tags", response_model=TransitionResponse)
async def add_tag(
    lead_id: UUID,
    request_body: TagRequest,
    actor: Actor = Depends(get_current_actor),
    service: LeadTransitionService = Depends(get_lead_transition_service),
    lead_repo: LeadRepository = Depends(get_lead_repo),
    audit_repo: AuditRepository = Depends(get_audit_repo),
    outbox_repo: OutboxRepository = Depends(get_outbox_repo),
) -> TransitionResponse:
    change = LeadChange(add_tags=[request_body.tag])
    result = await service.apply_change(
        lead_id, change, actor, lead_repo, audit_repo, outbox_repo
    )
    return TransitionResponse(**result)


@router.delete("/{lead_id}/tags/{tag}", response_model=TransitionResponse)
async def remove_tag(
    lead_id: UUID,
    tag: str,
    actor: Actor = Depends(get_current_actor),
    service: LeadTransitionService = Depends(get_lead_transition_service),
    lead_repo: LeadRepository = Depends(get_lead_repo),
    audit_repo: AuditRepository = Depends(get_audit_repo),
    outbox_repo: OutboxRepository = Depends(get_outbox_repo),
) -> TransitionResponse:
    change = LeadChange(remove_tags=[tag])
    result = await service.apply_change(
        lead_id, change, actor, lead_repo, audit_repo, outbox_repo
    )
    return TransitionResponse(**result)


@router.delete("/{lead_id}", response_model=LeadDeleteResponse)
async def delete_lead(
    lead_id: UUID,
    actor: Actor = Depends(get_current_actor),
    lead_repo: LeadRepository = Depends(get_lead_repo),
) -> LeadDeleteResponse:
    """Delete a lead with its history, messages and reminders (admin only)."""
    if not actor.is_admin:
        raise LeadPermissionError("Only admins can delete leads")
    if not await lead_repo.delete(lead_id):
        raise LeadNotFoundError("Lead not found")
    await lead_repo.commit()
    return LeadDeleteResponse(lead_id=lead_id)

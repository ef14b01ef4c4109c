from uuid import UUID

from fastapi import APIRouter, Depends

from bookings_crm.api.deps import (
    get_audit_repo,
    get_current_actor,
    get_lead_repo,
    get_message_repo,
)
from bookings_crm.core.exceptions import LeadNotFoundError
from bookings_crm.repositories.audit_repository import AuditRepository
from bookings_crm.repositories.lead_repository import LeadRepository
from bookings_crm.repositories.message_repository import MessageRepository
from bookings_crm.schemas.audit import AuditEntryOut, LeadHistoryResponse
from bookings_crm.schemas.lead import Actor
from bookings_crm.services.audit_log import AuditLog, merge_messages
from bookings_crm.services.filter_planner import visible_to

router = APIRouter(prefix="/leads", tags=["History"])


async def _visible_lead(lead_id: UUID, actor: Actor, lead_repo: LeadRepository):
    lead = await lead_repo.get_by_id(lead_id)
    if not lead or not visible_to(lead, actor):
        raise LeadNotFoundError("Lead not found")
    return lead


@router.get("/{lead_id}/history", response_model=LeadHistoryResponse)
async def get_history(
    lead_id: UUID,
    actor: Actor = Depends(get_current_actor),
    lead_repo: LeadRepository = Depends(get_lead_repo),
    audit_repo: AuditRepository = Depends(get_audit_repo),
    message_repo: MessageRepository = Depends(get_message_repo),
) -> LeadHistoryResponse:
    """The lead's conversation: history entries merged with message
    records, newest first."""
    await _visible_lead(lead_id, actor, lead_repo)
    entries = merge_messages(
        await audit_repo.list_for_lead(lead_id),
        await message_repo.list_for_lead(lead_id),
    )
    log = AuditLog.from_entries(lead_id, entries)
    return LeadHistoryResponse(
        lead_id=lead_id,
        entries=[AuditEntryOut.from_entry(entry) for entry in entries],
        unread_count=log.unread_count(lead_id),
    )


@router.post("/{lead_id}/history/read", response_model=LeadHistoryResponse)
async def mark_history_read(
    lead_id: UUID,
    actor: Actor = Depends(get_current_actor),
    lead_repo: LeadRepository = Depends(get_lead_repo),
    audit_repo: AuditRepository = Depends(get_audit_repo),
    message_repo: MessageRepository = Depends(get_message_repo),
) -> LeadHistoryResponse:
    await _visible_lead(lead_id, actor, lead_repo)
    await audit_repo.mark_received_as_read(lead_id)
    await audit_repo.commit()
    return await get_history(lead_id, actor, lead_repo, audit_repo, message_repo)

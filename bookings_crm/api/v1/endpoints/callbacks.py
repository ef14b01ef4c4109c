from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from bookings_crm.api.deps import get_callback_repo, get_current_actor
from bookings_crm.repositories.callback_repository import CallbackRepository
from bookings_crm.schemas.lead import Actor, CallbackReminderOut

router = APIRouter(prefix="/callbacks", tags=["Callbacks"])


@router.get("/upcoming", response_model=List[CallbackReminderOut])
async def list_upcoming_callbacks(
    hours: Optional[int] = Query(None, ge=1, le=24 * 14),
    actor: Actor = Depends(get_current_actor),
    callback_repo: CallbackRepository = Depends(get_callback_repo),
) -> List[CallbackReminderOut]:
    """Pending callback reminders, soonest first.

    Admins see every user's reminders; everyone else sees their own.
    """
    until = None
    if hours is not None:
        until = datetime.now(timezone.utc) + timedelta(hours=hours)
    user_id: Optional[UUID] = None if actor.is_admin else actor.id
    reminders = await callback_repo.list_upcoming(user_id, until)
    return [CallbackReminderOut.model_validate(r) for r in reminders]

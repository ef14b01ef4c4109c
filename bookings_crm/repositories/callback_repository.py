from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy import select, update

from bookings_crm.models.callback_reminder import CallbackReminder
from bookings_crm.repositories.base import BaseRepository
from bookings_crm.schemas.common import ReminderStatus


class CallbackRepository(BaseRepository):
    """Encapsulates queries against the ``callback_reminders`` table."""

    async def create(self, **kwargs: Any) -> CallbackReminder:
        reminder = CallbackReminder(**kwargs)
        self._db.add(reminder)
        return reminder

    async def cancel_pending_for_lead(self, lead_id: UUID, user_id: UUID) -> int:
        """Cancel a user's outstanding reminders for a lead before a new
        one is scheduled, so each user holds at most one per lead."""
        result = await self._execute(
            update(CallbackReminder)
            .where(
                CallbackReminder.lead_id == lead_id,
                CallbackReminder.user_id == user_id,
                CallbackReminder.status == ReminderStatus.PENDING.value,
            )
            .values(status=ReminderStatus.CANCELLED.value)
        )
        return result.rowcount

    async def list_upcoming(
        self, user_id: Optional[UUID], until: Optional[datetime] = None
    ) -> List[CallbackReminder]:
        """Return pending reminders, soonest first; all users when
        *user_id* is ``None``."""
        query = select(CallbackReminder).where(
            CallbackReminder.status == ReminderStatus.PENDING.value
        )
        if user_id is not None:
            query = query.where(CallbackReminder.user_id == user_id)
        if until is not None:
            query = query.where(CallbackReminder.callback_time <= until)
        result = await self._execute(query.order_by(CallbackReminder.callback_time.asc()))
        return list(result.scalars().all())

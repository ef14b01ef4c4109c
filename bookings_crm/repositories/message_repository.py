from typing import Any, List
from uuid import UUID

from sqlalchemy import select

from bookings_crm.models.message import Message
from bookings_crm.repositories.base import BaseRepository


class MessageRepository(BaseRepository):
    """Encapsulates queries against the ``messages`` table."""

    async def create(self, **kwargs: Any) -> Message:
        """Insert a new message record."""
        message = Message(**kwargs)
        self._db.add(message)
        return message

    async def list_for_lead(self, lead_id: UUID) -> List[Message]:
        """Return a lead's messages, oldest first."""
        result = await self._execute(
            select(Message)
            .where(Message.lead_id == lead_id)
            .order_by(Message.created_at.asc())
        )
        return list(result.scalars().all())

from typing import Optional
from uuid import UUID

from sqlalchemy import select, update

from bookings_crm.models.user import User
from bookings_crm.repositories.base import BaseRepository


class UserRepository(BaseRepository):
    """Encapsulates queries against the ``users`` table."""

    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        result = await self._execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def increment_counter(self, user_id: UUID, column: str) -> bool:
        """Atomically add one to ``bookings_made`` or ``show_ups``.

        Done as a single UPDATE so concurrent status changes cannot lose
        an increment.  Returns ``False`` if the user no longer exists.
        """
        counter = getattr(User, column)
        result = await self._execute(
            update(User).where(User.id == user_id).values({column: counter + 1})
        )
        return result.rowcount > 0

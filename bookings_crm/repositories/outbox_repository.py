from datetime import datetime, timezone
from typing import List
from uuid import UUID

from sqlalchemy import select

from bookings_crm.models.outbox import SideEffectOutbox
from bookings_crm.repositories.base import BaseRepository
from bookings_crm.schemas.common import OutboxStatus
from bookings_crm.services.status_transition import SideEffect


class OutboxRepository(BaseRepository):
    """Encapsulates queries against the ``side_effect_outbox`` table."""

    async def enqueue(self, lead_id: UUID, effect: SideEffect) -> SideEffectOutbox:
        """Stage a side-effect intent in the current transaction."""
        row = SideEffectOutbox(
            lead_id=lead_id,
            kind=effect.kind.value,
            channel=effect.channel.value if effect.channel else None,
            payload=effect.payload,
            status=OutboxStatus.PENDING.value,
            attempts=0,
            next_attempt_at=datetime.now(timezone.utc),
        )
        self._db.add(row)
        return row

    async def claim_due(self, limit: int) -> List[SideEffectOutbox]:
        """Lock and return pending rows whose next attempt is due.

        ``SKIP LOCKED`` lets several workers drain the table without
        dispatching the same row twice.
        """
        result = await self._execute(
            select(SideEffectOutbox)
            .where(
                SideEffectOutbox.status == OutboxStatus.PENDING.value,
                SideEffectOutbox.next_attempt_at <= datetime.now(timezone.utc),
            )
            .order_by(SideEffectOutbox.next_attempt_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def mark_done(self, row: SideEffectOutbox) -> None:
        row.status = OutboxStatus.DONE.value
        row.attempts = (row.attempts or 0) + 1
        row.last_error = None

    async def mark_failed(
        self, row: SideEffectOutbox, error: str, retry_at: datetime, give_up: bool
    ) -> None:
        row.attempts = (row.attempts or 0) + 1
        row.last_error = error[:2000]
        if give_up:
            row.status = OutboxStatus.FAILED.value
        else:
            row.next_attempt_at = retry_at

from collections import defaultdict
from typing import Dict, Iterable, List, Sequence
from uuid import UUID

from sqlalchemy import func, select, update

from bookings_crm.models.audit_entry import LeadAuditEntry
from bookings_crm.repositories.base import BaseRepository
from bookings_crm.schemas.audit import AuditEntry
from bookings_crm.schemas.common import AuditAction

_INBOUND_ACTIONS = (AuditAction.SMS_RECEIVED.value, AuditAction.EMAIL_RECEIVED.value)


class AuditRepository(BaseRepository):
    """Encapsulates queries against the ``lead_audit_entries`` table.

    Rows are only ever inserted; the single in-place update is the
    ``read`` flag on inbound message entries.
    """

    async def append(self, entries: Iterable[AuditEntry]) -> List[LeadAuditEntry]:
        """Insert *entries*; ``sequence`` is assigned by the database."""
        rows = []
        for entry in entries:
            row = LeadAuditEntry(
                lead_id=entry.lead_id,
                action=entry.action.value,
                timestamp=entry.timestamp,
                performed_by=entry.performed_by,
                performed_by_name=entry.performed_by_name,
                details=entry.details.model_dump(mode="json"),
                lead_snapshot=entry.lead_snapshot.model_dump(mode="json"),
            )
            self._db.add(row)
            rows.append(row)
        return rows

    async def list_for_lead(self, lead_id: UUID) -> List[AuditEntry]:
        """Return a lead's history oldest first (replay order)."""
        result = await self._execute(
            select(LeadAuditEntry)
            .where(LeadAuditEntry.lead_id == lead_id)
            .order_by(LeadAuditEntry.timestamp.asc(), LeadAuditEntry.sequence.asc())
        )
        return [AuditEntry.from_record(row) for row in result.scalars().all()]

    async def list_for_leads(
        self, lead_ids: Sequence[UUID]
    ) -> Dict[UUID, List[AuditEntry]]:
        """Return the histories of several leads, each oldest first."""
        histories: Dict[UUID, List[AuditEntry]] = defaultdict(list)
        if not lead_ids:
            return histories
        result = await self._execute(
            select(LeadAuditEntry)
            .where(LeadAuditEntry.lead_id.in_(list(lead_ids)))
            .order_by(
                LeadAuditEntry.lead_id,
                LeadAuditEntry.timestamp.asc(),
                LeadAuditEntry.sequence.asc(),
            )
        )
        for row in result.scalars().all():
            histories[row.lead_id].append(AuditEntry.from_record(row))
        return histories

    async def mark_received_as_read(self, lead_id: UUID) -> int:
        """Set ``details.read`` on every unread inbound message entry."""
        unread = func.coalesce(
            LeadAuditEntry.details["read"].as_boolean(), False
        ).is_(False)
        result = await self._execute(
            update(LeadAuditEntry)
            .where(
                LeadAuditEntry.lead_id == lead_id,
                LeadAuditEntry.action.in_(_INBOUND_ACTIONS),
                unread,
            )
            .values(
                details=LeadAuditEntry.details.op("||")(
                    func.jsonb_build_object("read", True)
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

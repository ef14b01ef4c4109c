from typing import Any, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, func, or_, select

from bookings_crm.core.constants import SEARCH_COLUMNS
from bookings_crm.models.lead import Lead
from bookings_crm.repositories.base import BaseRepository
from bookings_crm.schemas.filters import StoragePredicate
from bookings_crm.schemas.lead import MUTABLE_LEAD_FIELDS, LeadState

# Columns a storage predicate may range-filter or a page may be sorted on
_DATE_COLUMNS = {
    "created_at": Lead.created_at,
    "assigned_at": Lead.assigned_at,
    "booked_at": Lead.booked_at,
    "date_booked": Lead.date_booked,
    "updated_at": Lead.updated_at,
}
_SORT_COLUMNS = {**_DATE_COLUMNS, "name": Lead.name}


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so user input matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _conditions(predicate: StoragePredicate) -> List[Any]:
    conditions: List[Any] = []
    if predicate.statuses is not None:
        conditions.append(Lead.status.in_([s.value for s in predicate.statuses]))
    if predicate.exclude_statuses:
        conditions.append(Lead.status.notin_([s.value for s in predicate.exclude_statuses]))
    if predicate.booker_id is not None:
        conditions.append(Lead.booker_id == predicate.booker_id)
    if predicate.call_status_is_null:
        conditions.append(Lead.call_status.is_(None))
    if predicate.ever_booked is not None:
        conditions.append(Lead.ever_booked.is_(predicate.ever_booked))
    if predicate.search:
        pattern = f"%{escape_like(predicate.search)}%"
        conditions.append(
            or_(
                *(
                    getattr(Lead, column).ilike(pattern, escape="\\")
                    for column in SEARCH_COLUMNS
                )
            )
        )
    if predicate.date_column and predicate.date_range is not None:
        column = _DATE_COLUMNS[predicate.date_column]
        if predicate.date_range.start is not None:
            conditions.append(column >= predicate.date_range.start)
        if predicate.date_range.end is not None:
            conditions.append(column <= predicate.date_range.end)
    return conditions


class LeadRepository(BaseRepository):
    """Encapsulates every SQL query that touches the ``leads`` table."""

    async def get_by_id(self, lead_id: UUID, refresh: bool = False) -> Optional[Lead]:
        """Return a single lead by primary key, or ``None``.

        ``refresh`` reloads the row even if the session already holds it,
        which the optimistic retry loop needs after a stale write.
        """
        query = select(Lead).where(Lead.id == lead_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self._execute(query)
        return result.scalar_one_or_none()

    async def find_identity_matches(
        self,
        phone_digits: Optional[str],
        email: Optional[str],
    ) -> List[Lead]:
        """Return leads sharing the phone digits or the email address.

        Narrows the candidate set for the duplicate resolver, which makes
        the final decision.
        """
        conditions = []
        if phone_digits:
            conditions.append(
                func.regexp_replace(Lead.phone, "[^0-9]", "", "g") == phone_digits
            )
        if email:
            conditions.append(func.lower(func.trim(Lead.email)) == email)
        if not conditions:
            return []
        result = await self._execute(
            select(Lead).where(or_(*conditions)).order_by(Lead.created_at.asc())
        )
        return list(result.scalars().all())

    async def create(self, **kwargs: Any) -> Lead:
        """Insert a new lead and return the model instance."""
        lead = Lead(**kwargs)
        self._db.add(lead)
        return lead

    async def apply_state(self, lead: Lead, state: LeadState) -> None:
        """Copy the transition engine's output onto the ORM row."""
        for field in MUTABLE_LEAD_FIELDS:
            value = getattr(state, field)
            if hasattr(value, "value"):
                value = value.value
            setattr(lead, field, value)

    async def delete(self, lead_id: UUID) -> bool:
        """Hard-delete a lead; the database cascades to its history,
        messages, callbacks and outbox rows."""
        result = await self._execute(delete(Lead).where(Lead.id == lead_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Filter support (LeadStore protocol)
    # ------------------------------------------------------------------

    async def count(self, predicate: StoragePredicate) -> int:
        result = await self._execute(
            select(func.count()).select_from(Lead).where(*_conditions(predicate))
        )
        return result.scalar() or 0

    async def fetch_page(
        self,
        predicate: StoragePredicate,
        sort_by: str,
        descending: bool,
        offset: int,
        limit: int,
    ) -> Sequence[Lead]:
        column = _SORT_COLUMNS[sort_by]
        if descending:
            order = (column.desc().nulls_last(), Lead.id.desc())
        else:
            order = (column.asc().nulls_last(), Lead.id.asc())
        result = await self._execute(
            select(Lead)
            .where(*_conditions(predicate))
            .order_by(*order)
            .offset(offset)
            .limit(limit)
        )
        return result.scalars().all()

    async def fetch_batch(
        self, predicate: StoragePredicate, after_id: Optional[UUID], limit: int
    ) -> Sequence[Lead]:
        """Keyset-paginated batch for full scans, ordered by ``id``."""
        conditions = _conditions(predicate)
        if after_id is not None:
            conditions.append(Lead.id > after_id)
        result = await self._execute(
            select(Lead).where(*conditions).order_by(Lead.id.asc()).limit(limit)
        )
        return result.scalars().all()

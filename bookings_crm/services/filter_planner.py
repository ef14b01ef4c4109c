"""Hybrid lead filtering.

A status/date filter is split into a :class:`StoragePredicate` the store
evaluates and an optional in-memory predicate that needs the
materialised lead (and sometimes its audit history).  Plans with an
in-memory part are executed as a full scan: every storage match is
fetched in batches, filtered, counted, sorted and only then paginated.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from bookings_crm.core.config import settings
from bookings_crm.core.constants import ATTENDED_BOOKING_STATUSES
from bookings_crm.core.exceptions import LeadValidationError
from bookings_crm.core.retry import retry_store_call
from bookings_crm.schemas.audit import AuditEntry
from bookings_crm.schemas.common import (
    AuditAction,
    BookingStatus,
    CallStatus,
    LeadStatus,
    UserRole,
)
from bookings_crm.schemas.filters import (
    ALL_FILTER,
    EVER_BOOKED_FILTER,
    SALES_FILTER,
    DateRange,
    FilterPage,
    FilterRequest,
    StoragePredicate,
)
from bookings_crm.schemas.lead import Actor, LeadState
from bookings_crm.services.effective_status import (
    effective_status,
    has_progressed,
    is_awaiting_attendance,
)

logger = logging.getLogger(__name__)

MemoryPredicate = Callable[[LeadState, Sequence[AuditEntry]], bool]

# Filters whose membership is the effective status, dated by audit replay
_REPLAYED_STATUSES = frozenset(
    {LeadStatus.ATTENDED, LeadStatus.CANCELLED, LeadStatus.NO_SHOW, LeadStatus.REJECTED}
)


class LeadStore(Protocol):
    async def count(self, predicate: StoragePredicate) -> int: ...

    async def fetch_page(
        self,
        predicate: StoragePredicate,
        sort_by: str,
        descending: bool,
        offset: int,
        limit: int,
    ) -> List[Any]: ...

    async def fetch_batch(
        self, predicate: StoragePredicate, after_id: Optional[UUID], limit: int
    ) -> List[Any]: ...


class HistoryStore(Protocol):
    async def list_for_leads(
        self, lead_ids: Sequence[UUID]
    ) -> Dict[UUID, List[AuditEntry]]: ...


class FilterPlan(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    storage: StoragePredicate
    memory: Optional[MemoryPredicate] = None
    needs_history: bool = False
    sort_by: str = "created_at"
    descending: bool = True

    @property
    def requires_full_scan(self) -> bool:
        return self.memory is not None


# ---------------------------------------------------------------------------
# Audit replay
# ---------------------------------------------------------------------------


def entry_reaches(entry: AuditEntry, target: Any) -> bool:
    """True if *entry* records the lead entering *target*.

    *target* is a primary status or a call-status value.
    """
    action = entry.action
    details = entry.details
    if isinstance(target, CallStatus):
        return action == AuditAction.CALL_STATUS_UPDATE and details.call_status == target

    if action in (AuditAction.STATUS_CHANGE, AuditAction.QUICK_STATUS_UPDATE):
        return details.new_status == target
    if target == LeadStatus.CANCELLED:
        if action == AuditAction.CANCELLATION:
            return True
        return (
            action == AuditAction.BOOKING_STATUS_UPDATE
            and details.booking_status == BookingStatus.CANCEL
        )
    if target == LeadStatus.ATTENDED:
        return (
            action == AuditAction.BOOKING_STATUS_UPDATE
            and details.booking_status in ATTENDED_BOOKING_STATUSES
        )
    if target == LeadStatus.REJECTED:
        return action == AuditAction.LEAD_REJECTED
    return False


def reached_within(history: Sequence[AuditEntry], target: Any, date_range: DateRange) -> bool:
    return any(
        entry_reaches(entry, target) and date_range.contains(entry.timestamp)
        for entry in history
    )


def booking_moment(lead: LeadState) -> Optional[datetime]:
    """When the booking action happened.

    Legacy rows have no ``booked_at``; ``assigned_at`` stands in for them.
    """
    return lead.booked_at or lead.assigned_at


def visible_to(lead: Any, actor: Actor) -> bool:
    """Point-read counterpart of the list scoping applied in :meth:`FilterPlanner.plan`."""
    status = LeadStatus(lead.status)
    if actor.role in (UserRole.BOOKER, UserRole.VIEWER):
        return lead.booker_id == actor.id and status != LeadStatus.REJECTED
    if actor.role == UserRole.PHOTOGRAPHER:
        return status in (LeadStatus.BOOKED, LeadStatus.ATTENDED)
    return True


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


def sort_leads(leads: List[LeadState], sort_by: str, descending: bool) -> List[LeadState]:
    """Sort by *sort_by* with nulls last, ``id`` breaking ties."""
    ordered = sorted(leads, key=lambda lead: str(lead.id), reverse=descending)
    present = [lead for lead in ordered if getattr(lead, sort_by) is not None]
    missing = [lead for lead in ordered if getattr(lead, sort_by) is None]
    # list.sort is stable, also with reverse=True, so the id order survives
    present.sort(key=lambda lead: getattr(lead, sort_by), reverse=descending)
    return present + missing


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------


class FilterPlanner:
    """Plans and executes lead list queries."""

    def __init__(
        self,
        store: LeadStore,
        history_store: Optional[HistoryStore] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        self._store = store
        self._history_store = history_store
        self._batch_size = batch_size or settings.FULL_SCAN_BATCH_SIZE

    def plan(self, request: FilterRequest, actor: Actor) -> FilterPlan:
        storage = StoragePredicate(search=request.search)
        self._scope_to_actor(storage, actor)
        if request.booker_id is not None:
            if storage.booker_id is not None and storage.booker_id != request.booker_id:
                storage.statuses = []
            else:
                storage.booker_id = request.booker_id

        date_range = request.date_range
        if date_range is not None and date_range.is_open:
            date_range = None

        memory: Optional[MemoryPredicate] = None
        needs_history = False
        status = request.status

        if status == ALL_FILTER:
            self._push_date(storage, "created_at", date_range)
        elif status == LeadStatus.NEW.value:
            self._restrict(storage, [LeadStatus.NEW])
            self._push_date(storage, "created_at", date_range)
        elif status == LeadStatus.ASSIGNED.value:
            self._restrict(storage, [LeadStatus.ASSIGNED])
            if actor.role != UserRole.ADMIN:
                # Bookers work Assigned leads until a call outcome is logged
                storage.call_status_is_null = True
            self._push_date(storage, "assigned_at", date_range)
        elif status == EVER_BOOKED_FILTER:
            storage.ever_booked = True
            self._push_date(storage, "booked_at", date_range)
        elif status == LeadStatus.BOOKED.value:
            memory = self._booked_predicate(date_range)
        elif status == SALES_FILTER:
            memory = self._sales_predicate(date_range)
        elif status in {s.value for s in _REPLAYED_STATUSES}:
            memory = self._status_predicate(LeadStatus(status), date_range)
            needs_history = date_range is not None
        else:
            memory = self._call_status_predicate(CallStatus(status), date_range)
            needs_history = date_range is not None

        return FilterPlan(
            storage=storage,
            memory=memory,
            needs_history=needs_history,
            sort_by=request.sort_by,
            descending=request.descending,
        )

    async def execute(self, plan: FilterPlan, page: int = 1, page_size: int = 50) -> FilterPage:
        if page < 1 or page_size < 1:
            raise LeadValidationError("page and page_size must be positive")
        offset = (page - 1) * page_size

        if plan.storage.matches_nothing:
            return FilterPage(items=[], total=0, page=page, page_size=page_size)

        if not plan.requires_full_scan:
            total = await retry_store_call(
                lambda: self._store.count(plan.storage), description="Lead count"
            )
            rows = await retry_store_call(
                lambda: self._store.fetch_page(
                    plan.storage, plan.sort_by, plan.descending, offset, page_size
                ),
                description="Lead page query",
            )
            items = [LeadState.model_validate(row) for row in rows]
            return FilterPage(items=items, total=total, page=page, page_size=page_size)

        candidates = await self._full_scan(plan.storage)
        histories: Dict[UUID, List[AuditEntry]] = {}
        if plan.needs_history:
            histories = await self._load_histories([lead.id for lead in candidates])

        matched = [
            lead for lead in candidates if plan.memory(lead, histories.get(lead.id, []))
        ]
        ordered = sort_leads(matched, plan.sort_by, plan.descending)
        logger.debug(
            "Full scan matched %d of %d candidate lead(s)", len(matched), len(candidates)
        )
        return FilterPage(
            items=ordered[offset : offset + page_size],
            total=len(matched),
            page=page,
            page_size=page_size,
        )

    # ------------------------------------------------------------------
    # Full scan
    # ------------------------------------------------------------------

    async def _full_scan(self, predicate: StoragePredicate) -> List[LeadState]:
        """Fetch every storage match, batch by batch, until a short batch."""
        leads: List[LeadState] = []
        after_id: Optional[UUID] = None
        batches = 0
        while True:
            batch = await retry_store_call(
                lambda: self._store.fetch_batch(predicate, after_id, self._batch_size),
                description="Lead full-scan batch",
            )
            batches += 1
            leads.extend(LeadState.model_validate(row) for row in batch)
            if len(batch) < self._batch_size:
                break
            after_id = batch[-1].id
        logger.info("Full scan fetched %d lead(s) in %d batch(es)", len(leads), batches)
        return leads

    async def _load_histories(
        self, lead_ids: List[UUID]
    ) -> Dict[UUID, List[AuditEntry]]:
        if self._history_store is None:
            raise LeadValidationError("This filter needs booking history, which is not available")
        histories: Dict[UUID, List[AuditEntry]] = {}
        for start in range(0, len(lead_ids), self._batch_size):
            chunk = lead_ids[start : start + self._batch_size]
            loaded = await retry_store_call(
                lambda: self._history_store.list_for_leads(chunk),
                description="Booking history batch",
            )
            histories.update(loaded)
        return histories

    # ------------------------------------------------------------------
    # Storage-side helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _scope_to_actor(storage: StoragePredicate, actor: Actor) -> None:
        if actor.role in (UserRole.BOOKER, UserRole.VIEWER):
            storage.booker_id = actor.id
            storage.exclude_statuses = [LeadStatus.REJECTED]
        elif actor.role == UserRole.PHOTOGRAPHER:
            storage.statuses = [LeadStatus.BOOKED, LeadStatus.ATTENDED]

    @staticmethod
    def _restrict(storage: StoragePredicate, statuses: List[LeadStatus]) -> None:
        if storage.statuses is None:
            storage.statuses = list(statuses)
        else:
            storage.statuses = [s for s in storage.statuses if s in statuses]

    @staticmethod
    def _push_date(
        storage: StoragePredicate, column: str, date_range: Optional[DateRange]
    ) -> None:
        if date_range is not None:
            storage.date_column = column
            storage.date_range = date_range

    # ------------------------------------------------------------------
    # In-memory predicates
    # ------------------------------------------------------------------

    @staticmethod
    def _booked_predicate(date_range: Optional[DateRange]) -> MemoryPredicate:
        def predicate(lead: LeadState, history: Sequence[AuditEntry]) -> bool:
            if not is_awaiting_attendance(lead):
                return False
            return date_range is None or date_range.contains(booking_moment(lead))

        return predicate

    @staticmethod
    def _sales_predicate(date_range: Optional[DateRange]) -> MemoryPredicate:
        def predicate(lead: LeadState, history: Sequence[AuditEntry]) -> bool:
            if lead.has_sale <= 0 or lead.booker_id is None:
                return False
            return date_range is None or date_range.contains(booking_moment(lead))

        return predicate

    @staticmethod
    def _status_predicate(
        target: LeadStatus, date_range: Optional[DateRange]
    ) -> MemoryPredicate:
        def predicate(lead: LeadState, history: Sequence[AuditEntry]) -> bool:
            if effective_status(lead) != target:
                return False
            return date_range is None or reached_within(history, target, date_range)

        return predicate

    @staticmethod
    def _call_status_predicate(
        target: CallStatus, date_range: Optional[DateRange]
    ) -> MemoryPredicate:
        def predicate(lead: LeadState, history: Sequence[AuditEntry]) -> bool:
            if lead.call_status != target or has_progressed(lead):
                return False
            return date_range is None or reached_within(history, target, date_range)

        return predicate

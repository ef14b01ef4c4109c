"""Filter request / page schemas for the lead list."""

from datetime import datetime, timezone
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator
from typing_extensions import Self

from bookings_crm.schemas.common import CallStatus, LeadStatus
from bookings_crm.schemas.lead import LeadState

ALL_FILTER = "all"
SALES_FILTER = "Sales"
EVER_BOOKED_FILTER = "Ever Booked"

STATUS_FILTERS = frozenset(
    [ALL_FILTER, SALES_FILTER, EVER_BOOKED_FILTER]
    + [s.value for s in LeadStatus]
    + [c.value for c in CallStatus]
)

SortField = Literal[
    "created_at", "updated_at", "assigned_at", "booked_at", "date_booked", "name"
]


class DateRange(BaseModel):
    """Inclusive instant range; either bound may be open."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Date pickers send naive values; stored instants are UTC-aware
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def validate_order(self) -> Self:
        if self.start and self.end and self.start > self.end:
            raise ValueError("date range start must not be after its end")
        return self

    @property
    def is_open(self) -> bool:
        return self.start is None and self.end is None

    def contains(self, instant: Optional[datetime]) -> bool:
        if instant is None:
            return False
        if self.start is not None and instant < self.start:
            return False
        if self.end is not None and instant > self.end:
            return False
        return True


class FilterRequest(BaseModel):
    """Status/date filter for the lead list.

    ``status`` is a primary status, a call-status value, ``"Sales"``,
    ``"Ever Booked"`` or ``"all"``.
    """

    status: str = ALL_FILTER
    date_range: Optional[DateRange] = None
    search: Optional[str] = Field(None, max_length=200)
    booker_id: Optional[UUID] = None
    sort_by: SortField = "created_at"
    descending: bool = True

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        if value not in STATUS_FILTERS:
            raise ValueError(f"Unknown status filter: {value}")
        return value

    @field_validator("search")
    @classmethod
    def strip_search(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class FilterPage(BaseModel):
    items: List[LeadState]
    total: int
    page: int
    page_size: int


class StoragePredicate(BaseModel):
    """The part of a filter the store can evaluate itself.

    ``statuses`` set to an empty list matches nothing.
    """

    statuses: Optional[List[LeadStatus]] = None
    exclude_statuses: List[LeadStatus] = Field(default_factory=list)
    booker_id: Optional[UUID] = None
    call_status_is_null: bool = False
    ever_booked: Optional[bool] = None
    search: Optional[str] = None
    date_column: Optional[str] = None
    date_range: Optional[DateRange] = None

    @property
    def matches_nothing(self) -> bool:
        return self.statuses is not None and not self.statuses

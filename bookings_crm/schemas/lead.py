"""Lead-specific Pydantic schemas (state, change requests, responses)."""

from datetime import datetime
from typing import Iterable, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from bookings_crm.schemas.common import (
    BookingStatus,
    CallStatus,
    LeadStatus,
    QuickStatusButton,
    ReminderStatus,
    SuccessResponse,
    UserRole,
)


MAX_TAG_LENGTH = 50


def clean_tags(tags: Iterable[str]) -> List[str]:
    """Strip each tag and drop blanks and repeats, keeping first-seen order."""
    cleaned: List[str] = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


# ---------------------------------------------------------------------------
# Domain state
# ---------------------------------------------------------------------------


class LeadState(BaseModel):
    """Plain snapshot of a lead row that the pure services operate on."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    postcode: Optional[str] = None
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    status: LeadStatus = LeadStatus.NEW
    booking_status: Optional[BookingStatus] = None
    call_status: Optional[CallStatus] = None
    booker_id: Optional[UUID] = None

    date_booked: Optional[datetime] = None
    time_booked: Optional[str] = None
    booking_slot: Optional[int] = None
    is_confirmed: Optional[bool] = None
    has_sale: int = 0
    ever_booked: bool = False
    reject_reason: Optional[str] = None

    created_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    booked_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: Optional[int] = None

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, value):
        return [] if value is None else value


# Columns the transition engine may change on a lead row
MUTABLE_LEAD_FIELDS = (
    "notes",
    "tags",
    "status",
    "booking_status",
    "call_status",
    "booker_id",
    "date_booked",
    "time_booked",
    "booking_slot",
    "is_confirmed",
    "has_sale",
    "ever_booked",
    "reject_reason",
    "assigned_at",
    "booked_at",
    "rejected_at",
    "cancelled_at",
    "completed_at",
)


class Actor(BaseModel):
    """The user performing a request."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class LeadChange(BaseModel):
    """A requested change to a lead, as understood by the transition engine.

    Every field is optional; ``None`` means "leave as is".
    ``callback_time`` accepts either an absolute instant or a local
    ``HH:MM`` wall-clock time.
    """

    status: Optional[LeadStatus] = None
    booker_id: Optional[UUID] = None
    date_booked: Optional[datetime] = None
    time_booked: Optional[str] = None
    booking_slot: Optional[int] = None
    is_confirmed: Optional[bool] = None
    booking_status: Optional[BookingStatus] = None
    call_status: Optional[CallStatus] = None
    quick_status: Optional[QuickStatusButton] = None
    has_sale: Optional[int] = None
    reason: Optional[str] = None
    callback_time: Optional[Union[datetime, str]] = None
    callback_note: Optional[str] = None
    send_email: bool = False
    send_sms: bool = False
    template_id: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    add_tags: Optional[List[str]] = None
    remove_tags: Optional[List[str]] = None

    @field_validator("tags", "add_tags", "remove_tags")
    @classmethod
    def normalize_tags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return None if value is None else clean_tags(value)


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class LeadCreateRequest(BaseModel):
    """Request body for POST /api/v1/leads."""

    name: str = Field(..., min_length=1, max_length=200)
    phone: Optional[str] = Field(None, max_length=40)
    email: Optional[EmailStr] = None
    postcode: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = None
    booker_id: Optional[UUID] = None
    date_booked: Optional[datetime] = None
    time_booked: Optional[str] = Field(None, max_length=10)
    booking_slot: Optional[int] = Field(None, ge=0)
    is_confirmed: Optional[bool] = None
    send_email: bool = False
    send_sms: bool = False
    template_id: Optional[str] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class StatusUpdateRequest(BaseModel):
    """Request body for PATCH /api/v1/leads/{lead_id}/status."""

    status: Optional[LeadStatus] = None
    date_booked: Optional[datetime] = None
    time_booked: Optional[str] = Field(None, max_length=10)
    booking_slot: Optional[int] = Field(None, ge=0)
    is_confirmed: Optional[bool] = None
    booking_status: Optional[BookingStatus] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    send_email: bool = False
    send_sms: bool = False
    template_id: Optional[str] = None

    def to_change(self) -> LeadChange:
        return LeadChange(**self.model_dump(exclude_unset=True))


class QuickStatusRequest(BaseModel):
    """Request body for POST /api/v1/leads/{lead_id}/quick-status."""

    button: QuickStatusButton
    reason: Optional[str] = None


class CallStatusRequest(BaseModel):
    """Request body for POST /api/v1/leads/{lead_id}/call-status."""

    call_status: CallStatus
    callback_time: Optional[Union[datetime, str]] = None
    callback_note: Optional[str] = Field(None, max_length=1000)


class RejectRequest(BaseModel):
    """Request body for POST /api/v1/leads/{lead_id}/reject."""

    reason: str = Field(..., min_length=1, max_length=1000)


class AssignRequest(BaseModel):
    """Request body for POST /api/v1/leads/{lead_id}/assign."""

    booker_id: UUID


class TagRequest(BaseModel):
    """Request body for POST /api/v1/leads/{lead_id}/tags."""

    tag: str = Field(..., min_length=1, max_length=MAX_TAG_LENGTH)

    @field_validator("tag")
    @classmethod
    def strip_tag(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("tag must not be blank")
        return value


class TagsReplaceRequest(BaseModel):
    """Request body for PUT /api/v1/leads/{lead_id}/tags."""

    tags: List[str] = Field(..., max_length=100)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, value: List[str]) -> List[str]:
        value = clean_tags(value)
        if any(len(tag) > MAX_TAG_LENGTH for tag in value):
            raise ValueError(f"tags must be at most {MAX_TAG_LENGTH} characters")
        return value


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LeadOut(LeadState):
    """Lead as returned by the API."""


class LeadCreateResponse(SuccessResponse):
    """Response body for POST /api/v1/leads.

    ``is_duplicate`` is set when the same request was already submitted
    moments ago; ``lead`` is then ``None``.
    """

    lead: Optional[LeadOut] = None
    merged: bool = False
    is_duplicate: bool = False
    audit_recorded: bool = True
    message: Optional[str] = None


class TransitionResponse(SuccessResponse):
    """Response body for every lead mutation endpoint.

    The ``*_scheduled`` flags report which side effects were queued; a
    ``False`` flag never means the transition itself failed.
    """

    lead: LeadOut
    kind: Optional[str] = None
    audit_recorded: bool = True
    email_scheduled: bool = False
    sms_scheduled: bool = False
    callback_scheduled: bool = False


class LeadDeleteResponse(SuccessResponse):
    lead_id: UUID


class CallbackReminderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID
    user_id: UUID
    callback_time: datetime
    callback_note: Optional[str] = None
    status: ReminderStatus


class LeadTagsResponse(BaseModel):
    lead_id: UUID
    tags: List[str]


class LeadListResponse(BaseModel):
    items: List[LeadOut]
    total: int
    page: int
    page_size: int

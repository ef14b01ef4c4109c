"""Audit-entry schemas.

``details`` is a closed union with one variant per ``AuditAction``,
discriminated on the ``action`` field, so consumers branch on the variant
type instead of probing free-form dictionaries.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing_extensions import Annotated, Self

from bookings_crm.schemas.common import (
    AuditAction,
    BookingStatus,
    CallStatus,
    LeadStatus,
    QuickStatusButton,
    WorkflowChannel,
)


class _Details(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=False)


class InitialBookingDetails(_Details):
    action: Literal["INITIAL_BOOKING"] = "INITIAL_BOOKING"
    date_booked: datetime
    time_booked: Optional[str] = None
    booking_slot: Optional[int] = None


class RescheduleDetails(_Details):
    action: Literal["RESCHEDULE"] = "RESCHEDULE"
    old_date_booked: datetime
    new_date_booked: datetime
    reason: Optional[str] = None


class CancellationDetails(_Details):
    action: Literal["CANCELLATION"] = "CANCELLATION"
    previous_status: LeadStatus
    previous_date_booked: Optional[datetime] = None
    reason: Optional[str] = None


class StatusChangeDetails(_Details):
    action: Literal["STATUS_CHANGE"] = "STATUS_CHANGE"
    old_status: Optional[LeadStatus] = None
    new_status: LeadStatus


class BookingStatusUpdateDetails(_Details):
    action: Literal["BOOKING_STATUS_UPDATE"] = "BOOKING_STATUS_UPDATE"
    old_booking_status: Optional[BookingStatus] = None
    booking_status: BookingStatus


class CallStatusUpdateDetails(_Details):
    action: Literal["CALL_STATUS_UPDATE"] = "CALL_STATUS_UPDATE"
    requested_call_status: CallStatus
    call_status: CallStatus
    previous_call_status: Optional[CallStatus] = None
    workflow_trigger: Optional[WorkflowChannel] = None


class LeadAssignedDetails(_Details):
    action: Literal["LEAD_ASSIGNED"] = "LEAD_ASSIGNED"
    old_booker_id: Optional[UUID] = None
    new_booker_id: UUID


class NotesUpdatedDetails(_Details):
    action: Literal["NOTES_UPDATED"] = "NOTES_UPDATED"
    notes: str


class TagDetails(_Details):
    action: Literal["TAG_ADDED", "TAG_REMOVED"]
    tag: str


class MessageDetails(_Details):
    """Payload shared by the four SMS/email actions.

    ``read`` only means something on inbound entries; outbound ones are
    always read.
    """

    action: Literal["SMS_SENT", "SMS_RECEIVED", "EMAIL_SENT", "EMAIL_RECEIVED"]
    body: str = ""
    subject: str = ""
    status: Optional[str] = None
    read: bool = True

    @property
    def is_inbound(self) -> bool:
        return self.action in (AuditAction.SMS_RECEIVED, AuditAction.EMAIL_RECEIVED)

    @model_validator(mode="before")
    @classmethod
    def default_read_flag(cls, data: Any) -> Any:
        if isinstance(data, dict) and "read" not in data:
            action = data.get("action")
            inbound = action in (
                AuditAction.SMS_RECEIVED,
                AuditAction.EMAIL_RECEIVED,
                AuditAction.SMS_RECEIVED.value,
                AuditAction.EMAIL_RECEIVED.value,
            )
            data = {**data, "read": not inbound}
        return data


class BookingConfirmationSentDetails(_Details):
    action: Literal["BOOKING_CONFIRMATION_SENT"] = "BOOKING_CONFIRMATION_SENT"
    appointment_date: Optional[datetime] = None
    via_email: bool = False
    via_sms: bool = False
    template_id: Optional[str] = None


class LeadRejectedDetails(_Details):
    action: Literal["LEAD_REJECTED"] = "LEAD_REJECTED"
    reason: Optional[str] = None
    previous_status: LeadStatus
    previous_date_booked: Optional[datetime] = None


class QuickStatusUpdateDetails(_Details):
    action: Literal["QUICK_STATUS_UPDATE"] = "QUICK_STATUS_UPDATE"
    old_status: LeadStatus
    new_status: LeadStatus
    button: QuickStatusButton


AuditDetails = Annotated[
    Union[
        InitialBookingDetails,
        RescheduleDetails,
        CancellationDetails,
        StatusChangeDetails,
        BookingStatusUpdateDetails,
        CallStatusUpdateDetails,
        LeadAssignedDetails,
        NotesUpdatedDetails,
        TagDetails,
        MessageDetails,
        BookingConfirmationSentDetails,
        LeadRejectedDetails,
        QuickStatusUpdateDetails,
    ],
    Field(discriminator="action"),
]


class LeadSnapshot(BaseModel):
    """Denormalised copy of the lead fields shown next to a history entry."""

    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    status: Optional[LeadStatus] = None
    date_booked: Optional[datetime] = None
    time_booked: Optional[str] = None
    booking_slot: Optional[int] = None
    is_confirmed: Optional[bool] = None
    booking_status: Optional[BookingStatus] = None


class AuditEntry(BaseModel):
    """One immutable booking-history event."""

    id: Optional[UUID] = None
    lead_id: Optional[UUID] = None
    sequence: Optional[int] = None
    timestamp: datetime
    performed_by: Optional[UUID] = None
    performed_by_name: Optional[str] = None
    details: AuditDetails
    lead_snapshot: LeadSnapshot = Field(default_factory=LeadSnapshot)

    @property
    def action(self) -> AuditAction:
        return AuditAction(self.details.action)

    @classmethod
    def from_record(cls, record: Any) -> Self:
        """Build an entry from a ``LeadAuditEntry`` row.

        Rows written before the action was copied into ``details`` are
        repaired from the ``action`` column.
        """
        details: Dict[str, Any] = dict(record.details or {})
        details.setdefault("action", record.action)
        return cls(
            id=record.id,
            lead_id=record.lead_id,
            sequence=record.sequence,
            timestamp=record.timestamp,
            performed_by=record.performed_by,
            performed_by_name=record.performed_by_name,
            details=details,
            lead_snapshot=record.lead_snapshot or {},
        )


class AuditEntryOut(BaseModel):
    """Response item for the lead history endpoint."""

    action: AuditAction
    timestamp: datetime
    performed_by: Optional[UUID] = None
    performed_by_name: Optional[str] = None
    details: Dict[str, Any]
    lead_snapshot: Dict[str, Any]

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> Self:
        return cls(
            action=entry.action,
            timestamp=entry.timestamp,
            performed_by=entry.performed_by,
            performed_by_name=entry.performed_by_name,
            details=entry.details.model_dump(mode="json"),
            lead_snapshot=entry.lead_snapshot.model_dump(mode="json"),
        )


class LeadHistoryResponse(BaseModel):
    lead_id: UUID
    entries: List[AuditEntryOut]
    unread_count: int = 0

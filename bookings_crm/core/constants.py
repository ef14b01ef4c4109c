from typing import Dict, FrozenSet

from bookings_crm.schemas.common import (
    BookingStatus,
    CallStatus,
    LeadStatus,
    QuickStatusButton,
    UserRole,
)

LEAD_STATUSES: FrozenSet[str] = frozenset(s.value for s in LeadStatus)
BOOKING_STATUSES: FrozenSet[str] = frozenset(s.value for s in BookingStatus)
CALL_STATUSES: FrozenSet[str] = frozenset(s.value for s in CallStatus)


def check_clause(column: str, values: FrozenSet[str], nullable: bool = False) -> str:
    """Build a SQL CHECK clause restricting *column* to *values*."""
    clause = f"{column} IN ({', '.join(repr(v) for v in sorted(values))})"
    if nullable:
        clause = f"{clause} OR {column} IS NULL"
    return clause


# Primary-status edges.  Cancelled and Rejected are reachable from every
# other status; the remaining preconditions (booker, date, appointment)
# are checked by the transition engine.
ALLOWED_TRANSITIONS: Dict[LeadStatus, FrozenSet[LeadStatus]] = {
    LeadStatus.NEW: frozenset(
        {LeadStatus.ASSIGNED, LeadStatus.BOOKED, LeadStatus.CANCELLED, LeadStatus.REJECTED}
    ),
    LeadStatus.ASSIGNED: frozenset(
        {
            LeadStatus.ASSIGNED,
            LeadStatus.BOOKED,
            LeadStatus.CANCELLED,
            LeadStatus.REJECTED,
        }
    ),
    LeadStatus.BOOKED: frozenset(
        {
            LeadStatus.BOOKED,
            LeadStatus.ATTENDED,
            LeadStatus.NO_SHOW,
            LeadStatus.CANCELLED,
            LeadStatus.REJECTED,
        }
    ),
    LeadStatus.ATTENDED: frozenset(
        {
            LeadStatus.BOOKED,
            LeadStatus.NO_SHOW,
            LeadStatus.CANCELLED,
            LeadStatus.REJECTED,
        }
    ),
    LeadStatus.NO_SHOW: frozenset(
        {
            LeadStatus.ASSIGNED,
            LeadStatus.BOOKED,
            LeadStatus.ATTENDED,
            LeadStatus.CANCELLED,
            LeadStatus.REJECTED,
        }
    ),
    LeadStatus.CANCELLED: frozenset(
        {LeadStatus.NEW, LeadStatus.ASSIGNED, LeadStatus.BOOKED, LeadStatus.REJECTED}
    ),
    LeadStatus.REJECTED: frozenset(
        {LeadStatus.NEW, LeadStatus.ASSIGNED, LeadStatus.BOOKED, LeadStatus.CANCELLED}
    ),
}

# Booking sub-statuses that make a lead functionally Attended
ATTENDED_BOOKING_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {
        BookingStatus.ARRIVED,
        BookingStatus.LEFT,
        BookingStatus.NO_SALE,
        BookingStatus.COMPLETE,
        BookingStatus.REVIEW,
    }
)

# Leads in these statuses have moved past the calling stage and drop out
# of call-status buckets.  "Sale" is a legacy status value still present
# on old rows.
PROGRESSED_STATUSES: FrozenSet[str] = frozenset(
    {"Booked", "Attended", "Cancelled", "Rejected", "Sale"}
)

# Call-status escalation ladder for repeated "No answer" outcomes
NO_ANSWER_ESCALATION: Dict[CallStatus, CallStatus] = {
    CallStatus.NO_ANSWER: CallStatus.NO_ANSWER_X2,
    CallStatus.NO_ANSWER_X2: CallStatus.NO_ANSWER_X3,
    CallStatus.NO_ANSWER_X3: CallStatus.NO_ANSWER_X3,
}
NO_ANSWER_VARIANTS: FrozenSet[CallStatus] = frozenset(NO_ANSWER_ESCALATION)

# Call-status workflow triggers
EMAIL_TRIGGER_CALL_STATUSES: FrozenSet[CallStatus] = frozenset(
    {CallStatus.LEFT_MESSAGE, CallStatus.NO_ANSWER, CallStatus.NO_PHOTO}
)
CLOSE_TRIGGER_CALL_STATUSES: FrozenSet[CallStatus] = frozenset(
    {CallStatus.NOT_INTERESTED, CallStatus.NOT_QUALIFIED}
)
CALLBACK_TRIGGER_CALL_STATUSES: FrozenSet[CallStatus] = frozenset(
    {CallStatus.CALL_BACK, CallStatus.SALES_CONVERTED}
)

# Roles allowed to reject a lead (bookers only their own)
REJECT_ROLES: FrozenSet[UserRole] = frozenset({UserRole.ADMIN, UserRole.BOOKER})

# Quick-status buttons → (primary status, is_confirmed, booking sub-status, has_sale)
QUICK_STATUS_MAPPINGS: Dict[QuickStatusButton, Dict[str, object]] = {
    QuickStatusButton.CONFIRM: {"status": LeadStatus.BOOKED, "is_confirmed": True},
    QuickStatusButton.UNCONFIRMED: {"status": LeadStatus.BOOKED, "is_confirmed": False},
    QuickStatusButton.ARRIVED: {
        "status": LeadStatus.ATTENDED,
        "is_confirmed": True,
        "booking_status": BookingStatus.ARRIVED,
    },
    QuickStatusButton.LEFT: {
        "status": LeadStatus.ATTENDED,
        "is_confirmed": True,
        "booking_status": BookingStatus.LEFT,
    },
    QuickStatusButton.NO_SALE: {
        "status": LeadStatus.ATTENDED,
        "is_confirmed": True,
        "booking_status": BookingStatus.NO_SALE,
        "has_sale": 0,
    },
    QuickStatusButton.NO_SHOW: {"status": LeadStatus.NO_SHOW, "is_confirmed": False},
    QuickStatusButton.CANCEL: {"status": LeadStatus.CANCELLED},
    QuickStatusButton.COMPLETE: {
        "status": LeadStatus.ATTENDED,
        "is_confirmed": True,
        "booking_status": BookingStatus.COMPLETE,
        "has_sale": 1,
    },
    QuickStatusButton.REJECT_LEAD: {"status": LeadStatus.REJECTED},
}

# Text search runs across these lead columns
SEARCH_COLUMNS = ("name", "phone", "email", "postcode")

# Audit dedup key widths
DEDUP_BODY_PREFIX: int = 200
DEDUP_SUBJECT_PREFIX: int = 50

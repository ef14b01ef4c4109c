"""Derived "effective" status of a lead.

The primary ``status`` column and the booking sub-status jointly decide
how a lead is reported: a lead still reading ``Booked`` whose appointment
sub-status is ``Arrived`` has in fact attended.  Both the transition
engine and the filter planner go through :func:`effective_status`.
"""

from typing import Any

from bookings_crm.core.constants import ATTENDED_BOOKING_STATUSES, PROGRESSED_STATUSES
from bookings_crm.schemas.common import BookingStatus, LeadStatus

# Primary statuses whose reading can be overridden by the booking sub-status
_OVERRIDABLE = frozenset({LeadStatus.NEW, LeadStatus.ASSIGNED, LeadStatus.BOOKED})


def effective_status(lead: Any) -> LeadStatus:
    """Return the status *lead* should be treated as having for reporting."""
    status = LeadStatus(lead.status)
    if status not in _OVERRIDABLE or lead.booking_status is None:
        return status
    booking_status = BookingStatus(lead.booking_status)
    if booking_status in ATTENDED_BOOKING_STATUSES:
        return LeadStatus.ATTENDED
    if booking_status == BookingStatus.CANCEL:
        return LeadStatus.CANCELLED
    return status


def is_awaiting_attendance(lead: Any) -> bool:
    return effective_status(lead) == LeadStatus.BOOKED


def has_progressed(lead: Any) -> bool:
    """True once a lead has moved past the calling stage."""
    return effective_status(lead).value in PROGRESSED_STATUSES

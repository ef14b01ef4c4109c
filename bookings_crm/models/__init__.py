from bookings_crm.models.base import Base
from bookings_crm.models.user import User
from bookings_crm.models.lead import Lead
from bookings_crm.models.audit_entry import LeadAuditEntry
from bookings_crm.models.message import Message
from bookings_crm.models.callback_reminder import CallbackReminder
from bookings_crm.models.outbox import SideEffectOutbox

# Import event listeners to register them
from bookings_crm.models import listeners  # noqa: F401

__all__ = [
    "Base",
    "User",
    "Lead",
    "LeadAuditEntry",
    "Message",
    "CallbackReminder",
    "SideEffectOutbox",
]

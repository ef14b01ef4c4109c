"""Repository layer – all database access goes through here.

Repositories encapsulate SQLAlchemy queries so that the service layer
only contains business logic.
"""

from bookings_crm.repositories.lead_repository import LeadRepository
from bookings_crm.repositories.audit_repository import AuditRepository
from bookings_crm.repositories.message_repository import MessageRepository
from bookings_crm.repositories.user_repository import UserRepository
from bookings_crm.repositories.callback_repository import CallbackRepository
from bookings_crm.repositories.outbox_repository import OutboxRepository

__all__ = [
    "LeadRepository",
    "AuditRepository",
    "MessageRepository",
    "UserRepository",
    "CallbackRepository",
    "OutboxRepository",
]

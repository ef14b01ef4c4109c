"""Pydantic schemas package – re-exports for convenience."""

# Common enums
from bookings_crm.schemas.common import (
    LeadStatus as LeadStatus,
    BookingStatus as BookingStatus,
    CallStatus as CallStatus,
    QuickStatusButton as QuickStatusButton,
    UserRole as UserRole,
    AuditAction as AuditAction,
    SideEffectKind as SideEffectKind,
    WorkflowChannel as WorkflowChannel,
    SuccessResponse as SuccessResponse,
)

# Lead schemas
from bookings_crm.schemas.lead import (
    LeadState as LeadState,
    Actor as Actor,
    LeadChange as LeadChange,
    LeadCreateRequest as LeadCreateRequest,
    LeadCreateResponse as LeadCreateResponse,
    TransitionResponse as TransitionResponse,
)

# Audit schemas
from bookings_crm.schemas.audit import (
    AuditEntry as AuditEntry,
    LeadSnapshot as LeadSnapshot,
)

# Filter schemas
from bookings_crm.schemas.filters import (
    DateRange as DateRange,
    FilterRequest as FilterRequest,
    FilterPage as FilterPage,
)

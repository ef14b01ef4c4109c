"""API-layer dependency functions.

Re-exports all dependency factories from ``bookings_crm.dependencies`` so
that endpoint modules only need to import from ``bookings_crm.api.deps``.
"""

from bookings_crm.dependencies import (
    # Repository factories
    get_lead_repo,
    get_audit_repo,
    get_message_repo,
    get_user_repo,
    get_callback_repo,
    get_outbox_repo,
    # Service factories
    get_cache_service,
    get_request_guard,
    get_transition_engine,
    get_lead_transition_service,
    get_lead_intake_service,
    get_filter_planner,
    # Acting user
    get_current_actor,
    # Redis
    get_redis_client,
)

__all__ = [
    "get_lead_repo",
    "get_audit_repo",
    "get_message_repo",
    "get_user_repo",
    "get_callback_repo",
    "get_outbox_repo",
    "get_cache_service",
    "get_request_guard",
    "get_transition_engine",
    "get_lead_transition_service",
    "get_lead_intake_service",
    "get_filter_planner",
    "get_current_actor",
    "get_redis_client",
]

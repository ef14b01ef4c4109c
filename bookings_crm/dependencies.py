import logging
from uuid import UUID

from fastapi import Depends, Header, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from bookings_crm.core.config import settings
from bookings_crm.core.database import get_db
from bookings_crm.core.exceptions import UserNotFoundError
from bookings_crm.schemas.lead import Actor
from bookings_crm.services.request_guard import RequestGuard
from bookings_crm.services.status_transition import StatusTransitionEngine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Redis client factory
# ---------------------------------------------------------------------------


async def get_redis_client() -> Redis:
    """Get an async Redis client instance using connection pooling."""
    try:
        client = Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
        await client.ping()
        return client
    except Exception:
        logger.warning("Redis unavailable, request guard falls back to process memory")
        return None  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Repository factory functions (one per repository, each gets the shared db)
# ---------------------------------------------------------------------------


async def get_lead_repo(
    db: AsyncSession = Depends(get_db),
):
    from bookings_crm.repositories.lead_repository import LeadRepository

    return LeadRepository(db)


async def get_audit_repo(
    db: AsyncSession = Depends(get_db),
):
    from bookings_crm.repositories.audit_repository import AuditRepository

    return AuditRepository(db)


async def get_message_repo(
    db: AsyncSession = Depends(get_db),
):
    from bookings_crm.repositories.message_repository import MessageRepository

    return MessageRepository(db)


async def get_user_repo(
    db: AsyncSession = Depends(get_db),
):
    from bookings_crm.repositories.user_repository import UserRepository

    return UserRepository(db)


async def get_callback_repo(
    db: AsyncSession = Depends(get_db),
):
    from bookings_crm.repositories.callback_repository import CallbackRepository

    return CallbackRepository(db)


async def get_outbox_repo(
    db: AsyncSession = Depends(get_db),
):
    from bookings_crm.repositories.outbox_repository import OutboxRepository

    return OutboxRepository(db)


# ---------------------------------------------------------------------------
# Cache service factory
# ---------------------------------------------------------------------------


async def get_cache_service(
    redis_client: Redis = Depends(get_redis_client),
):
    """Build a :class:`CacheService` backed by the shared Redis client."""
    from bookings_crm.core.cache import CacheService

    return CacheService(redis_client=redis_client)


# ---------------------------------------------------------------------------
# Acting user
# ---------------------------------------------------------------------------


async def get_current_actor(
    x_user_id: UUID = Header(..., alias="X-User-Id"),
    user_repo=Depends(get_user_repo),
) -> Actor:
    """Resolve the ``X-User-Id`` header to the acting user."""
    user = await user_repo.get_by_id(x_user_id)
    if user is None:
        raise UserNotFoundError(f"User {x_user_id} not found")
    return Actor.model_validate(user)


# ---------------------------------------------------------------------------
# Service factory functions
# ---------------------------------------------------------------------------


def get_request_guard(request: Request) -> RequestGuard:
    """The process-wide guard created in the application lifespan."""
    guard = getattr(request.app.state, "request_guard", None)
    if guard is None:
        guard = RequestGuard()
        request.app.state.request_guard = guard
    return guard


async def get_transition_engine() -> StatusTransitionEngine:
    return StatusTransitionEngine()


async def get_lead_transition_service(
    engine: StatusTransitionEngine = Depends(get_transition_engine),
):
    """Build a :class:`LeadTransitionService` with injected dependencies."""
    from bookings_crm.services.lead_transition_service import LeadTransitionService

    return LeadTransitionService(engine=engine)


async def get_lead_intake_service(
    guard: RequestGuard = Depends(get_request_guard),
    engine: StatusTransitionEngine = Depends(get_transition_engine),
    transition_service=Depends(get_lead_transition_service),
    cache=Depends(get_cache_service),
):
    """Build a :class:`LeadIntakeService` with injected dependencies."""
    from bookings_crm.services.lead_intake_service import LeadIntakeService

    return LeadIntakeService(
        guard=guard,
        engine=engine,
        transition_service=transition_service,
        cache=cache,
    )


async def get_filter_planner(
    lead_repo=Depends(get_lead_repo),
    audit_repo=Depends(get_audit_repo),
):
    """Build a :class:`FilterPlanner` over the lead and history stores."""
    from bookings_crm.services.filter_planner import FilterPlanner

    return FilterPlanner(store=lead_repo, history_store=audit_repo)

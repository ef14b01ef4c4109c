import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bookings_crm.core.cache import CacheService
from bookings_crm.core.exceptions import LeadPermissionError
from bookings_crm.repositories.audit_repository import AuditRepository
from bookings_crm.repositories.lead_repository import LeadRepository
from bookings_crm.repositories.outbox_repository import OutboxRepository
from bookings_crm.schemas.common import LeadStatus, UserRole
from bookings_crm.schemas.lead import (
    Actor,
    LeadChange,
    LeadCreateRequest,
    LeadState,
)
from bookings_crm.services.duplicate_resolver import (
    DuplicateResolver,
    IdentityCandidate,
    IntakeAction,
    normalize_email,
    normalize_phone,
)
from bookings_crm.services.lead_transition_service import LeadTransitionService
from bookings_crm.services.request_guard import DUPLICATE_REQUEST_MESSAGE, RequestGuard
from bookings_crm.services.status_transition import (
    StatusTransitionEngine,
    TransitionResult,
)

logger = logging.getLogger(__name__)

# Roles that may enter leads by hand
_CREATE_ROLES = frozenset({UserRole.ADMIN, UserRole.BOOKER})


class LeadIntakeService:
    """Orchestrates manual lead creation.

    Steps: duplicate-request guard, duplicate-lead resolution, then
    either a fresh insert (with any initial assignment or booking run
    through the transition engine) or a merge of the booking into the
    existing lead.
    """

    def __init__(
        self,
        guard: RequestGuard,
        resolver: Optional[DuplicateResolver] = None,
        engine: Optional[StatusTransitionEngine] = None,
        transition_service: Optional[LeadTransitionService] = None,
        cache: Optional[CacheService] = None,
    ) -> None:
        self._guard = guard
        self._resolver = resolver or DuplicateResolver()
        self._engine = engine or StatusTransitionEngine()
        self._transition_service = transition_service or LeadTransitionService(self._engine)
        self._cache = cache

    async def create_lead(
        self,
        request: LeadCreateRequest,
        actor: Actor,
        lead_repo: LeadRepository,
        audit_repo: AuditRepository,
        outbox_repo: OutboxRepository,
    ) -> Dict[str, Any]:
        if actor.role not in _CREATE_ROLES:
            raise LeadPermissionError("Only admins and bookers can create leads")
        booker_id = request.booker_id
        if actor.role == UserRole.BOOKER:
            if booker_id is not None and booker_id != actor.id:
                raise LeadPermissionError("Bookers can only create leads for themselves")
            booker_id = actor.id

        # 1. Collapse double submissions
        fingerprint = RequestGuard.fingerprint(
            actor.id, request.name, request.phone, request.date_booked
        )
        if not await self._guard.claim(fingerprint, self._cache):
            return {"is_duplicate": True, "message": DUPLICATE_REQUEST_MESSAGE}

        # 2. Duplicate-lead resolution
        candidate = IdentityCandidate(
            name=request.name,
            phone=request.phone,
            email=request.email,
            date_booked=request.date_booked,
        )
        existing = await lead_repo.find_identity_matches(
            normalize_phone(request.phone) or None,
            normalize_email(request.email) or None,
        )
        resolution = self._resolver.resolve(candidate, existing)

        change = self._initial_change(request, booker_id)

        if resolution.action == IntakeAction.MERGE_AS_BOOKING:
            target = resolution.collision.existing
            logger.info(
                "Merging booking into existing lead %s (matched on %s)",
                target.id,
                resolution.collision.strength.value,
            )
            reassign_to = self._merge_owner(actor, target.booker_id, booker_id)
            merge = change.model_copy(
                update={"status": LeadStatus.BOOKED, "booker_id": reassign_to}
            )
            outcome = await self._transition_service.apply_change(
                target.id,
                merge,
                actor,
                lead_repo,
                audit_repo,
                outbox_repo,
                enforce_permissions=False,
            )
            return {**outcome, "merged": True, "is_duplicate": False}

        # 3. Fresh insert
        now = datetime.now(timezone.utc)
        state = LeadState(
            id=uuid.uuid4(),
            name=request.name,
            phone=request.phone,
            email=request.email,
            postcode=request.postcode,
            status=LeadStatus.NEW,
            created_at=now,
            updated_at=now,
        )
        result: Optional[TransitionResult] = None
        if change is not None:
            result = self._engine.transition(
                state, change, actor, now=now, enforce_permissions=False
            )
            state = result.lead

        lead = await lead_repo.create(
            id=state.id,
            name=state.name,
            phone=state.phone,
            email=state.email,
            postcode=state.postcode,
            created_at=state.created_at,
            updated_at=state.updated_at,
        )
        await lead_repo.apply_state(lead, state)
        if result is not None:
            for effect in result.side_effects:
                await outbox_repo.enqueue(lead.id, effect)
        await lead_repo.commit()
        logger.info("Lead %s created by %s", lead.id, actor.id)

        audit_recorded = True
        if result is not None:
            audit_recorded = await LeadTransitionService.record_history(
                audit_repo, result.audit_entries
            )
            return {
                **LeadTransitionService.describe(lead, result, audit_recorded),
                "merged": False,
                "is_duplicate": False,
            }
        return {
            "lead": lead,
            "merged": False,
            "is_duplicate": False,
            "audit_recorded": audit_recorded,
        }

    @staticmethod
    def _merge_owner(actor: Actor, current_owner, requested_owner):
        """Owner to set on a merged lead, or ``None`` to keep the current one.

        Admins may hand the lead to whoever the request names. Bookers can
        only claim a lead nobody owns yet.
        """
        if requested_owner is None or requested_owner == current_owner:
            return None
        if actor.is_admin or current_owner is None:
            return requested_owner
        return None

    @staticmethod
    def _initial_change(request: LeadCreateRequest, booker_id) -> Optional[LeadChange]:
        """The change that takes a fresh lead to its requested starting state."""
        fields: Dict[str, Any] = {}
        if booker_id is not None:
            fields["booker_id"] = booker_id
        if request.date_booked is not None:
            fields.update(
                status=LeadStatus.BOOKED,
                date_booked=request.date_booked,
                time_booked=request.time_booked,
                booking_slot=request.booking_slot,
                is_confirmed=request.is_confirmed,
                send_email=request.send_email,
                send_sms=request.send_sms,
                template_id=request.template_id,
            )
        if request.notes:
            fields["notes"] = request.notes
        return LeadChange(**fields) if fields else None

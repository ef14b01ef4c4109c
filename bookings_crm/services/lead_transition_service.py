import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm.exc import StaleDataError

from bookings_crm.core.config import settings
from bookings_crm.core.exceptions import ConcurrentUpdateError, LeadNotFoundError
from bookings_crm.repositories.audit_repository import AuditRepository
from bookings_crm.repositories.lead_repository import LeadRepository
from bookings_crm.repositories.outbox_repository import OutboxRepository
from bookings_crm.schemas.audit import AuditEntry
from bookings_crm.schemas.common import SideEffectKind, WorkflowChannel
from bookings_crm.schemas.lead import Actor, LeadChange, LeadState
from bookings_crm.services.audit_log import AuditLog
from bookings_crm.services.status_transition import (
    StatusTransitionEngine,
    TransitionResult,
)

logger = logging.getLogger(__name__)


class LeadTransitionService:
    """Orchestrates a lead change: read, transition, write, then audit.

    The lead row and its side-effect intents are committed together.
    A concurrent write to the same lead surfaces as a stale version on
    commit, and the whole read-transition-write cycle is repeated
    against the fresh row.  History is appended after the lead commit;
    a failure there is logged and reported, never rolled back into the
    lead.
    """

    def __init__(
        self,
        engine: Optional[StatusTransitionEngine] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        self._engine = engine or StatusTransitionEngine()
        self._max_attempts = max_attempts or settings.TRANSITION_MAX_ATTEMPTS

    async def apply_change(
        self,
        lead_id: UUID,
        change: LeadChange,
        actor: Actor,
        lead_repo: LeadRepository,
        audit_repo: AuditRepository,
        outbox_repo: OutboxRepository,
        enforce_permissions: bool = True,
    ) -> Dict[str, Any]:
        result: Optional[TransitionResult] = None
        lead = None
        for attempt in range(1, self._max_attempts + 1):
            # 1. Fetch the current row and its history
            lead = await lead_repo.get_by_id(lead_id, refresh=attempt > 1)
            if not lead:
                raise LeadNotFoundError("Lead not found")
            history = AuditLog.from_entries(lead_id, await audit_repo.list_for_lead(lead_id))

            # 2. Pure transition; validation/permission errors abort here
            result = self._engine.transition(
                LeadState.model_validate(lead),
                change,
                actor,
                history=history,
                enforce_permissions=enforce_permissions,
            )

            # 3. Write the row and its side-effect intents atomically
            try:
                await lead_repo.apply_state(lead, result.lead)
                for effect in result.side_effects:
                    await outbox_repo.enqueue(lead_id, effect)
                await lead_repo.commit()
                break
            except StaleDataError:
                await lead_repo.rollback()
                logger.warning(
                    "Lead %s changed concurrently (attempt %d/%d)",
                    lead_id,
                    attempt,
                    self._max_attempts,
                )
        else:
            raise ConcurrentUpdateError()

        # 4. History, best effort
        audit_recorded = await self.record_history(audit_repo, result.audit_entries)

        return self.describe(lead, result, audit_recorded)

    @staticmethod
    async def record_history(audit_repo: AuditRepository, entries: List[AuditEntry]) -> bool:
        """Append *entries* in their own transaction; ``False`` on failure."""
        if not entries:
            return True
        try:
            await audit_repo.append(entries)
            await audit_repo.commit()
            return True
        except Exception:
            logger.error(
                "Failed to record %d history entr(y/ies) for lead %s",
                len(entries),
                entries[0].lead_id,
                exc_info=True,
            )
            await audit_repo.rollback()
            return False

    @staticmethod
    def describe(lead: Any, result: TransitionResult, audit_recorded: bool) -> Dict[str, Any]:
        kind = result.kind
        return {
            "lead": lead,
            "kind": kind.value if kind else None,
            "audit_recorded": audit_recorded,
            "email_scheduled": result.has_effect(
                SideEffectKind.NOTIFY_WORKFLOW, WorkflowChannel.EMAIL
            )
            or (
                result.has_effect(SideEffectKind.SEND_BOOKING_CONFIRMATION)
                and any(e.payload.get("via_email") for e in result.side_effects)
            ),
            "sms_scheduled": any(
                e.kind == SideEffectKind.SEND_BOOKING_CONFIRMATION and e.payload.get("via_sms")
                for e in result.side_effects
            ),
            "callback_scheduled": result.has_effect(
                SideEffectKind.NOTIFY_WORKFLOW, WorkflowChannel.CALLBACK
            ),
        }

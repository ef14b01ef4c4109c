import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from bookings_crm.core.config import settings
from bookings_crm.models.outbox import SideEffectOutbox
from bookings_crm.repositories.audit_repository import AuditRepository
from bookings_crm.repositories.callback_repository import CallbackRepository
from bookings_crm.repositories.lead_repository import LeadRepository
from bookings_crm.repositories.message_repository import MessageRepository
from bookings_crm.repositories.outbox_repository import OutboxRepository
from bookings_crm.repositories.user_repository import UserRepository
from bookings_crm.schemas.audit import AuditEntry, BookingConfirmationSentDetails
from bookings_crm.schemas.common import LeadStatus, SideEffectKind, WorkflowChannel
from bookings_crm.schemas.lead import LeadState
from bookings_crm.services.collaborators import (
    CallbackScheduler,
    MessagingService,
    StatsAggregator,
)
from bookings_crm.services.status_transition import snapshot_of

logger = logging.getLogger(__name__)

# Longest wait between two attempts at the same side effect (seconds)
_MAX_RETRY_DELAY_SECONDS: int = 600

# (succeeded, error, worth retrying)
Outcome = Tuple[bool, Optional[str], bool]


def retry_delay(attempts: int) -> timedelta:
    """Backoff before the next attempt after *attempts* failures."""
    seconds = settings.SIDE_EFFECT_POLL_SECONDS * (2 ** max(attempts - 1, 0))
    return timedelta(seconds=min(seconds, _MAX_RETRY_DELAY_SECONDS))


class SideEffectDispatcher:
    """Drains the side-effect outbox.

    Each intent runs inside its own savepoint and under
    ``asyncio.wait_for``, so one stalled provider call or failing row
    neither blocks nor rolls back the rest of the batch.  Failures are
    retried with exponential backoff until ``max_attempts``.
    """

    def __init__(
        self,
        messaging: MessagingService,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        self._messaging = messaging
        self._timeout = timeout or settings.SIDE_EFFECT_TIMEOUT_SECONDS
        self._max_attempts = max_attempts or settings.SIDE_EFFECT_MAX_ATTEMPTS
        self._batch_size = batch_size or settings.SIDE_EFFECT_BATCH_SIZE

    async def drain(self, session: AsyncSession) -> int:
        """Dispatch one batch of due intents; returns how many succeeded."""
        outbox_repo = OutboxRepository(session)
        rows = await outbox_repo.claim_due(self._batch_size)
        if not rows:
            return 0

        done = 0
        for row in rows:
            try:
                async with session.begin_nested():
                    ok, error, retryable = await asyncio.wait_for(
                        self._perform(row, session), timeout=self._timeout
                    )
            except asyncio.TimeoutError:
                ok, error, retryable = False, "timed out", True
                logger.warning("Side effect %s (%s) timed out", row.id, row.kind)
            except Exception as exc:
                ok, error, retryable = False, str(exc) or type(exc).__name__, True
                logger.warning("Side effect %s (%s) failed", row.id, row.kind, exc_info=True)

            if ok:
                await outbox_repo.mark_done(row)
                done += 1
                continue

            attempts = (row.attempts or 0) + 1
            give_up = not retryable or attempts >= self._max_attempts
            await outbox_repo.mark_failed(
                row,
                error or "unknown error",
                retry_at=datetime.now(timezone.utc) + retry_delay(attempts),
                give_up=give_up,
            )
            if give_up:
                logger.error(
                    "Side effect %s (%s) abandoned after %d attempt(s): %s",
                    row.id,
                    row.kind,
                    attempts,
                    error,
                )

        await session.commit()
        return done

    async def _perform(self, row: SideEffectOutbox, session: AsyncSession) -> Outcome:
        kind = SideEffectKind(row.kind)
        payload = dict(row.payload or {})

        if kind == SideEffectKind.UPDATE_STATS:
            stats = StatsAggregator(UserRepository(session))
            await stats.on_status_change(
                UUID(payload["booker_id"]),
                LeadStatus(payload["from"]),
                LeadStatus(payload["to"]),
            )
            return True, None, False

        if row.channel == WorkflowChannel.CALLBACK.value:
            scheduler = CallbackScheduler(CallbackRepository(session))
            await scheduler.schedule_callback(
                row.lead_id,
                UUID(payload["user_id"]),
                datetime.fromisoformat(payload["callback_time"]),
                payload.get("note"),
            )
            return True, None, False

        lead = await LeadRepository(session).get_by_id(row.lead_id)
        if lead is None:
            return False, "lead no longer exists", False

        result = await self._messaging.dispatch(
            kind, lead, {"channel": row.channel, **payload}
        )
        if not result.success:
            return False, result.error, result.retryable

        if kind == SideEffectKind.SEND_BOOKING_CONFIRMATION:
            await self._record_confirmation(session, lead, payload)
        elif row.channel == WorkflowChannel.EMAIL.value:
            await MessageRepository(session).create(
                lead_id=lead.id,
                type="email",
                status="sent",
                subject=f"{payload.get('call_status', 'Follow-up')} follow-up",
                body="",
                provider_id=result.provider_id,
            )
        return True, None, False

    @staticmethod
    async def _record_confirmation(session: AsyncSession, lead, payload) -> None:
        state = LeadState.model_validate(lead)
        entry = AuditEntry(
            lead_id=lead.id,
            timestamp=datetime.now(timezone.utc),
            performed_by_name="system",
            details=BookingConfirmationSentDetails(
                appointment_date=payload.get("date_booked"),
                via_email=bool(payload.get("via_email")),
                via_sms=bool(payload.get("via_sms")),
                template_id=payload.get("template_id"),
            ),
            lead_snapshot=snapshot_of(state),
        )
        await AuditRepository(session).append([entry])


async def start_side_effect_loop(
    session_factory: Callable[..., AsyncSession],
    dispatcher: SideEffectDispatcher,
) -> None:
    """Infinite loop that drains the outbox on a fixed interval.

    Parameters:
        session_factory: An async context-manager callable that yields
            an ``AsyncSession``.
        dispatcher: The dispatcher that performs each intent.
    """
    logger.info(
        "Side-effect worker started (interval=%ds, timeout=%.0fs)",
        settings.SIDE_EFFECT_POLL_SECONDS,
        settings.SIDE_EFFECT_TIMEOUT_SECONDS,
    )
    while True:
        try:
            async with session_factory() as session:
                count = await dispatcher.drain(session)
            if count:
                logger.info("Side-effect cycle complete: %d dispatched", count)
        except Exception:
            logger.error("Side-effect cycle failed", exc_info=True)
        await asyncio.sleep(settings.SIDE_EFFECT_POLL_SECONDS)

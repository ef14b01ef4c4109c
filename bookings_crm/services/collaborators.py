"""Collaborators the side-effect worker hands work to.

``HttpMessagingService`` talks to the external email/SMS provider,
``StatsAggregator`` keeps the per-booker counters and
``CallbackScheduler`` files callback reminders.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Protocol
from uuid import UUID

import httpx
from pydantic import BaseModel

from bookings_crm.core.config import settings
from bookings_crm.repositories.callback_repository import CallbackRepository
from bookings_crm.repositories.user_repository import UserRepository
from bookings_crm.schemas.common import LeadStatus, ReminderStatus, SideEffectKind

logger = logging.getLogger(__name__)


class DispatchResult(BaseModel):
    success: bool
    channel: Optional[str] = None
    provider_id: Optional[str] = None
    error: Optional[str] = None
    # False when repeating the call cannot help (bad request, not configured)
    retryable: bool = True


class MessagingService(Protocol):
    async def dispatch(
        self, kind: SideEffectKind, lead: Any, payload: Dict[str, Any]
    ) -> DispatchResult: ...


class HttpMessagingService:
    """MessagingService backed by the provider's HTTP API.

    Never raises: every failure comes back as an unsuccessful
    :class:`DispatchResult`.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = (
            base_url if base_url is not None else settings.MESSAGING_SERVICE_URL
        ).rstrip("/")
        self._token = token if token is not None else settings.MESSAGING_SERVICE_TOKEN
        self._timeout = timeout or settings.MESSAGING_TIMEOUT_SECONDS
        self._transport = transport

    async def dispatch(
        self, kind: SideEffectKind, lead: Any, payload: Dict[str, Any]
    ) -> DispatchResult:
        channel = payload.get("channel")
        if not self._base_url:
            logger.warning("Messaging service not configured; dropping %s", kind.value)
            return DispatchResult(
                success=False,
                channel=channel,
                error="Messaging service not configured",
                retryable=False,
            )

        body = {
            "kind": kind.value,
            "lead": {
                "id": str(lead.id),
                "name": lead.name,
                "email": lead.email,
                "phone": lead.phone,
            },
            "payload": payload,
        }
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post("/dispatch", json=body, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException:
            logger.error("Messaging service timed out for lead %s", lead.id)
            return DispatchResult(success=False, channel=channel, error="timeout")
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.error("Messaging service returned %s for lead %s", status, lead.id)
            return DispatchResult(
                success=False,
                channel=channel,
                error=f"HTTP {status}",
                retryable=status >= 500 or status == 429,
            )
        except httpx.HTTPError as exc:
            logger.error("Messaging service unreachable: %s", exc)
            return DispatchResult(success=False, channel=channel, error=str(exc))
        except ValueError:
            logger.error("Messaging service sent an unreadable response")
            return DispatchResult(
                success=False, channel=channel, error="invalid response body"
            )

        return DispatchResult(
            success=True,
            channel=data.get("channel", channel),
            provider_id=data.get("provider_id"),
        )


class StatsAggregator:
    """Per-booker counters driven by primary-status changes.

    Counters only ever go up: cancelling a booking does not take back
    the ``bookings_made`` it earned.
    """

    _COUNTERS = {
        LeadStatus.BOOKED: "bookings_made",
        LeadStatus.ATTENDED: "show_ups",
    }

    def __init__(self, user_repo: UserRepository) -> None:
        self._user_repo = user_repo

    async def on_status_change(
        self, booker_id: UUID, from_status: LeadStatus, to_status: LeadStatus
    ) -> bool:
        """Apply one status change; returns ``True`` if a counter moved."""
        if from_status == to_status:
            return False
        column = self._COUNTERS.get(to_status)
        if column is None:
            return False
        updated = await self._user_repo.increment_counter(booker_id, column)
        if not updated:
            logger.warning("Stats update skipped: booker %s not found", booker_id)
        return updated


class CallbackScheduler:
    """Files callback reminders; one pending reminder per user and lead."""

    def __init__(self, callback_repo: CallbackRepository) -> None:
        self._callback_repo = callback_repo

    async def schedule_callback(
        self,
        lead_id: UUID,
        user_id: UUID,
        when_utc: datetime,
        note: Optional[str] = None,
    ):
        replaced = await self._callback_repo.cancel_pending_for_lead(lead_id, user_id)
        if replaced:
            logger.info("Replaced %d pending callback(s) for lead %s", replaced, lead_id)
        reminder = await self._callback_repo.create(
            lead_id=lead_id,
            user_id=user_id,
            callback_time=when_utc,
            callback_note=note,
            status=ReminderStatus.PENDING.value,
        )
        logger.info("Callback for lead %s scheduled at %s", lead_id, when_utc.isoformat())
        return reminder

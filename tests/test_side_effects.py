"""Tests for the side-effect outbox worker and its collaborators."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import httpx
import pytest

from bookings_crm.schemas.common import LeadStatus, ReminderStatus, SideEffectKind
from bookings_crm.services.collaborators import (
    CallbackScheduler,
    DispatchResult,
    HttpMessagingService,
    StatsAggregator,
)
from bookings_crm.services.side_effects import SideEffectDispatcher, retry_delay

MODULE = "bookings_crm.services.side_effects"


def _make_row(**overrides):
    """Stand-in for a ``SideEffectOutbox`` row."""
    fields = {
        "id": uuid4(),
        "lead_id": uuid4(),
        "kind": SideEffectKind.NOTIFY_WORKFLOW.value,
        "channel": "email",
        "payload": {"call_status": "Left Message"},
        "attempts": 0,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _make_session() -> MagicMock:
    session = MagicMock()
    session.commit = AsyncMock()
    # MagicMock supports ``async with`` out of the box
    session.begin_nested.return_value = MagicMock()
    return session


def _make_outbox_repo(rows):
    repo = MagicMock()
    repo.claim_due = AsyncMock(return_value=rows)
    repo.mark_done = AsyncMock()
    repo.mark_failed = AsyncMock()
    return repo


def _make_lead():
    return SimpleNamespace(
        id=uuid4(), name="Jane Doe", email="jane@example.com", phone="07700900000"
    )


class TestRetryDelay:
    def test_backoff_doubles(self):
        assert retry_delay(2) == retry_delay(1) * 2
        assert retry_delay(3) == retry_delay(1) * 4

    def test_backoff_is_capped(self):
        assert retry_delay(50) == timedelta(seconds=600)


class TestDrain:
    @pytest.mark.asyncio
    async def test_empty_outbox(self):
        session = _make_session()
        repo = _make_outbox_repo([])
        with patch(f"{MODULE}.OutboxRepository", return_value=repo):
            done = await SideEffectDispatcher(AsyncMock()).drain(session)
        assert done == 0
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_success_and_failure_are_isolated(self):
        ok_row, bad_row = _make_row(), _make_row(attempts=1)
        session = _make_session()
        repo = _make_outbox_repo([ok_row, bad_row])
        dispatcher = SideEffectDispatcher(AsyncMock(), max_attempts=5)
        dispatcher._perform = AsyncMock(
            side_effect=[(True, None, False), RuntimeError("provider exploded")]
        )

        with patch(f"{MODULE}.OutboxRepository", return_value=repo):
            done = await dispatcher.drain(session)

        assert done == 1
        repo.mark_done.assert_awaited_once_with(ok_row)
        args, kwargs = repo.mark_failed.await_args
        assert args == (bad_row, "provider exploded")
        assert kwargs["give_up"] is False
        assert kwargs["retry_at"] > datetime.now(timezone.utc)
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_non_retryable_failure_gives_up(self):
        row = _make_row()
        repo = _make_outbox_repo([row])
        dispatcher = SideEffectDispatcher(AsyncMock())
        dispatcher._perform = AsyncMock(return_value=(False, "HTTP 400", False))

        with patch(f"{MODULE}.OutboxRepository", return_value=repo):
            await dispatcher.drain(_make_session())

        assert repo.mark_failed.await_args.kwargs["give_up"] is True

    @pytest.mark.asyncio
    async def test_last_attempt_gives_up(self):
        row = _make_row(attempts=2)
        repo = _make_outbox_repo([row])
        dispatcher = SideEffectDispatcher(AsyncMock(), max_attempts=3)
        dispatcher._perform = AsyncMock(return_value=(False, "timeout", True))

        with patch(f"{MODULE}.OutboxRepository", return_value=repo):
            await dispatcher.drain(_make_session())

        assert repo.mark_failed.await_args.kwargs["give_up"] is True

    @pytest.mark.asyncio
    async def test_stalled_call_times_out(self):
        async def stall(row, session):
            await asyncio.sleep(5)

        row = _make_row()
        repo = _make_outbox_repo([row])
        dispatcher = SideEffectDispatcher(AsyncMock(), timeout=0.01)
        dispatcher._perform = stall

        with patch(f"{MODULE}.OutboxRepository", return_value=repo):
            done = await dispatcher.drain(_make_session())

        assert done == 0
        args, kwargs = repo.mark_failed.await_args
        assert args[1] == "timed out"
        assert kwargs["give_up"] is False


class TestPerform:
    @pytest.mark.asyncio
    async def test_stats_update_goes_to_user_counters(self):
        booker_id = uuid4()
        user_repo = MagicMock()
        user_repo.increment_counter = AsyncMock(return_value=True)
        row = _make_row(
            kind=SideEffectKind.UPDATE_STATS.value,
            channel=None,
            payload={"booker_id": str(booker_id), "from": "Assigned", "to": "Booked"},
        )

        with patch(f"{MODULE}.UserRepository", return_value=user_repo):
            outcome = await SideEffectDispatcher(AsyncMock())._perform(row, _make_session())

        assert outcome == (True, None, False)
        user_repo.increment_counter.assert_awaited_once_with(booker_id, "bookings_made")

    @pytest.mark.asyncio
    async def test_callback_is_filed(self):
        callback_repo = MagicMock()
        callback_repo.cancel_pending_for_lead = AsyncMock(return_value=0)
        callback_repo.create = AsyncMock()
        user_id = uuid4()
        row = _make_row(
            channel="callback",
            payload={
                "call_status": "Call back",
                "user_id": str(user_id),
                "callback_time": "2025-01-05T15:30:00+00:00",
                "note": "after lunch",
            },
        )

        with patch(f"{MODULE}.CallbackRepository", return_value=callback_repo):
            outcome = await SideEffectDispatcher(AsyncMock())._perform(row, _make_session())

        assert outcome == (True, None, False)
        kwargs = callback_repo.create.await_args.kwargs
        assert kwargs["user_id"] == user_id
        assert kwargs["callback_time"] == datetime(2025, 1, 5, 15, 30, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_failed_dispatch_reports_retryability(self):
        lead_repo = MagicMock()
        lead_repo.get_by_id = AsyncMock(return_value=_make_lead())
        messaging = MagicMock()
        messaging.dispatch = AsyncMock(
            return_value=DispatchResult(success=False, error="HTTP 503", retryable=True)
        )

        with patch(f"{MODULE}.LeadRepository", return_value=lead_repo):
            outcome = await SideEffectDispatcher(messaging)._perform(_make_row(), _make_session())

        assert outcome == (False, "HTTP 503", True)

    @pytest.mark.asyncio
    async def test_deleted_lead_is_not_retried(self):
        lead_repo = MagicMock()
        lead_repo.get_by_id = AsyncMock(return_value=None)

        with patch(f"{MODULE}.LeadRepository", return_value=lead_repo):
            outcome = await SideEffectDispatcher(AsyncMock())._perform(_make_row(), _make_session())

        assert outcome == (False, "lead no longer exists", False)

    @pytest.mark.asyncio
    async def test_sent_email_is_logged_as_message(self):
        lead = _make_lead()
        lead_repo = MagicMock()
        lead_repo.get_by_id = AsyncMock(return_value=lead)
        message_repo = MagicMock()
        message_repo.create = AsyncMock()
        messaging = MagicMock()
        messaging.dispatch = AsyncMock(
            return_value=DispatchResult(success=True, provider_id="msg-1")
        )

        with patch(f"{MODULE}.LeadRepository", return_value=lead_repo), patch(
            f"{MODULE}.MessageRepository", return_value=message_repo
        ):
            outcome = await SideEffectDispatcher(messaging)._perform(_make_row(), _make_session())

        assert outcome == (True, None, False)
        kwargs = message_repo.create.await_args.kwargs
        assert kwargs["lead_id"] == lead.id
        assert kwargs["status"] == "sent"
        assert kwargs["provider_id"] == "msg-1"


class TestHttpMessagingService:
    @pytest.mark.asyncio
    async def test_successful_dispatch(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"provider_id": "abc", "channel": "email"})

        service = HttpMessagingService(
            base_url="http://messaging.test/",
            token="secret",
            transport=httpx.MockTransport(handler),
        )
        result = await service.dispatch(
            SideEffectKind.NOTIFY_WORKFLOW, _make_lead(), {"channel": "email"}
        )

        assert result.success
        assert result.provider_id == "abc"
        assert seen["path"] == "/dispatch"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["kind"] == "NOTIFY_WORKFLOW"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code, retryable",
        [(400, False), (404, False), (429, True), (502, True)],
    )
    async def test_http_errors(self, status_code, retryable):
        service = HttpMessagingService(
            base_url="http://messaging.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(status_code)),
        )
        result = await service.dispatch(SideEffectKind.NOTIFY_WORKFLOW, _make_lead(), {})

        assert not result.success
        assert result.error == f"HTTP {status_code}"
        assert result.retryable is retryable

    @pytest.mark.asyncio
    async def test_unreachable_provider_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        service = HttpMessagingService(
            base_url="http://messaging.test", transport=httpx.MockTransport(handler)
        )
        result = await service.dispatch(SideEffectKind.NOTIFY_WORKFLOW, _make_lead(), {})

        assert not result.success
        assert result.retryable

    @pytest.mark.asyncio
    async def test_not_configured(self):
        result = await HttpMessagingService(base_url="").dispatch(
            SideEffectKind.SEND_BOOKING_CONFIRMATION, _make_lead(), {"channel": "sms"}
        )
        assert not result.success
        assert result.retryable is False
        assert result.channel == "sms"


class TestStatsAggregator:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "to_status, column",
        [(LeadStatus.BOOKED, "bookings_made"), (LeadStatus.ATTENDED, "show_ups")],
    )
    async def test_counted_statuses(self, to_status, column):
        user_repo = MagicMock()
        user_repo.increment_counter = AsyncMock(return_value=True)
        booker_id = uuid4()

        moved = await StatsAggregator(user_repo).on_status_change(
            booker_id, LeadStatus.ASSIGNED, to_status
        )

        assert moved is True
        user_repo.increment_counter.assert_awaited_once_with(booker_id, column)

    @pytest.mark.asyncio
    async def test_cancellation_does_not_decrement(self):
        user_repo = MagicMock()
        user_repo.increment_counter = AsyncMock()

        moved = await StatsAggregator(user_repo).on_status_change(
            uuid4(), LeadStatus.BOOKED, LeadStatus.CANCELLED
        )

        assert moved is False
        user_repo.increment_counter.assert_not_awaited()


class TestCallbackScheduler:
    @pytest.mark.asyncio
    async def test_replaces_pending_reminder(self):
        callback_repo = MagicMock()
        callback_repo.cancel_pending_for_lead = AsyncMock(return_value=1)
        callback_repo.create = AsyncMock(return_value="reminder")
        lead_id, user_id = uuid4(), uuid4()
        when = datetime(2025, 1, 5, 15, 30, tzinfo=timezone.utc)

        reminder = await CallbackScheduler(callback_repo).schedule_callback(
            lead_id, user_id, when, "after lunch"
        )

        assert reminder == "reminder"
        callback_repo.cancel_pending_for_lead.assert_awaited_once_with(lead_id, user_id)
        kwargs = callback_repo.create.await_args.kwargs
        assert kwargs["status"] == ReminderStatus.PENDING.value
        assert kwargs["callback_time"] == when

"""Tests for the lead orchestration services (transition + intake)."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.orm.exc import StaleDataError

from bookings_crm.core.exceptions import (
    ConcurrentUpdateError,
    DuplicateLeadError,
    LeadNotFoundError,
    LeadPermissionError,
)
from bookings_crm.schemas.common import (
    AuditAction,
    CallStatus,
    LeadStatus,
    SideEffectKind,
    UserRole,
)
from bookings_crm.schemas.lead import Actor, LeadChange, LeadCreateRequest
from bookings_crm.services.lead_intake_service import LeadIntakeService
from bookings_crm.services.lead_transition_service import LeadTransitionService
from bookings_crm.services.request_guard import DUPLICATE_REQUEST_MESSAGE, RequestGuard

NOW = datetime(2025, 1, 5, 9, 0, tzinfo=timezone.utc)


def _make_row(**overrides):
    """Create a lightweight stand-in for a ``Lead`` ORM row."""
    fields = {
        "id": uuid4(),
        "name": "Jane Doe",
        "phone": "07700 900000",
        "email": "jane@example.com",
        "postcode": None,
        "notes": None,
        "status": "New",
        "booking_status": None,
        "call_status": None,
        "booker_id": None,
        "date_booked": None,
        "time_booked": None,
        "booking_slot": None,
        "is_confirmed": None,
        "has_sale": 0,
        "ever_booked": False,
        "reject_reason": None,
        "created_at": NOW - timedelta(days=1),
        "assigned_at": None,
        "booked_at": None,
        "rejected_at": None,
        "cancelled_at": None,
        "completed_at": None,
        "updated_at": NOW - timedelta(days=1),
        "version": 1,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _make_actor(role: UserRole = UserRole.ADMIN) -> Actor:
    return Actor(id=uuid4(), name=f"{role.value} user", role=role)


def _make_repos(row=None):
    lead_repo = AsyncMock()
    lead_repo.get_by_id = AsyncMock(return_value=row)
    lead_repo.find_identity_matches = AsyncMock(return_value=[])
    lead_repo.create = AsyncMock(side_effect=lambda **kw: _make_row(**kw))
    audit_repo = AsyncMock()
    audit_repo.list_for_lead = AsyncMock(return_value=[])
    outbox_repo = AsyncMock()
    return lead_repo, audit_repo, outbox_repo


# ---------------------------------------------------------------------------
# LeadTransitionService
# ---------------------------------------------------------------------------


class TestApplyChange:
    @pytest.mark.asyncio
    async def test_writes_lead_then_history(self):
        row = _make_row()
        lead_repo, audit_repo, outbox_repo = _make_repos(row)
        booker_id = uuid4()

        result = await LeadTransitionService().apply_change(
            row.id, LeadChange(booker_id=booker_id), _make_actor(),
            lead_repo, audit_repo, outbox_repo,
        )

        state = lead_repo.apply_state.await_args.args[1]
        assert state.status == LeadStatus.ASSIGNED
        assert state.booker_id == booker_id
        lead_repo.commit.assert_awaited_once()
        appended = audit_repo.append.await_args.args[0]
        assert {e.action for e in appended} == {
            AuditAction.LEAD_ASSIGNED,
            AuditAction.STATUS_CHANGE,
        }
        assert result["audit_recorded"] is True
        assert result["kind"] == "STATUS_CHANGE"

    @pytest.mark.asyncio
    async def test_side_effects_go_to_outbox(self):
        row = _make_row(status="Assigned", booker_id=uuid4())
        lead_repo, audit_repo, outbox_repo = _make_repos(row)

        result = await LeadTransitionService().apply_change(
            row.id, LeadChange(call_status=CallStatus.NO_ANSWER), _make_actor(),
            lead_repo, audit_repo, outbox_repo,
        )

        effect = outbox_repo.enqueue.await_args.args[1]
        assert effect.kind == SideEffectKind.NOTIFY_WORKFLOW
        assert result["email_scheduled"] is True
        assert result["callback_scheduled"] is False

    @pytest.mark.asyncio
    async def test_history_failure_does_not_fail_transition(self):
        row = _make_row()
        lead_repo, audit_repo, outbox_repo = _make_repos(row)
        audit_repo.append = AsyncMock(side_effect=RuntimeError("audit table locked"))

        result = await LeadTransitionService().apply_change(
            row.id, LeadChange(notes="Prefers mornings"), _make_actor(),
            lead_repo, audit_repo, outbox_repo,
        )

        lead_repo.commit.assert_awaited_once()
        audit_repo.rollback.assert_awaited_once()
        assert result["audit_recorded"] is False

    @pytest.mark.asyncio
    async def test_stale_write_is_retried_on_fresh_row(self):
        row = _make_row()
        lead_repo, audit_repo, outbox_repo = _make_repos(row)
        lead_repo.commit = AsyncMock(side_effect=[StaleDataError("stale"), None])

        await LeadTransitionService(max_attempts=3).apply_change(
            row.id, LeadChange(notes="n"), _make_actor(),
            lead_repo, audit_repo, outbox_repo,
        )

        assert lead_repo.commit.await_count == 2
        lead_repo.rollback.assert_awaited_once()
        refresh_flags = [c.kwargs["refresh"] for c in lead_repo.get_by_id.await_args_list]
        assert refresh_flags == [False, True]

    @pytest.mark.asyncio
    async def test_persistent_conflict_raises(self):
        row = _make_row()
        lead_repo, audit_repo, outbox_repo = _make_repos(row)
        lead_repo.commit = AsyncMock(side_effect=StaleDataError("stale"))

        with pytest.raises(ConcurrentUpdateError):
            await LeadTransitionService(max_attempts=2).apply_change(
                row.id, LeadChange(notes="n"), _make_actor(),
                lead_repo, audit_repo, outbox_repo,
            )
        assert lead_repo.commit.await_count == 2
        audit_repo.append.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_lead(self):
        lead_repo, audit_repo, outbox_repo = _make_repos(None)
        with pytest.raises(LeadNotFoundError):
            await LeadTransitionService().apply_change(
                uuid4(), LeadChange(notes="n"), _make_actor(),
                lead_repo, audit_repo, outbox_repo,
            )

    @pytest.mark.asyncio
    async def test_permission_failure_writes_nothing(self):
        row = _make_row(status="Assigned", booker_id=uuid4())
        lead_repo, audit_repo, outbox_repo = _make_repos(row)

        with pytest.raises(LeadPermissionError):
            await LeadTransitionService().apply_change(
                row.id, LeadChange(notes="n"), _make_actor(UserRole.BOOKER),
                lead_repo, audit_repo, outbox_repo,
            )
        lead_repo.apply_state.assert_not_awaited()
        lead_repo.commit.assert_not_awaited()


# ---------------------------------------------------------------------------
# LeadIntakeService
# ---------------------------------------------------------------------------


def _make_intake() -> LeadIntakeService:
    return LeadIntakeService(guard=RequestGuard(window_seconds=5, retention_seconds=60))


class TestCreateLead:
    @pytest.mark.asyncio
    async def test_plain_create(self):
        lead_repo, audit_repo, outbox_repo = _make_repos()

        result = await _make_intake().create_lead(
            LeadCreateRequest(name="Jane Doe", phone="07700 900000"),
            _make_actor(), lead_repo, audit_repo, outbox_repo,
        )

        assert result["is_duplicate"] is False
        assert result["merged"] is False
        assert result["lead"].status == "New"
        lead_repo.commit.assert_awaited_once()
        audit_repo.append.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_double_submit_is_collapsed(self):
        lead_repo, audit_repo, outbox_repo = _make_repos()
        service = _make_intake()
        actor = _make_actor()
        request = LeadCreateRequest(name="Jane Doe", phone="07700 900000")

        await service.create_lead(request, actor, lead_repo, audit_repo, outbox_repo)
        second = await service.create_lead(request, actor, lead_repo, audit_repo, outbox_repo)

        assert second == {"is_duplicate": True, "message": DUPLICATE_REQUEST_MESSAGE}
        assert lead_repo.create.await_count == 1

    @pytest.mark.asyncio
    async def test_create_with_booking_records_initial_booking(self):
        lead_repo, audit_repo, outbox_repo = _make_repos()
        booker_id = uuid4()

        result = await _make_intake().create_lead(
            LeadCreateRequest(
                name="Jane Doe",
                phone="07700 900000",
                booker_id=booker_id,
                date_booked=datetime(2025, 1, 10, 14, tzinfo=timezone.utc),
            ),
            _make_actor(), lead_repo, audit_repo, outbox_repo,
        )

        state = lead_repo.apply_state.await_args.args[1]
        assert state.status == LeadStatus.BOOKED
        assert state.ever_booked is True
        assert state.assigned_at is not None
        actions = [e.action for e in audit_repo.append.await_args.args[0]]
        assert actions.count(AuditAction.INITIAL_BOOKING) == 1
        assert result["kind"] == "INITIAL_BOOKING"

    @pytest.mark.asyncio
    async def test_booker_creates_for_themselves(self):
        lead_repo, audit_repo, outbox_repo = _make_repos()
        booker = _make_actor(UserRole.BOOKER)

        await _make_intake().create_lead(
            LeadCreateRequest(name="Jane Doe"), booker, lead_repo, audit_repo, outbox_repo
        )

        state = lead_repo.apply_state.await_args.args[1]
        assert state.booker_id == booker.id
        assert state.status == LeadStatus.ASSIGNED

    @pytest.mark.asyncio
    async def test_viewer_cannot_create(self):
        lead_repo, audit_repo, outbox_repo = _make_repos()
        with pytest.raises(LeadPermissionError):
            await _make_intake().create_lead(
                LeadCreateRequest(name="Jane Doe"),
                _make_actor(UserRole.VIEWER), lead_repo, audit_repo, outbox_repo,
            )

    @pytest.mark.asyncio
    async def test_existing_phone_without_booking_conflicts(self):
        lead_repo, audit_repo, outbox_repo = _make_repos()
        lead_repo.find_identity_matches = AsyncMock(return_value=[_make_row()])

        with pytest.raises(DuplicateLeadError):
            await _make_intake().create_lead(
                LeadCreateRequest(name="Jane Doe", phone="07700900000"),
                _make_actor(), lead_repo, audit_repo, outbox_repo,
            )
        lead_repo.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_booking_for_existing_lead_is_merged(self):
        existing = _make_row(status="Assigned", booker_id=uuid4(), assigned_at=NOW)
        lead_repo, audit_repo, outbox_repo = _make_repos(existing)
        lead_repo.find_identity_matches = AsyncMock(return_value=[existing])

        result = await _make_intake().create_lead(
            LeadCreateRequest(
                name="Jane Doe",
                phone="07700 900000",
                date_booked=datetime(2025, 1, 10, 14, tzinfo=timezone.utc),
            ),
            _make_actor(), lead_repo, audit_repo, outbox_repo,
        )

        assert result["merged"] is True
        lead_repo.create.assert_not_awaited()
        state = lead_repo.apply_state.await_args.args[1]
        assert state.status == LeadStatus.BOOKED
        assert state.booker_id == existing.booker_id

    @pytest.mark.asyncio
    async def test_booker_merge_keeps_another_bookers_lead(self):
        owner = uuid4()
        existing = _make_row(status="Assigned", booker_id=owner, assigned_at=NOW)
        lead_repo, audit_repo, outbox_repo = _make_repos(existing)
        lead_repo.find_identity_matches = AsyncMock(return_value=[existing])
        booker = _make_actor(UserRole.BOOKER)

        result = await _make_intake().create_lead(
            LeadCreateRequest(
                name="Jane Doe",
                phone="07700 900000",
                booker_id=booker.id,
                date_booked=datetime(2025, 1, 10, 14, tzinfo=timezone.utc),
            ),
            booker, lead_repo, audit_repo, outbox_repo,
        )

        assert result["merged"] is True
        state = lead_repo.apply_state.await_args.args[1]
        assert state.status == LeadStatus.BOOKED
        assert state.booker_id == owner

    @pytest.mark.asyncio
    async def test_booker_merge_claims_unowned_lead(self):
        existing = _make_row(status="New")
        lead_repo, audit_repo, outbox_repo = _make_repos(existing)
        lead_repo.find_identity_matches = AsyncMock(return_value=[existing])
        booker = _make_actor(UserRole.BOOKER)

        await _make_intake().create_lead(
            LeadCreateRequest(
                name="Jane Doe",
                phone="07700 900000",
                date_booked=datetime(2025, 1, 10, 14, tzinfo=timezone.utc),
            ),
            booker, lead_repo, audit_repo, outbox_repo,
        )

        state = lead_repo.apply_state.await_args.args[1]
        assert state.booker_id == booker.id

    @pytest.mark.asyncio
    async def test_admin_merge_reassigns_to_named_booker(self):
        existing = _make_row(status="Assigned", booker_id=uuid4(), assigned_at=NOW)
        lead_repo, audit_repo, outbox_repo = _make_repos(existing)
        lead_repo.find_identity_matches = AsyncMock(return_value=[existing])
        new_owner = uuid4()

        await _make_intake().create_lead(
            LeadCreateRequest(
                name="Jane Doe",
                phone="07700 900000",
                booker_id=new_owner,
                date_booked=datetime(2025, 1, 10, 14, tzinfo=timezone.utc),
            ),
            _make_actor(), lead_repo, audit_repo, outbox_repo,
        )

        state = lead_repo.apply_state.await_args.args[1]
        assert state.booker_id == new_owner

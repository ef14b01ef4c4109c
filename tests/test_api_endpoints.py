"""HTTP-level tests: routing, CORS, and the error-to-status mapping.

Repositories and services are swapped out through
``app.dependency_overrides``; nothing here touches Postgres or Redis.
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from bookings_crm.api import deps
from bookings_crm.core.exceptions import (
    ConcurrentUpdateError,
    DegradedServiceError,
    LeadPermissionError,
)
from bookings_crm.main import app
from bookings_crm.schemas.common import QuickStatusButton, UserRole
from bookings_crm.schemas.lead import Actor

NOW = datetime(2025, 1, 5, 9, 0, tzinfo=timezone.utc)


def _make_actor(role: UserRole = UserRole.ADMIN) -> Actor:
    return Actor(id=uuid4(), name=f"{role.value} user", role=role)


def _make_lead(**overrides):
    fields = {
        "id": uuid4(),
        "name": "Jane Doe",
        "phone": "07700900000",
        "email": None,
        "status": "Assigned",
        "booker_id": uuid4(),
        "created_at": NOW,
        "updated_at": NOW,
        "version": 1,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _provide(value):
    return lambda: value


def _override(actor: Actor, **services):
    """Install overrides for the acting user, the repositories and any
    services passed by keyword; returns the repository mocks."""
    repos = {
        deps.get_lead_repo: AsyncMock(),
        deps.get_audit_repo: AsyncMock(),
        deps.get_outbox_repo: AsyncMock(),
        deps.get_message_repo: AsyncMock(),
        deps.get_user_repo: AsyncMock(),
        deps.get_callback_repo: AsyncMock(),
    }
    for dependency, repo in repos.items():
        app.dependency_overrides[dependency] = _provide(repo)
    app.dependency_overrides[deps.get_current_actor] = _provide(actor)
    app.dependency_overrides[deps.get_redis_client] = _provide(None)
    for name, service in services.items():
        app.dependency_overrides[getattr(deps, name)] = _provide(service)
    return SimpleNamespace(
        lead=repos[deps.get_lead_repo],
        audit=repos[deps.get_audit_repo],
        message=repos[deps.get_message_repo],
        user=repos[deps.get_user_repo],
    )


def _transition_result(lead, **extra):
    return {"lead": lead, "kind": "STATUS_CHANGE", "audit_recorded": True, **extra}


class TestHealthEndpoint:
    @pytest.mark.asyncio
    async def test_health_returns_ok(self, async_client):
        response = await async_client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestCORSMiddleware:
    @pytest.mark.asyncio
    async def test_cors_headers_on_preflight(self, async_client):
        response = await async_client.options(
            "/api/v1/health",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
            },
        )
        assert "access-control-allow-origin" in response.headers

    @pytest.mark.asyncio
    async def test_cors_returns_configured_origin(self, async_client):
        response = await async_client.get(
            "/api/v1/health", headers={"Origin": "http://localhost:3000"}
        )
        assert response.headers.get("access-control-allow-origin") == "http://localhost:3000"


class TestValidationErrorFormat:
    @pytest.mark.asyncio
    async def test_empty_create_body_returns_422(self, async_client):
        _override(_make_actor())
        response = await async_client.post("/api/v1/leads", json={})
        assert response.status_code == 422
        body = response.json()
        assert body["type"] == "validation_error"
        assert "errors" in body

    @pytest.mark.asyncio
    async def test_unknown_status_filter_returns_422(self, async_client):
        _override(_make_actor(), get_filter_planner=AsyncMock())
        response = await async_client.get("/api/v1/leads", params={"status": "Sold"})
        assert response.status_code == 422
        assert response.json()["type"] == "invalid_lead_change"

    @pytest.mark.asyncio
    async def test_inverted_date_range_returns_422(self, async_client):
        _override(_make_actor(), get_filter_planner=AsyncMock())
        response = await async_client.get(
            "/api/v1/leads",
            params={"date_from": "2025-02-01T00:00:00Z", "date_to": "2025-01-01T00:00:00Z"},
        )
        assert response.status_code == 422


class TestLeadEndpoints:
    @pytest.mark.asyncio
    async def test_get_lead(self, async_client):
        lead = _make_lead()
        repos = _override(_make_actor())
        repos.lead.get_by_id = AsyncMock(return_value=lead)

        response = await async_client.get(f"/api/v1/leads/{lead.id}")

        assert response.status_code == 200
        assert response.json()["id"] == str(lead.id)

    @pytest.mark.asyncio
    async def test_other_bookers_lead_is_hidden(self, async_client):
        lead = _make_lead()
        repos = _override(_make_actor(UserRole.BOOKER))
        repos.lead.get_by_id = AsyncMock(return_value=lead)

        response = await async_client.get(f"/api/v1/leads/{lead.id}")

        assert response.status_code == 404
        assert response.json()["type"] == "lead_not_found"

    @pytest.mark.asyncio
    async def test_quick_status_builds_change(self, async_client):
        lead = _make_lead(status="Booked")
        service = AsyncMock()
        service.apply_change = AsyncMock(return_value=_transition_result(lead))
        _override(_make_actor(), get_lead_transition_service=service)

        response = await async_client.post(
            f"/api/v1/leads/{lead.id}/quick-status", json={"button": "Confirm"}
        )

        assert response.status_code == 200
        change = service.apply_change.await_args.args[1]
        assert change.quick_status == QuickStatusButton.CONFIRM
        assert response.json()["lead"]["status"] == "Booked"

    @pytest.mark.asyncio
    async def test_permission_error_maps_to_403(self, async_client):
        service = AsyncMock()
        service.apply_change = AsyncMock(side_effect=LeadPermissionError("nope"))
        _override(_make_actor(UserRole.VIEWER), get_lead_transition_service=service)

        response = await async_client.post(
            f"/api/v1/leads/{uuid4()}/reject", json={"reason": "spam"}
        )

        assert response.status_code == 403
        assert response.json() == {"detail": "nope", "type": "permission_denied"}

    @pytest.mark.asyncio
    async def test_concurrent_update_maps_to_409(self, async_client):
        service = AsyncMock()
        service.apply_change = AsyncMock(side_effect=ConcurrentUpdateError())
        _override(_make_actor(), get_lead_transition_service=service)

        response = await async_client.patch(
            f"/api/v1/leads/{uuid4()}/status", json={"notes": "x"}
        )

        assert response.status_code == 409
        assert response.json()["type"] == "concurrent_update"

    @pytest.mark.asyncio
    async def test_degraded_storage_maps_to_503(self, async_client):
        planner = AsyncMock()
        planner.plan = lambda request, actor: SimpleNamespace()
        planner.execute = AsyncMock(side_effect=DegradedServiceError())
        _override(_make_actor(), get_filter_planner=planner)

        response = await async_client.get("/api/v1/leads")

        assert response.status_code == 503
        assert response.json()["type"] == "service_degraded"

    @pytest.mark.asyncio
    async def test_assign_to_unknown_user(self, async_client):
        repos = _override(_make_actor(), get_lead_transition_service=AsyncMock())
        repos.user.get_by_id = AsyncMock(return_value=None)

        response = await async_client.post(
            f"/api/v1/leads/{uuid4()}/assign", json={"booker_id": str(uuid4())}
        )

        assert response.status_code == 404
        assert response.json()["type"] == "user_not_found"


class TestTagEndpoints:
    @pytest.mark.asyncio
    async def test_get_tags(self, async_client):
        lead = _make_lead(tags=["vip", "studio"])
        repos = _override(_make_actor())
        repos.lead.get_by_id = AsyncMock(return_value=lead)

        response = await async_client.get(f"/api/v1/leads/{lead.id}/tags")

        assert response.status_code == 200
        assert response.json() == {"lead_id": str(lead.id), "tags": ["vip", "studio"]}

    @pytest.mark.asyncio
    async def test_viewer_cannot_read_another_bookers_tags(self, async_client):
        lead = _make_lead(tags=["vip"])
        repos = _override(_make_actor(UserRole.VIEWER))
        repos.lead.get_by_id = AsyncMock(return_value=lead)

        response = await async_client.get(f"/api/v1/leads/{lead.id}/tags")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_add_tag_builds_change(self, async_client):
        lead = _make_lead(tags=["vip"])
        service = AsyncMock()
        service.apply_change = AsyncMock(
            return_value=_transition_result(lead, kind="TAG_ADDED")
        )
        _override(_make_actor(), get_lead_transition_service=service)

        response = await async_client.post(
            f"/api/v1/leads/{lead.id}/tags", json={"tag": "  vip "}
        )

        assert response.status_code == 200
        change = service.apply_change.await_args.args[1]
        assert change.add_tags == ["vip"]
        assert response.json()["kind"] == "TAG_ADDED"
        assert response.json()["lead"]["tags"] == ["vip"]

    @pytest.mark.asyncio
    async def test_blank_tag_returns_422(self, async_client):
        _override(_make_actor(), get_lead_transition_service=AsyncMock())
        response = await async_client.post(f"/api/v1/leads/{uuid4()}/tags", json={"tag": "  "})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_remove_tag_builds_change(self, async_client):
        lead = _make_lead()
        service = AsyncMock()
        service.apply_change = AsyncMock(
            return_value=_transition_result(lead, kind="TAG_REMOVED")
        )
        _override(_make_actor(), get_lead_transition_service=service)

        response = await async_client.delete(f"/api/v1/leads/{lead.id}/tags/vip")

        assert response.status_code == 200
        assert service.apply_change.await_args.args[1].remove_tags == ["vip"]

    @pytest.mark.asyncio
    async def test_replace_tags_builds_change(self, async_client):
        lead = _make_lead(tags=["studio"])
        service = AsyncMock()
        service.apply_change = AsyncMock(return_value=_transition_result(lead))
        _override(_make_actor(), get_lead_transition_service=service)

        response = await async_client.put(
            f"/api/v1/leads/{lead.id}/tags", json={"tags": ["studio", "studio", " "]}
        )

        assert response.status_code == 200
        assert service.apply_change.await_args.args[1].tags == ["studio"]


class TestDeleteLead:
    @pytest.mark.asyncio
    async def test_only_admins_delete(self, async_client):
        repos = _override(_make_actor(UserRole.BOOKER))
        response = await async_client.delete(f"/api/v1/leads/{uuid4()}")
        assert response.status_code == 403
        repos.lead.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_lead(self, async_client):
        repos = _override(_make_actor())
        repos.lead.delete = AsyncMock(return_value=False)
        response = await async_client.delete(f"/api/v1/leads/{uuid4()}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_commits(self, async_client):
        lead_id = uuid4()
        repos = _override(_make_actor())
        repos.lead.delete = AsyncMock(return_value=True)

        response = await async_client.delete(f"/api/v1/leads/{lead_id}")

        assert response.status_code == 200
        assert response.json() == {"success": True, "lead_id": str(lead_id)}
        repos.lead.commit.assert_awaited_once()


class TestHistoryEndpoint:
    @pytest.mark.asyncio
    async def test_history_merges_messages(self, async_client):
        lead = _make_lead()
        repos = _override(_make_actor())
        repos.lead.get_by_id = AsyncMock(return_value=lead)
        repos.audit.list_for_lead = AsyncMock(return_value=[])
        repos.message.list_for_lead = AsyncMock(
            return_value=[
                SimpleNamespace(
                    lead_id=lead.id,
                    type="sms",
                    status="received",
                    subject=None,
                    body="Can we move it?",
                    sent_by=None,
                    created_at=NOW,
                )
            ]
        )

        response = await async_client.get(f"/api/v1/leads/{lead.id}/history")

        assert response.status_code == 200
        body = response.json()
        assert len(body["entries"]) == 1
        assert body["entries"][0]["action"] == "SMS_RECEIVED"
        assert body["unread_count"] == 0

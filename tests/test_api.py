"""HTTP tests for the SLA router."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from civic_sla.config import settings
from civic_sla.core import ConcurrentUpdateException
from civic_sla.infrastructure.database import get_session
from civic_sla.main import create_app
from civic_sla.sla.application import SLAService
from civic_sla.sla.infrastructure import SQLAlchemyIssueRepository, StaticConfigProvider
from civic_sla.sla.interfaces.controllers import get_sla_service

MISSING_ID = "00000000-0000-0000-0000-000000000000"


def _hours_ago(hours: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()


@pytest.fixture
def app(session_factory):
    application = create_app()

    async def override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_session] = override_session
    return application


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _register(client, **overrides) -> dict:
    payload = {
        "title": "Burst water main on MG Road",
        "category": "water",
        "priority": "urgent",
        "city": "Bengaluru",
        "assigned_to": "Water Department",
    }
    payload.update(overrides)
    response = await client.post("/sla/issues", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


class TestIssueEndpoints:
    async def test_register_issue(self, client):
        body = await _register(client, created_at="2024-01-15T10:00:00Z")

        assert body["priority"] == "urgent"
        assert body["escalation_level"] == 0
        assert body["sla_breached"] is False
        assert body["escalation_history"] == []
        assert body["sla_deadline"].startswith("2024-01-16T10:00:00")

    async def test_register_rejects_unknown_category(self, client):
        response = await client.post("/sla/issues", json={"title": "x", "category": "aliens"})
        assert response.status_code == 422

    async def test_progress(self, client):
        issue = await _register(client, created_at=_hours_ago(13))

        response = await client.get(f"/sla/issues/{issue['id']}")

        assert response.status_code == 200
        body = response.json()
        assert body["escalation_level"] == 1
        assert 54 <= body["progress"] <= 55
        assert body["time_remaining_formatted"].startswith("10h")

    async def test_progress_not_found(self, client):
        response = await client.get(f"/sla/issues/{MISSING_ID}")

        assert response.status_code == 404
        assert response.json()["error_type"] == "ResourceNotFoundException"
        assert "X-Correlation-ID" in response.headers

    async def test_set_priority(self, client):
        issue = await _register(client, created_at="2024-01-15T10:00:00Z")

        response = await client.put(
            f"/sla/issues/{issue['id']}/priority", json={"priority": "Low", "actor": "officer-1"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["changed"] is True
        assert body["priority"] == "low"
        assert body["sla_deadline"].startswith("2024-01-29T10:00:00")

    async def test_set_unknown_priority(self, client):
        issue = await _register(client)

        response = await client.put(f"/sla/issues/{issue['id']}/priority", json={"priority": "critical"})

        assert response.status_code == 422
        assert response.json()["error_type"] == "ValidationException"

    async def test_set_priority_conflict(self, app, client, db):
        issue = await _register(client)

        class AlwaysConflicting(SQLAlchemyIssueRepository):
            async def apply_changes(self, issue_id, expected_version, changes):
                raise ConcurrentUpdateException(issue_id, expected_version)

        app.dependency_overrides[get_sla_service] = lambda: SLAService(
            AlwaysConflicting(db), StaticConfigProvider()
        )

        response = await client.put(f"/sla/issues/{issue['id']}/priority", json={"priority": "low"})

        assert response.status_code == 409
        assert response.json()["retryable"] is True

    async def test_manual_escalation(self, client):
        issue = await _register(client, created_at=_hours_ago(21))

        response = await client.post(
            f"/sla/issues/{issue['id']}/escalate",
            json={"actor": "officer-7", "reason": "Citizen follow-up"}
        )

        assert response.status_code == 200
        assert response.json()["escalated"] is True
        assert response.json()["new_level"] == 2

        progress = (await client.get(f"/sla/issues/{issue['id']}")).json()
        assert progress["escalation_history"][0]["escalated_by"] == "officer-7"

    async def test_status_update(self, client):
        issue = await _register(client)

        response = await client.patch(f"/sla/issues/{issue['id']}/status", json={"status": "resolved"})

        assert response.status_code == 200
        assert response.json()["status"] == "resolved"


class TestReportingEndpoints:
    async def test_sweep_and_statistics(self, client):
        await _register(client, created_at=_hours_ago(13))
        await _register(client, created_at=_hours_ago(30), assigned_to="Roads Department")
        await _register(client, priority="low")

        stats = (await client.get("/sla/statistics")).json()
        assert stats["total"] == 3
        assert stats["breached"] == 1
        assert stats["at_risk"] == 1
        assert stats["on_time"] == 1
        assert stats["escalation_levels"] == {"0": 1, "1": 1, "2": 0, "3": 1}

        scoped = (await client.get("/sla/statistics", params={"department": "Roads Department"})).json()
        assert scoped["total"] == 1

        response = await client.post("/sla/escalate")
        assert response.status_code == 200
        body = response.json()
        # Registration counts as the first check, so nothing is due yet
        assert body["total_checked"] == 0
        assert body["truncated"] is False
        assert body["failures"] == []

    async def test_overdue(self, client):
        late = await _register(client, created_at=_hours_ago(30))
        later = await _register(client, created_at=_hours_ago(40))
        await _register(client, priority="low")

        response = await client.get("/sla/overdue")

        assert response.status_code == 200
        ids = [item["issue"]["id"] for item in response.json()]
        assert ids == [later["id"], late["id"]]
        assert response.json()[0]["time_overdue_seconds"] > 0


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestUnhandledErrors:
    @pytest_asyncio.fixture
    async def failing_client(self):
        application = create_app()

        @application.get("/boom")
        async def boom():
            raise RuntimeError("database exploded")

        transport = ASGITransport(app=application, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

    async def test_debug_info_in_development(self, failing_client, monkeypatch):
        monkeypatch.setattr(settings, "environment", "development")

        response = await failing_client.get("/boom")

        assert response.status_code == 500
        body = response.json()
        assert body["detail"] == "Internal server error"
        assert body["debug_info"] == "database exploded"

    async def test_debug_info_hidden_in_production(self, failing_client, monkeypatch):
        monkeypatch.setattr(settings, "environment", "production")

        response = await failing_client.get("/boom")

        assert response.status_code == 500
        assert response.json()["debug_info"] is None

"""
API Tests

Exercises the cache administration and notification endpoints through
the FastAPI app factory.
"""

import functools
import pytest
from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from api.main import create_app
from api.notifications import notification_stream
from src.cache import CacheService


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def app(settings, cache, hub):
    return create_app(settings=settings, cache=cache, notifications=hub)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def run(client: TestClient, fn, *args, **kwargs):
    """Run a coroutine function on the app's event loop."""
    return client.portal.call(functools.partial(fn, *args, **kwargs))


# =============================================================================
# APP TESTS
# =============================================================================

class TestApp:

    def test_root(self, client):
        assert client.get("/").json()["status"] == "ok"

    def test_health(self, client):
        data = client.get("/api/health").json()
        assert data["status"] == "healthy"
        assert data["cache"] == "in-process"

    def test_injected_services_are_used(self, app, client, cache, hub):
        assert app.state.cache is cache
        assert app.state.notifications is hub

        received = []
        hub.subscribe(received.append)
        client.post("/api/notifications", json={
            "type": "system", "priority": "info", "title": "deploy", "message": "v1.2",
        })

        assert [n.title for n in received] == ["deploy"]

    def test_startup_builds_services_from_settings(self, settings):
        app = create_app(settings=settings)
        with TestClient(app) as client:
            assert isinstance(app.state.cache, CacheService)
            assert app.state.cache.backend_name == "memory"
            assert app.state.cache.cleanup_running
            assert app.state.notifications.max_notifications == 10
            assert client.get("/api/cache").status_code == 200
        assert not app.state.cache.cleanup_running


# =============================================================================
# CACHE API TESTS
# =============================================================================

class TestCacheAPI:

    def test_stats(self, client, cache):
        run(client, cache.set, "metrics:overview", {"total": 3})
        run(client, cache.get, "metrics:overview")
        run(client, cache.get, "metrics:missing")

        response = client.get("/api/cache")
        assert response.status_code == 200
        data = response.json()
        assert data["stats"]["hits"] == 1
        assert data["stats"]["misses"] == 1
        assert data["stats"]["hit_rate"] == pytest.approx(50.0)
        assert data["stats"]["backend"] == "memory"
        assert data["uptime_seconds"] >= 0
        assert data["python_version"]

    def test_health(self, client):
        data = client.get("/api/cache/health").json()
        assert data["status"] == "healthy"
        assert data["backend"] == "memory"

    def test_invalidate_by_tag(self, client, cache):
        run(client, cache.set, "metrics:sentry:7d", 1, tags=["sentry"])
        run(client, cache.set, "metrics:cicd:7d", 2, tags=["cicd"])

        response = client.delete("/api/cache", params={"tag": "sentry"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["keys_invalidated"] == 1
        assert run(client, cache.has, "metrics:sentry:7d") is False
        assert run(client, cache.has, "metrics:cicd:7d") is True

    def test_clear_all(self, client, cache):
        run(client, cache.set, "a", 1)
        response = client.delete("/api/cache", params={"all": "true"})

        assert response.status_code == 200
        assert response.json()["message"] == "All cache cleared"
        assert run(client, cache.has, "a") is False

    def test_invalidate_requires_tag_or_all(self, client):
        response = client.delete("/api/cache")
        assert response.status_code == 400

    def test_reset_stats(self, client, cache):
        run(client, cache.get, "missing")
        response = client.post("/api/cache/reset-stats")

        assert response.json()["success"] is True
        assert cache.get_stats()["misses"] == 0


# =============================================================================
# NOTIFICATION API TESTS
# =============================================================================

class TestNotificationAPI:

    def test_create(self, client, hub):
        response = client.post("/api/notifications", json={
            "type": "escalation",
            "priority": "high",
            "title": "On-call paged",
            "message": "No acknowledgement in 15 minutes",
            "actionUrl": "/incidents/42",
            "metadata": {"level": 2},
        })

        assert response.status_code == 201
        data = response.json()
        assert data["id"].startswith("notif-")
        assert data["read"] is False
        assert data["action_url"] == "/incidents/42"
        assert len(hub.get_all()) == 1

    @pytest.mark.parametrize("missing", ["type", "priority", "title", "message"])
    def test_create_rejects_missing_fields(self, client, hub, missing):
        body = {"type": "alert", "priority": "high", "title": "t", "message": "m"}
        del body[missing]

        response = client.post("/api/notifications", json=body)

        assert response.status_code == 422
        assert hub.get_all() == []

    def test_create_rejects_unknown_priority(self, client):
        response = client.post("/api/notifications", json={
            "type": "alert", "priority": "urgent", "title": "t", "message": "m",
        })
        assert response.status_code == 422

    def test_list_with_filters(self, client, hub):
        hub.alert_critical("db down", "primary unreachable")
        hub.system_info("deploy", "v1.2")
        read = hub.report_ready("weekly", "ready")
        hub.mark_as_read(read.id)

        data = client.get("/api/notifications").json()
        assert data["total"] == 3
        assert data["unread"] == 2

        data = client.get("/api/notifications", params={"unread": "true"}).json()
        assert {n["title"] for n in data["notifications"]} == {"db down", "deploy"}

        data = client.get("/api/notifications", params={"priority": "info", "unread": "true"}).json()
        assert [n["title"] for n in data["notifications"]] == ["deploy"]

        data = client.get("/api/notifications", params={"type": "alert"}).json()
        assert data["notifications"][0]["priority"] == "critical"

    def test_list_combines_type_and_priority(self, client, hub):
        hub.alert_critical("db down", "primary unreachable")
        hub.add(type="alert", priority="low", title="slow query", message="p99 2s")
        hub.escalation("paged", "no ack")

        data = client.get("/api/notifications", params={"type": "alert", "priority": "low"}).json()
        assert [n["title"] for n in data["notifications"]] == ["slow query"]
        assert data["total"] == 1

    def test_mark_read_and_read_all(self, client, hub):
        first = hub.system_info("a", "a")
        hub.system_info("b", "b")

        assert client.post(f"/api/notifications/{first.id}/read").status_code == 200
        assert hub.get(first.id).read is True

        # Unknown ids are ignored
        assert client.post("/api/notifications/notif-0-missing/read").json()["affected"] == 0

        assert client.post("/api/notifications/read-all").json()["affected"] == 1
        assert hub.unread_count() == 0

    def test_delete(self, client, hub):
        notification = hub.system_info("a", "a")

        assert client.delete(f"/api/notifications/{notification.id}").status_code == 200
        assert client.delete(f"/api/notifications/{notification.id}").status_code == 404

    def test_clear(self, client, hub):
        hub.system_info("a", "a")
        hub.system_info("b", "b")

        assert client.delete("/api/notifications").json()["affected"] == 2
        assert hub.get_all() == []


@pytest.mark.asyncio
class TestNotificationSSE:
    """The SSE endpoint streams forever, so it is driven directly."""

    async def test_stream_response(self, hub, settings):
        request = MagicMock()
        request.is_disconnected = AsyncMock(return_value=False)

        settings = settings.model_copy(update={"SSE_HEARTBEAT_SECONDS": 10})
        response = await notification_stream(request, hub=hub, settings=settings)

        assert response.media_type == "text/event-stream"
        assert response.headers["cache-control"] == "no-cache"

        body = response.body_iterator
        assert '"connected"' in await body.__anext__()

        hub.system_info("deploy", "v1.2 deployed")
        assert '"deploy"' in await body.__anext__()

        await body.aclose()
        assert hub.subscriber_count == 0

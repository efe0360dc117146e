"""
Unit Tests for API Routes

Tests the FastAPI routes end to end with TestClient: cover-letter CRUD with
cache headers, ownership checks, admin access, the metrics blocks and
the operational endpoints.
"""

import pytest

from tests.test_fixtures import RequestFactory

ALICE = RequestFactory.user_headers("alice", "pro")
BOB = RequestFactory.user_headers("bob", "pro")
ADMIN = RequestFactory.user_headers("ops", "enterprise")


def save_letter(client, headers=ALICE, **overrides) -> dict:
    response = client.post("/api/cover-letters", json=RequestFactory.save_payload(**overrides), headers=headers)
    assert response.status_code == 201
    return response.json()["coverLetter"]


@pytest.mark.unit
class TestCoverLetterRoutes:
    """Test suite for /api/cover-letters."""

    def test_save_returns_created_letter(self, app_client, repository):
        letter = save_letter(app_client, title="Platform Engineer at Initech")

        assert letter["title"] == "Platform Engineer at Initech"
        assert letter["userId"] == "alice"
        assert letter["coverLetterType"] == "professional"
        assert len(repository) == 1

    def test_save_rejects_invalid_body(self, app_client, repository):
        response = app_client.post(
            "/api/cover-letters", json=RequestFactory.save_payload(content="too short"), headers=ALICE
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert len(repository) == 0

    def test_requires_authentication(self, app_client):
        response = app_client.get("/api/cover-letters")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_list_is_cached_until_a_write(self, app_client, repository, fake_clock):
        save_letter(app_client, title="First")

        first = app_client.get("/api/cover-letters", headers=ALICE)
        second = app_client.get("/api/cover-letters", headers=ALICE)

        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        assert second.json() == first.json()

        fake_clock.advance(1)
        save_letter(app_client, title="Second")
        third = app_client.get("/api/cover-letters", headers=ALICE)

        assert third.headers["X-Cache"] == "MISS"
        titles = [letter["title"] for letter in third.json()["coverLetters"]]
        assert titles == ["Second", "First"]

    def test_list_pagination(self, app_client, fake_clock):
        for i in range(5):
            save_letter(app_client, title=f"Letter {i}")
            fake_clock.advance(1)

        response = app_client.get("/api/cover-letters", params={"page": 2, "limit": 2}, headers=ALICE)

        body = response.json()
        assert body["pagination"] == {"page": 2, "limit": 2, "total": 5, "totalPages": 3}
        assert [letter["title"] for letter in body["coverLetters"]] == ["Letter 2", "Letter 1"]

    def test_list_invalid_pagination(self, app_client):
        response = app_client.get("/api/cover-letters", params={"limit": 500}, headers=ALICE)

        assert response.status_code == 400

    def test_list_only_shows_own_letters(self, app_client):
        save_letter(app_client, headers=ALICE)
        save_letter(app_client, headers=BOB)

        body = app_client.get("/api/cover-letters", headers=BOB).json()

        assert body["pagination"]["total"] == 1
        assert body["coverLetters"][0]["userId"] == "bob"

    def test_get_own_letter(self, app_client):
        letter = save_letter(app_client)

        first = app_client.get(f"/api/cover-letters/{letter['id']}", headers=ALICE)
        second = app_client.get(f"/api/cover-letters/{letter['id']}", headers=ALICE)

        assert first.status_code == 200
        assert first.json()["coverLetter"]["id"] == letter["id"]
        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"

    def test_get_other_users_letter_is_forbidden(self, app_client):
        letter = save_letter(app_client, headers=ALICE)

        response = app_client.get(f"/api/cover-letters/{letter['id']}", headers=BOB)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_get_missing_letter(self, app_client):
        response = app_client.get("/api/cover-letters/does-not-exist", headers=ALICE)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_delete_invalidates_cache(self, app_client, cache, repository):
        letter = save_letter(app_client)
        app_client.get("/api/cover-letters", headers=ALICE)
        app_client.get(f"/api/cover-letters/{letter['id']}", headers=ALICE)

        response = app_client.delete(f"/api/cover-letters/{letter['id']}", headers=ALICE)

        assert response.status_code == 200
        assert response.json() == {"message": "Cover letter deleted successfully"}
        assert len(repository) == 0
        assert app_client.get(f"/api/cover-letters/{letter['id']}", headers=ALICE).status_code == 404
        assert app_client.get("/api/cover-letters", headers=ALICE).json()["pagination"]["total"] == 0

    def test_delete_other_users_letter_is_forbidden(self, app_client, repository):
        letter = save_letter(app_client, headers=ALICE)

        response = app_client.delete(f"/api/cover-letters/{letter['id']}", headers=BOB)

        assert response.status_code == 403
        assert len(repository) == 1

    def test_validate_generation_request(self, app_client):
        response = app_client.post(
            "/api/cover-letters/generate/validate",
            json=RequestFactory.generate_payload(),
            headers=ALICE,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert body["request"]["coverLetterType"] == "technical"

    def test_save_rate_limit(self, app_client):
        free_user = RequestFactory.user_headers("carol", "free")
        for _ in range(3):
            save_letter(app_client, headers=free_user)

        response = app_client.post("/api/cover-letters", json=RequestFactory.save_payload(), headers=free_user)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.json()["error"]["code"] == "RATE_LIMITED"

    def test_every_request_is_recorded(self, app_client, recorder):
        save_letter(app_client)
        app_client.get("/api/cover-letters")
        app_client.get("/api/cover-letters/missing", headers=ALICE)

        samples = recorder.snapshot()
        assert [s.status_code for s in samples] == [201, 401, 404]
        assert samples[2].route == "/api/cover-letters/{id}"

    def test_activity_is_recorded(self, app_client, recorder):
        letter = save_letter(app_client)
        app_client.delete(f"/api/cover-letters/{letter['id']}", headers=ALICE)

        summary = recorder.get_activity_summary(3600)

        assert summary["by_action"] == {"saved_cover_letter": 1, "deleted_cover_letter": 1}

    def test_save_records_ai_generation(self, app_client, recorder):
        save_letter(app_client, modelUsed="gpt-4o", tokensUsed=900, generationTime=1.5)

        summary = recorder.get_ai_generation_summary(3600)

        assert summary["total_generations"] == 1
        assert summary["total_tokens"] == 900
        assert summary["average_generation_time_ms"] == pytest.approx(1500.0)
        assert list(summary["by_model"]) == ["gpt-4o"]


@pytest.mark.unit
class TestAdminRoutes:
    """Test suite for /api/admin."""

    def test_metrics_forbidden_for_non_admin(self, app_client):
        response = app_client.get("/api/admin/metrics", headers=ALICE)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_metrics_dashboard(self, app_client):
        save_letter(app_client)
        app_client.get("/api/cover-letters", headers=ALICE)

        response = app_client.get("/api/admin/metrics", params={"range": "1h"}, headers=ADMIN)

        assert response.status_code == 200
        body = response.json()
        assert body["timeRange"] == 3600
        assert body["dashboard"]["total_requests"] == 2
        assert body["activity"]["by_action"] == {"saved_cover_letter": 1}
        assert body["health"]["overall"] in {"healthy", "warning", "critical"}
        assert "hit_rate" in body["cache"]
        assert isinstance(body["alerts"], list)

    def test_metrics_generation_cache_and_system_blocks(self, app_client):
        save_letter(app_client)
        app_client.get("/api/cover-letters", headers=ALICE)

        body = app_client.get("/api/admin/metrics", headers=ADMIN).json()

        assert body["aiGeneration"]["total_generations"] == 1
        assert body["aiGeneration"]["by_model"]["gpt-4o-mini"]["tokens"] == 812
        assert body["cacheOperations"]["by_operation"].keys() == {"delete", "get", "set"}
        assert body["cacheOperations"]["lookups"] == 1
        assert body["cacheOperations"]["average_response_time_ms"] >= 0.0
        assert body["system"]["memory_rss_mb"] > 0
        assert body["system"]["active_connections"] == 1
        assert "hit_rate" in body["system"]["cache"]

    def test_metrics_uses_latest_system_snapshot(self, app_client, recorder, fake_clock):
        from coverline.infrastructure.monitoring.metrics_recorder import SystemHealthSnapshot

        recorder.record_system_health(
            SystemHealthSnapshot(
                timestamp=fake_clock.now(),
                memory_rss_mb=64.0,
                memory_vms_mb=256.0,
                cpu_percent=2.0,
                threads=3,
                active_connections=7,
            )
        )

        body = app_client.get("/api/admin/metrics", headers=ADMIN).json()

        assert body["system"]["memory_rss_mb"] == 64.0
        assert body["system"]["active_connections"] == 7

    def test_metrics_invalid_range(self, app_client):
        response = app_client.get("/api/admin/metrics", params={"range": "eventually"}, headers=ADMIN)

        assert response.status_code == 400

    def test_clear_cache_action(self, app_client, cache):
        save_letter(app_client)
        app_client.get("/api/cover-letters", headers=ALICE)

        response = app_client.post("/api/admin/actions", json={"action": "clear_cache"}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["action"] == "clear_cache"
        assert response.json()["result"]["memory"] >= 1
        assert cache.get_stats()["memory_size"] == 0

    def test_reset_cache_stats_action(self, app_client, cache):
        app_client.get("/api/cover-letters", headers=ALICE)

        response = app_client.post("/api/admin/actions", json={"action": "reset_cache_stats"}, headers=ADMIN)

        assert response.json()["result"]["total_requests"] == 0

    def test_unknown_action(self, app_client):
        response = app_client.post("/api/admin/actions", json={"action": "shutdown"}, headers=ADMIN)

        assert response.status_code == 400


@pytest.mark.unit
class TestOperationalRoutes:
    """Health, Prometheus and root endpoints."""

    def test_health(self, app_client):
        response = app_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["components"]["cache"]["round_trip"] is True

    def test_health_degraded_when_remote_down(self, app_client, remote_tier):
        from coverline.core.exceptions import CacheConnectionError

        remote_tier.fail_with(CacheConnectionError("down"))

        response = app_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_health_is_not_recorded(self, app_client, recorder):
        app_client.get("/health")

        assert len(recorder) == 0

    def test_prometheus_metrics(self, app_client):
        app_client.get("/api/cover-letters", headers=ALICE)

        response = app_client.get("/metrics")

        assert response.status_code == 200
        assert "coverline_requests_total" in response.text

    def test_root(self, app_client):
        assert app_client.get("/").json()["health"] == "/health"

"""
Test Suite: HTTP Gateway
========================

Health probes, the public access/context/usage endpoints, admin
authentication and the error body shape, exercised through FastAPI's
TestClient against an in-memory store.
"""

import pytest
from fastapi.testclient import TestClient

from portfolio_guard.core.settings import (
    ContextSettings,
    NotificationSettings,
    SecuritySettings,
    Settings,
)
from portfolio_guard.gateway.app import create_app

ADMIN_TOKEN = "gateway-admin-token-0123456789abcdef"
ADMIN = {"X-Admin-Token": ADMIN_TOKEN}


def _settings(portfolio_file: str, **security) -> Settings:
    return Settings(
        environment="testing",
        security=SecuritySettings(admin_token=ADMIN_TOKEN, **security),
        notifications=NotificationSettings(batch_notifications=False),
        context=ContextSettings(portfolio_file=portfolio_file),
    )


@pytest.fixture
def portfolio_file(tmp_path, portfolio):
    path = tmp_path / "portfolio.json"
    path.write_text(portfolio.model_dump_json(), encoding="utf-8")
    return str(path)


@pytest.fixture
def client(portfolio_file, store, clock):
    app = create_app(_settings(portfolio_file), store=store, clock=clock, configure_log=False)
    with TestClient(app) as test_client:
        yield test_client


def _create_reflink(client, **payload):
    response = client.post(
        "/api/v1/admin/reflinks", json={"code": "acme-2026", **payload}, headers=ADMIN
    )
    assert response.status_code == 201
    return response.json()


class TestHealth:
    def test_liveness(self, client):
        response = client.get("/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_readiness_reports_store_and_sources(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["checks"]["store"]["status"] == "healthy"
        assert "projects" in body["checks"]["content_sources"]["details"]["registered"]

    def test_request_id_echoed(self, client):
        response = client.get("/health/live", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"


class TestAccessCheck:
    def test_admitted_with_rate_limit_headers(self, client):
        response = client.post("/api/v1/access/check", json={})
        assert response.status_code == 200
        assert response.json()["stage"] == "admitted"
        assert response.headers["X-RateLimit-Limit"] == "50"
        assert response.headers["X-RateLimit-Remaining"] == "49"

    def test_ip_identifier_cannot_be_chosen_by_client(self, client):
        client.post("/api/v1/access/check", json={"identifier": "198.51.100.1"})
        client.post("/api/v1/access/check", json={"identifier": "198.51.100.2"})

        status = client.get("/api/v1/rate-limit/status").json()
        assert status["remaining"] == 48

    def test_bot_without_accept_is_blocked(self, client):
        response = client.post(
            "/api/v1/access/check",
            json={},
            headers={"User-Agent": "Googlebot/2.1", "Accept": ""},
        )
        assert response.status_code == 403
        body = response.json()
        assert body["reason"] == "suspicious_activity"
        assert body["request_id"] == response.headers["X-Request-ID"]

    def test_unknown_reflink_is_404(self, client):
        response = client.post(
            "/api/v1/access/check",
            json={"identifier_type": "reflink", "reflink_code": "ghost-code"},
        )
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Invalid reflink code"

    def test_exhausted_window_is_429(self, client):
        _create_reflink(client, daily_limit=1)
        payload = {"identifier_type": "reflink", "reflink_code": "acme-2026"}
        assert client.post("/api/v1/access/check", json=payload).status_code == 200

        response = client.post("/api/v1/access/check", json=payload)
        assert response.status_code == 429
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert int(response.headers["Retry-After"]) > 0

    def test_blacklisted_client_refused_until_reinstated(self, client):
        response = client.post(
            "/api/v1/admin/blacklist",
            json={"ip_address": "testclient", "reason": "manual ban"},
            headers=ADMIN,
        )
        assert response.status_code == 201

        denied = client.post("/api/v1/access/check", json={})
        assert denied.status_code == 403
        assert denied.json()["reason"] == "blacklisted"

        reinstated = client.post(
            "/api/v1/admin/blacklist/testclient/reinstate",
            json={"reason": "appeal"},
            headers=ADMIN,
        )
        assert reinstated.status_code == 200
        assert client.post("/api/v1/access/check", json={}).status_code == 200


class TestTrustedProxy:
    def test_forwarded_for_honoured_from_trusted_peer(self, portfolio_file, store, clock):
        app = create_app(
            _settings(portfolio_file, trusted_proxies=["testclient"]),
            store=store,
            clock=clock,
            configure_log=False,
        )
        with TestClient(app) as client:
            forwarded = {"X-Forwarded-For": "203.0.113.4, 10.0.0.1"}
            client.post("/api/v1/access/check", json={}, headers=forwarded)
            client.post(
                "/api/v1/admin/blacklist",
                json={"ip_address": "203.0.113.4", "reason": "ban"},
                headers=ADMIN,
            )
            response = client.post(
                "/api/v1/access/check", json={}, headers={"X-Forwarded-For": "203.0.113.4"}
            )
            assert response.json()["reason"] == "blacklisted"
            assert client.post("/api/v1/access/check", json={}).status_code == 200


class TestContext:
    def test_anonymous_visitor_gets_basic_context(self, client):
        response = client.post(
            "/api/v1/context", json={"session_id": "s1", "query": "react typescript"}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["access_level"] == "basic"
        assert "hidden_context" not in body
        assert body["relevant_content"][0]["id"] == "about-main"
        assert "## React Frontend (PROJECT)" in body["initial_context"]

        stats = client.get("/api/v1/admin/context/cache", headers=ADMIN).json()
        assert stats["sessions"] == ["s1"]

    def test_reflink_visitor_gets_premium(self, client):
        _create_reflink(client, recipient_name="Dana")
        response = client.post(
            "/api/v1/context",
            json={"session_id": "s1", "query": "react", "reflink_code": "acme-2026"},
        )
        body = response.json()
        assert body["access_level"] == "premium"
        assert body["public_context"].startswith("Welcome Dana!")
        assert "X-RateLimit-Limit" in response.headers

    def test_anonymous_visitor_cannot_claim_premium(self, client):
        response = client.post(
            "/api/v1/context",
            json={
                "session_id": "s1",
                "query": "react",
                "access_level": "premium",
                "max_tokens": 100_000,
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert body["access_level"] == "basic"
        assert "ACCESS LEVEL: Premium" not in body["system_prompt"]
        assert body["capabilities"]["jobAnalysis"] is False

    def test_session_id_required(self, client):
        assert client.post("/api/v1/context", json={"query": "react"}).status_code == 422


class TestUsage:
    def test_requires_admin_token(self, client):
        assert client.post("/api/v1/usage", json={}).status_code == 401

    def test_tracks_reflink_budget(self, client):
        _create_reflink(client, token_limit=10_000)
        response = client.post(
            "/api/v1/usage",
            json={"reflink_code": "acme-2026", "tokens": 2500, "cost": "0.05"},
            headers=ADMIN,
        )
        assert response.status_code == 200
        assert response.json()["budget_status"]["tokens_remaining"] == 7500

    def test_abusive_content_recorded_against_visitor(self, client):
        for _ in range(2):
            response = client.post(
                "/api/v1/usage",
                json={"content": "How would you hack this form?"},
                headers={**ADMIN, "X-Visitor-IP": "203.0.113.8", "X-Visitor-User-Agent": "Firefox"},
            )
        assert response.json()["violation"] == {"blacklisted": True, "violation_count": 2}

        entries = client.get("/api/v1/admin/blacklist", headers=ADMIN).json()["entries"]
        assert [e["ip_address"] for e in entries] == ["203.0.113.8"]

    def test_unknown_reflink_error_body(self, client):
        response = client.post(
            "/api/v1/usage", json={"reflink_code": "ghost-code", "tokens": 1}, headers=ADMIN
        )
        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "ReflinkError"
        assert body["message"] == "Reflink not found"
        assert body["details"]["reason"] == "not_found"
        assert body["status_code"] == 404
        assert body["request_id"] == response.headers["X-Request-ID"]


class TestAdminAuth:
    def test_missing_token(self, client):
        response = client.get("/api/v1/admin/reflinks")
        assert response.status_code == 401
        assert response.json()["error"] == "Admin token required"

    def test_wrong_token(self, client):
        response = client.get("/api/v1/admin/reflinks", headers={"X-Admin-Token": "nope"})
        assert response.status_code == 403


class TestReflinkAdmin:
    def test_lifecycle(self, client):
        created = _create_reflink(client, recipient_name="Dana", daily_limit=20)
        assert created["daily_limit"] == 20
        assert created["created_by"] == "admin"

        session = client.get("/api/v1/reflinks/acme-2026").json()
        assert session["welcome_message"] == (
            "Hello Dana! You have special access to enhanced AI features."
        )
        assert "id" not in session["reflink"]
        assert "custom_context" not in session["reflink"]

        patched = client.patch(
            f"/api/v1/admin/reflinks/{created['id']}", json={"is_active": False}, headers=ADMIN
        )
        assert patched.json()["is_active"] is False

        missing = client.get("/api/v1/reflinks/acme-2026")
        assert missing.status_code == 404
        assert missing.json()["error"] == "Invalid or expired reflink"

        assert (
            client.delete(f"/api/v1/admin/reflinks/{created['id']}", headers=ADMIN).status_code
            == 204
        )
        again = client.delete(f"/api/v1/admin/reflinks/{created['id']}", headers=ADMIN)
        assert again.status_code == 404

    def test_duplicate_code_conflicts(self, client):
        _create_reflink(client)
        response = client.post("/api/v1/admin/reflinks", json={"code": "acme-2026"}, headers=ADMIN)
        assert response.status_code == 409
        assert response.json()["details"]["reason"] == "duplicate_code"

    def test_list_and_generate_code(self, client):
        _create_reflink(client)
        listed = client.get("/api/v1/admin/reflinks", headers=ADMIN).json()
        assert listed["total"] == 1

        code = client.post(
            "/api/v1/admin/reflinks/generate-code", params={"prefix": "acme"}, headers=ADMIN
        ).json()["code"]
        assert code.startswith("acme")


class TestSourceAdmin:
    def test_toggle_and_priority(self, client):
        response = client.patch(
            "/api/v1/admin/sources/projects", json={"enabled": False, "priority": 90}, headers=ADMIN
        )
        assert response.status_code == 200
        body = response.json()
        assert body["enabled"] is False
        assert body["priority"] == 90

        context = client.post(
            "/api/v1/context", json={"session_id": "s2", "query": "react typescript"}
        ).json()
        assert "(PROJECT)" not in context["initial_context"]

    def test_unknown_source(self, client):
        response = client.patch(
            "/api/v1/admin/sources/missing", json={"enabled": True}, headers=ADMIN
        )
        assert response.status_code == 404

    def test_invalid_priority(self, client):
        response = client.patch(
            "/api/v1/admin/sources/projects", json={"priority": 150}, headers=ADMIN
        )
        assert response.status_code == 400


class TestMaintenance:
    def test_cleanup_report(self, client):
        response = client.post("/api/v1/admin/maintenance/cleanup", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["errors"] == []

    def test_notifications_listed(self, client):
        client.post(
            "/api/v1/admin/blacklist",
            json={"ip_address": "198.51.100.7", "reason": "ban"},
            headers=ADMIN,
        )
        body = client.get("/api/v1/admin/notifications", headers=ADMIN).json()
        assert body["notifications"][0]["type"] == "blacklist"
        assert body["pending"] == 0

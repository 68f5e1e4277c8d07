"""Tests for the management API authentication middleware."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from accessgate_proxy.middleware.auth import (
    ManagementAPIAuthMiddleware,
    get_management_api_key,
    get_trust_proxy_headers,
)

API_KEY = "middleware-test-key"


def build_client(
    management_api_key: str | None = API_KEY,
    auth_rate_limit: int = 5,
    trust_proxy_headers: bool = False,
) -> TestClient:
    app = FastAPI()
    app.add_middleware(
        ManagementAPIAuthMiddleware,
        management_api_key=management_api_key,
        auth_rate_limit=auth_rate_limit,
        auth_rate_window_seconds=60,
        trust_proxy_headers=trust_proxy_headers,
    )

    @app.get("/api/v1/keys")
    async def keys() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/api/validate-access-key")
    async def validate() -> dict[str, bool]:
        return {"ok": True}

    return TestClient(app)


class TestGetManagementApiKey:
    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MANAGEMENT_API_KEY", "from-env")

        assert get_management_api_key() == "from-env"

    def test_not_set(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MANAGEMENT_API_KEY", raising=False)

        assert get_management_api_key() is None


class TestManagementAPIAuthMiddleware:
    def test_public_paths_pass_through(self) -> None:
        client = build_client()

        assert client.get("/api/validate-access-key").status_code == 200

    def test_valid_bearer_token(self) -> None:
        client = build_client()

        response = client.get("/api/v1/keys", headers={"Authorization": f"Bearer {API_KEY}"})

        assert response.status_code == 200
        assert response.json() == {"ok": True}

    @pytest.mark.parametrize(
        ("headers", "detail"),
        [
            ({}, "Missing Authorization header"),
            (
                {"Authorization": f"Basic {API_KEY}"},
                "Invalid Authorization header format. Expected: Bearer {api_key}",
            ),
            ({"Authorization": "Bearer wrong-key"}, "Invalid management API key"),
        ],
    )
    def test_rejected_credentials(self, headers: dict[str, str], detail: str) -> None:
        client = build_client()

        response = client.get("/api/v1/keys", headers=headers)

        assert response.status_code == 401
        assert response.json() == {"detail": detail}
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_unconfigured_key_denies_access(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MANAGEMENT_API_KEY", raising=False)
        client = build_client(management_api_key=None)

        response = client.get("/api/v1/keys", headers={"Authorization": "Bearer anything"})

        assert response.status_code == 401
        assert "not configured" in response.json()["detail"]

    def test_failed_attempts_are_rate_limited_per_forwarded_ip_behind_proxy(self) -> None:
        client = build_client(auth_rate_limit=2, trust_proxy_headers=True)
        bad = {"Authorization": "Bearer wrong-key", "X-Forwarded-For": "10.0.0.1"}

        first = client.get("/api/v1/keys", headers=bad)
        second = client.get("/api/v1/keys", headers=bad)
        limited = client.get(
            "/api/v1/keys",
            headers={"Authorization": f"Bearer {API_KEY}", "X-Forwarded-For": "10.0.0.1"},
        )
        other_ip = client.get(
            "/api/v1/keys",
            headers={"Authorization": f"Bearer {API_KEY}", "X-Forwarded-For": "10.0.0.2"},
        )

        assert [first.status_code, second.status_code] == [401, 401]
        assert limited.status_code == 429
        assert int(limited.headers["Retry-After"]) > 0
        assert other_ip.status_code == 200

    def test_rotating_forwarded_header_does_not_bypass_limit(self) -> None:
        client = build_client(auth_rate_limit=3)

        codes = [
            client.get(
                "/api/v1/keys",
                headers={"Authorization": "Bearer wrong-key", "X-Forwarded-For": f"10.0.0.{i}"},
            ).status_code
            for i in range(6)
        ]

        assert codes == [401, 401, 401, 429, 429, 429]

    def test_successful_requests_leave_no_tracking_entries(self) -> None:
        middleware = ManagementAPIAuthMiddleware(FastAPI(), management_api_key=API_KEY)

        for i in range(10):
            assert middleware._retry_after(f"10.0.0.{i}", now=1000.0) == 0

        assert middleware._failed_attempts == {}

    def test_expired_failures_are_dropped(self) -> None:
        middleware = ManagementAPIAuthMiddleware(
            FastAPI(), management_api_key=API_KEY, auth_rate_window_seconds=60
        )
        middleware._record_failure("10.0.0.1", now=1000.0)

        middleware._record_failure("10.0.0.2", now=1100.0)

        assert list(middleware._failed_attempts) == ["10.0.0.2"]
        assert middleware._retry_after("10.0.0.2", now=1200.0) == 0
        assert middleware._failed_attempts == {}


class TestTrustProxyHeaders:
    def test_disabled_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("TRUST_PROXY_HEADERS", raising=False)

        assert get_trust_proxy_headers() is False

    def test_enabled_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TRUST_PROXY_HEADERS", "true")

        assert get_trust_proxy_headers() is True

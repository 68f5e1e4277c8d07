"""Pytest configuration for the proxy tests."""

import os
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

# The auth middleware reads the key when the app builds its middleware stack.
MANAGEMENT_API_KEY = "test-management-api-key-12345"
os.environ["MANAGEMENT_API_KEY"] = MANAGEMENT_API_KEY

from accessgate_proxy import dependencies  # noqa: E402
from accessgate_proxy.main import app  # noqa: E402

_CACHED_GETTERS = (
    dependencies.get_settings,
    dependencies.get_access_key_store,
    dependencies.get_observability_manager,
    dependencies.get_notification_sink,
    dependencies.get_burst_limiter,
    dependencies.get_access_key_validator,
    dependencies.get_device_authorizer,
    dependencies.get_key_administrator,
)


def clear_dependency_caches() -> None:
    for getter in _CACHED_GETTERS:
        getter.cache_clear()


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    """A TestClient over a fresh in-memory store, without burst protection."""
    for name in ("MONGODB_URL", "ACCESSGATE_TELEGRAM_BOT_TOKEN", "ACCESSGATE_TELEGRAM_CHAT_IDS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ACCESSGATE_BURST_PROTECTION_ENABLED", "false")
    monkeypatch.setenv("ACCESSGATE_JSON_LOGS", "false")
    clear_dependency_caches()

    with TestClient(app) as test_client:
        yield test_client

    clear_dependency_caches()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {MANAGEMENT_API_KEY}"}

"""Pytest configuration and shared fixtures."""
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from dotenv import load_dotenv

from accessgate.domain.interfaces.notification_sink import (
    Notification,
    NotificationError,
    NotificationSink,
)
from accessgate.domain.interfaces.observability_manager import ObservabilityManager
from accessgate.infrastructure.state_store.memory_store import InMemoryAccessKeyStore

# Load .env file from project root before running tests
project_root = Path(__file__).parent.parent.parent.parent
for env_path in (project_root / ".env", project_root / "packages" / "core" / ".env"):
    if env_path.exists():
        load_dotenv(env_path, override=False)


class MockObservabilityManager(ObservabilityManager):
    """Records events and log calls for assertions."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []
        self.logs: list[dict[str, Any]] = []

    async def emit_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.events.append({"event_type": event_type, "payload": payload, "metadata": metadata})

    async def log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.logs.append({"level": level, "message": message, "context": context})

    def event_types(self) -> list[str]:
        return [e["event_type"] for e in self.events]


class RecordingNotificationSink(NotificationSink):
    """Collects notifications; optionally fails every delivery."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.sent: list[Notification] = []
        self._fail_with = fail_with

    async def notify(self, notification: Notification) -> None:
        if self._fail_with is not None:
            raise self._fail_with
        self.sent.append(notification)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 5, 14, 10, 0, tzinfo=UTC))


@pytest.fixture
def store() -> InMemoryAccessKeyStore:
    return InMemoryAccessKeyStore()


@pytest.fixture
def observability() -> MockObservabilityManager:
    return MockObservabilityManager()


@pytest.fixture
def notifications() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def failing_notifications() -> RecordingNotificationSink:
    return RecordingNotificationSink(fail_with=NotificationError("telegram down"))

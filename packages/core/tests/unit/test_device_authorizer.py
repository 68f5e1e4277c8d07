"""Tests for DeviceAuthorizer."""

import pytest

from accessgate.domain.components.device_authorizer import (
    ActivationResult,
    DeviceAuthorizer,
    DeviceLimitReachedError,
    DeviceNotAuthorizedError,
    DeviceNotPendingError,
)
from accessgate.domain.components.key_administrator import KeyNotFoundError
from accessgate.domain.interfaces.notification_sink import NotificationKind
from accessgate.domain.models.access_key import AccessKey, PendingDevice
from accessgate.infrastructure.utils.validation import ValidationError


@pytest.fixture
def authorizer(store, observability, notifications, clock) -> DeviceAuthorizer:
    return DeviceAuthorizer(store, observability, notification_sink=notifications, clock=clock)


class TestRequestActivation:
    @pytest.mark.asyncio
    async def test_new_device_becomes_pending(self, authorizer, store, notifications, clock) -> None:
        await store.create_key(AccessKey(key="abc123"))

        result = await authorizer.request_activation("abc123", "dev-1")

        assert result == ActivationResult.Requested
        record = await store.get_key("abc123")
        assert record.pending_devices == [PendingDevice(device_id="dev-1", requested_at=clock.now)]
        assert len(notifications.sent) == 1
        assert notifications.sent[0].kind == NotificationKind.DeviceActivationRequested
        assert notifications.sent[0].device_id == "dev-1"

    @pytest.mark.asyncio
    async def test_repeated_request_is_idempotent(self, authorizer, store, notifications) -> None:
        await store.create_key(AccessKey(key="abc123"))

        first = await authorizer.request_activation("abc123", "dev-1")
        second = await authorizer.request_activation("abc123", "dev-1")

        assert first == ActivationResult.Requested
        assert second == ActivationResult.AlreadyPending
        assert len((await store.get_key("abc123")).pending_devices) == 1
        assert len(notifications.sent) == 1

    @pytest.mark.asyncio
    async def test_authorized_device_is_left_alone(self, authorizer, store, notifications) -> None:
        await store.create_key(AccessKey(key="abc123", used_devices=["dev-1"]))

        result = await authorizer.request_activation("abc123", "dev-1")

        assert result == ActivationResult.AlreadyAuthorized
        assert (await store.get_key("abc123")).pending_devices == []
        assert notifications.sent == []

    @pytest.mark.asyncio
    async def test_unknown_key_raises(self, authorizer) -> None:
        with pytest.raises(KeyNotFoundError):
            await authorizer.request_activation("missing", "dev-1")

    @pytest.mark.asyncio
    async def test_malformed_device_id_raises(self, authorizer, store) -> None:
        await store.create_key(AccessKey(key="abc123"))

        with pytest.raises(ValidationError):
            await authorizer.request_activation("abc123", "dev 1; drop")

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_request(
        self, store, observability, failing_notifications, clock
    ) -> None:
        authorizer = DeviceAuthorizer(
            store, observability, notification_sink=failing_notifications, clock=clock
        )
        await store.create_key(AccessKey(key="abc123"))

        result = await authorizer.request_activation("abc123", "dev-1")

        assert result == ActivationResult.Requested
        assert any(
            log["level"] == "WARNING" and "telegram down" in log["message"]
            for log in observability.logs
        )


class TestAuthorizeDevice:
    @pytest.mark.asyncio
    async def test_pending_device_moves_to_used(self, authorizer, store, notifications) -> None:
        await store.create_key(
            AccessKey(key="abc123", pending_devices=[PendingDevice(device_id="dev-1")])
        )

        updated = await authorizer.authorize_device("abc123", "dev-1")

        assert updated.used_devices == ["dev-1"]
        assert updated.pending_devices == []
        assert notifications.sent[-1].kind == NotificationKind.DeviceAuthorized

    @pytest.mark.asyncio
    async def test_device_not_pending_raises(self, authorizer, store) -> None:
        await store.create_key(AccessKey(key="abc123"))

        with pytest.raises(DeviceNotPendingError):
            await authorizer.authorize_device("abc123", "dev-1")

    @pytest.mark.asyncio
    async def test_device_limit_reached(self, authorizer, store) -> None:
        await store.create_key(
            AccessKey(
                key="abc123",
                used_devices=["dev-1"],
                pending_devices=[PendingDevice(device_id="dev-2")],
            )
        )

        with pytest.raises(DeviceLimitReachedError):
            await authorizer.authorize_device("abc123", "dev-2")

        record = await store.get_key("abc123")
        assert record.used_devices == ["dev-1"]
        assert record.is_pending("dev-2")

    @pytest.mark.asyncio
    async def test_unlimited_devices(self, store, observability) -> None:
        authorizer = DeviceAuthorizer(store, observability, max_devices_per_key=0)
        await store.create_key(
            AccessKey(
                key="abc123",
                used_devices=["dev-1", "dev-2"],
                pending_devices=[PendingDevice(device_id="dev-3")],
            )
        )

        updated = await authorizer.authorize_device("abc123", "dev-3")

        assert updated.used_devices == ["dev-1", "dev-2", "dev-3"]

    @pytest.mark.asyncio
    async def test_unknown_key_raises(self, authorizer) -> None:
        with pytest.raises(KeyNotFoundError):
            await authorizer.authorize_device("missing", "dev-1")


class TestRejectAndUnauthorize:
    @pytest.mark.asyncio
    async def test_reject_removes_pending(self, authorizer, store, notifications) -> None:
        await store.create_key(
            AccessKey(key="abc123", pending_devices=[PendingDevice(device_id="dev-1")])
        )

        updated = await authorizer.reject_device("abc123", "dev-1")

        assert updated.pending_devices == []
        assert updated.used_devices == []
        assert notifications.sent[-1].kind == NotificationKind.DeviceRejected

    @pytest.mark.asyncio
    async def test_reject_without_pending_raises(self, authorizer, store) -> None:
        await store.create_key(AccessKey(key="abc123"))

        with pytest.raises(DeviceNotPendingError):
            await authorizer.reject_device("abc123", "dev-1")

    @pytest.mark.asyncio
    async def test_rejected_device_can_request_again(self, authorizer, store) -> None:
        await store.create_key(AccessKey(key="abc123"))
        await authorizer.request_activation("abc123", "dev-1")
        await authorizer.reject_device("abc123", "dev-1")

        result = await authorizer.request_activation("abc123", "dev-1")

        assert result == ActivationResult.Requested

    @pytest.mark.asyncio
    async def test_unauthorize_removes_device(self, authorizer, store) -> None:
        await store.create_key(AccessKey(key="abc123", used_devices=["dev-1"]))

        updated = await authorizer.unauthorize_device("abc123", "dev-1")

        assert updated.used_devices == []

    @pytest.mark.asyncio
    async def test_unauthorize_unknown_device_raises(self, authorizer, store) -> None:
        await store.create_key(AccessKey(key="abc123"))

        with pytest.raises(DeviceNotAuthorizedError):
            await authorizer.unauthorize_device("abc123", "dev-1")

    @pytest.mark.asyncio
    async def test_full_device_lifecycle(self, authorizer, store) -> None:
        await store.create_key(AccessKey(key="abc123"))

        await authorizer.request_activation("abc123", "dev-1")
        await authorizer.authorize_device("abc123", "dev-1")
        await authorizer.unauthorize_device("abc123", "dev-1")

        record = await store.get_key("abc123")
        assert record.used_devices == []
        assert record.pending_devices == []

"""Tests for AccessKeyValidator."""

import asyncio
from datetime import timedelta
from typing import Any

import pytest

from accessgate.domain.components.access_key_validator import AccessKeyValidator
from accessgate.domain.components.burst_limiter import BurstLimiter
from accessgate.domain.interfaces.access_key_store import StateStoreError
from accessgate.domain.models.access_key import (
    AccessKey,
    ActiveStatus,
    BannedStatus,
    KeyStatus,
    PanelTypeRestriction,
    PendingDevice,
    SuspendedStatus,
)
from accessgate.domain.models.decision import ValidationOutcome
from accessgate.infrastructure.state_store.memory_store import InMemoryAccessKeyStore


class StubRandom:
    """Deterministic stand-in for random.Random."""

    def __init__(self, value: float) -> None:
        self.value = value

    def random(self) -> float:
        return self.value

    def choice(self, seq: Any) -> Any:
        return seq[0]

    def uniform(self, a: float, b: float) -> float:
        return a


class FailingStore(InMemoryAccessKeyStore):
    async def get_key(self, key: str) -> AccessKey | None:
        raise StateStoreError("MongoDB unavailable")


@pytest.fixture
def validator(store, observability, clock) -> AccessKeyValidator:
    return AccessKeyValidator(store, observability, clock=clock)


class TestRequestShape:
    @pytest.mark.asyncio
    async def test_blank_key_is_invalid_request(self, validator) -> None:
        decision = await validator.validate("   ")

        assert decision.valid is False
        assert decision.outcome == ValidationOutcome.InvalidRequest
        assert decision.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_key_is_invalid_request(self, validator) -> None:
        decision = await validator.validate(None)
        assert decision.outcome == ValidationOutcome.InvalidRequest

    @pytest.mark.asyncio
    async def test_unknown_key_is_not_found(self, validator) -> None:
        decision = await validator.validate("does-not-exist")

        assert decision.outcome == ValidationOutcome.NotFound
        assert decision.status_code == 401


class TestActiveKeys:
    @pytest.mark.asyncio
    async def test_active_key_is_valid_and_consumed(self, validator, store, clock) -> None:
        await store.create_key(AccessKey(key="abc123"))

        decision = await validator.validate("abc123")

        assert decision.valid is True
        assert decision.outcome == ValidationOutcome.Valid
        record = await store.get_key("abc123")
        assert record.usage_count == 1
        assert record.daily_usage == 1
        assert record.last_used_date == "2024-05-14"
        assert record.last_used_at == clock.now
        assert record.usage_timestamps == [clock.now]

    @pytest.mark.asyncio
    async def test_successful_validation_emits_event(self, validator, store, observability) -> None:
        await store.create_key(AccessKey(key="abc123"))

        await validator.validate("abc123")

        assert "access_key_validated" in observability.event_types()

    @pytest.mark.asyncio
    async def test_usage_history_is_bounded(self, store, observability, clock) -> None:
        validator = AccessKeyValidator(store, observability, usage_history_size=3, clock=clock)
        await store.create_key(AccessKey(key="abc123"))

        for _ in range(5):
            clock.advance(seconds=1)
            await validator.validate("abc123")

        record = await store.get_key("abc123")
        assert len(record.usage_timestamps) == 3
        assert record.usage_timestamps[-1] == clock.now
        assert record.usage_count == 5


class TestDailyLimit:
    @pytest.mark.asyncio
    async def test_exactly_n_successes_per_day(self, validator, store, clock) -> None:
        await store.create_key(AccessKey(key="abc123", daily_limit=3))

        results = [await validator.validate("abc123") for _ in range(4)]

        assert [d.valid for d in results] == [True, True, True, False]
        assert results[-1].outcome == ValidationOutcome.DailyLimitReached
        assert results[-1].status_code == 429
        assert results[-1].details["daily_limit"] == 3
        assert results[-1].details["resets_on"] == "2024-05-15"

    @pytest.mark.asyncio
    async def test_limit_resets_on_date_rollover(self, validator, store, clock) -> None:
        await store.create_key(AccessKey(key="abc123", daily_limit=1))

        assert (await validator.validate("abc123")).valid is True
        assert (await validator.validate("abc123")).outcome == ValidationOutcome.DailyLimitReached

        clock.advance(days=1)
        decision = await validator.validate("abc123")

        assert decision.valid is True
        record = await store.get_key("abc123")
        assert record.daily_usage == 1
        assert record.last_used_date == "2024-05-15"
        assert record.usage_count == 2

    @pytest.mark.asyncio
    async def test_two_valid_then_limit_when_usage_starts_at_zero_today(self, validator, store) -> None:
        await store.create_key(
            AccessKey(key="abc123", daily_limit=2, daily_usage=0, last_used_date="2024-05-14")
        )

        first = await validator.validate("abc123")
        second = await validator.validate("abc123")
        third = await validator.validate("abc123")

        assert first.valid is True
        assert second.valid is True
        assert third.outcome == ValidationOutcome.DailyLimitReached

    @pytest.mark.asyncio
    async def test_stale_counter_from_previous_day_does_not_block(self, validator, store) -> None:
        await store.create_key(
            AccessKey(key="abc123", daily_limit=2, daily_usage=2, last_used_date="2024-05-13")
        )

        decision = await validator.validate("abc123")

        assert decision.valid is True
        assert (await store.get_key("abc123")).daily_usage == 1

    @pytest.mark.asyncio
    async def test_calendar_day_uses_configured_timezone(self, store, observability, clock) -> None:
        # 18:00 UTC on the 14th is 01:00 on the 15th in Jakarta.
        clock.advance(hours=8)
        validator = AccessKeyValidator(store, observability, timezone="Asia/Jakarta", clock=clock)
        await store.create_key(
            AccessKey(key="abc123", daily_limit=1, daily_usage=1, last_used_date="2024-05-14")
        )

        decision = await validator.validate("abc123")

        assert decision.valid is True
        assert (await store.get_key("abc123")).last_used_date == "2024-05-15"

    @pytest.mark.asyncio
    async def test_concurrent_validations_never_exceed_limit(self, validator, store) -> None:
        await store.create_key(AccessKey(key="abc123", daily_limit=5))

        results = await asyncio.gather(*(validator.validate("abc123") for _ in range(20)))

        assert sum(1 for d in results if d.valid) == 5
        assert all(
            d.outcome == ValidationOutcome.DailyLimitReached for d in results if not d.valid
        )
        record = await store.get_key("abc123")
        assert record.daily_usage == 5
        assert record.usage_count == 5


class TestSuspension:
    @pytest.mark.asyncio
    async def test_active_suspension_denies(self, validator, store, clock) -> None:
        until = clock.now + timedelta(hours=2)
        await store.create_key(
            AccessKey(key="abc123", status=SuspendedStatus(reason="abuse", until=until))
        )

        decision = await validator.validate("abc123")

        assert decision.outcome == ValidationOutcome.Suspended
        assert decision.status_code == 403
        assert decision.details["reason"] == "abuse"
        assert decision.details["suspension_until"] == until.isoformat()

    @pytest.mark.asyncio
    async def test_indefinite_suspension_reports_permanent(self, validator, store) -> None:
        await store.create_key(AccessKey(key="abc123", status=SuspendedStatus()))

        decision = await validator.validate("abc123")

        assert decision.outcome == ValidationOutcome.Suspended
        assert decision.details["suspension_until"] == "permanent"
        assert decision.details["reason"] == "No reason given."

    @pytest.mark.asyncio
    async def test_expired_suspension_is_cleared_and_valid(self, validator, store, clock) -> None:
        await store.create_key(
            AccessKey(
                key="abc123",
                status=SuspendedStatus(reason="cooldown", until=clock.now - timedelta(minutes=1)),
            )
        )

        first = await validator.validate("abc123")
        record = await store.get_key("abc123")
        second = await validator.validate("abc123")

        assert first.valid is True
        assert record.status == ActiveStatus()
        assert second.valid is True

        transitions = await store.list_state_transitions("abc123")
        assert len(transitions) == 1
        assert transitions[0].from_state == "suspended"
        assert transitions[0].to_state == "active"
        assert transitions[0].trigger == "suspension_expired"


class TestBan:
    @pytest.mark.asyncio
    async def test_permanent_ban_always_invalid(self, validator, store, clock) -> None:
        await store.create_key(
            AccessKey(
                key="abc123",
                status=BannedStatus(reason="fraud", permanent=True),
                daily_limit=0,
                used_devices=["dev-1"],
                panel_type_restriction=PanelTypeRestriction.Both,
            )
        )

        for device_id in (None, "dev-1"):
            for panel_type in (None, "public"):
                decision = await validator.validate("abc123", device_id=device_id, panel_type=panel_type)
                assert decision.valid is False
                assert decision.outcome == ValidationOutcome.Banned
                assert decision.details["reason"] == "fraud"

        assert (await store.get_key("abc123")).usage_count == 0

    @pytest.mark.asyncio
    async def test_permanent_ban_with_past_expiry_stays_banned(self, validator, store, clock) -> None:
        await store.create_key(
            AccessKey(
                key="abc123",
                status=BannedStatus(permanent=True, expires_at=clock.now - timedelta(days=1)),
            )
        )

        decision = await validator.validate("abc123")

        assert decision.outcome == ValidationOutcome.Banned
        assert (await store.get_key("abc123")).status_kind == KeyStatus.Banned

    @pytest.mark.asyncio
    async def test_unexpired_timeboxed_ban_reports_expiry(self, validator, store, clock) -> None:
        expires_at = clock.now + timedelta(days=2)
        await store.create_key(
            AccessKey(
                key="abc123",
                status=BannedStatus(reason="spam", permanent=False, expires_at=expires_at),
            )
        )

        decision = await validator.validate("abc123")

        assert decision.outcome == ValidationOutcome.Banned
        assert decision.details["expires_at"] == expires_at.isoformat()

    @pytest.mark.asyncio
    async def test_expired_timeboxed_ban_is_lifted(self, validator, store, clock) -> None:
        await store.create_key(
            AccessKey(
                key="abc123",
                status=BannedStatus(
                    reason="spam", permanent=False, expires_at=clock.now - timedelta(days=1)
                ),
            )
        )

        decision = await validator.validate("abc123")

        assert decision.valid is True
        record = await store.get_key("abc123")
        assert record.status_kind == KeyStatus.Active
        assert record.usage_count == 1
        transitions = await store.list_state_transitions("abc123")
        assert transitions[-1].trigger == "ban_expired"
        assert transitions[-1].context["reason"] == "spam"


class TestDevices:
    @pytest.mark.asyncio
    async def test_missing_device_when_required(self, store, observability, clock) -> None:
        validator = AccessKeyValidator(store, observability, require_device_id=True, clock=clock)
        await store.create_key(AccessKey(key="abc123", used_devices=["dev-1"]))

        decision = await validator.validate("abc123")

        assert decision.outcome == ValidationOutcome.DeviceUnauthorized

    @pytest.mark.asyncio
    async def test_unknown_device_is_unauthorized(self, validator, store) -> None:
        await store.create_key(AccessKey(key="abc123", used_devices=["dev-1"]))

        decision = await validator.validate("abc123", device_id="dev-9")

        assert decision.outcome == ValidationOutcome.DeviceUnauthorized
        assert decision.details["device_id"] == "dev-9"

    @pytest.mark.asyncio
    async def test_pending_device_is_reported(self, validator, store) -> None:
        await store.create_key(
            AccessKey(key="abc123", pending_devices=[PendingDevice(device_id="dev-2")])
        )

        decision = await validator.validate("abc123", device_id="dev-2")

        assert decision.outcome == ValidationOutcome.DevicePending
        assert decision.status_code == 403

    @pytest.mark.asyncio
    async def test_authorized_device_is_valid(self, validator, store) -> None:
        await store.create_key(AccessKey(key="abc123", used_devices=["dev-1"]))

        decision = await validator.validate("abc123", device_id="dev-1")

        assert decision.valid is True


class TestPanelRestriction:
    @pytest.mark.asyncio
    async def test_opposite_panel_type_is_restricted(self, validator, store) -> None:
        await store.create_key(
            AccessKey(key="abc123", panel_type_restriction=PanelTypeRestriction.Private)
        )

        decision = await validator.validate("abc123", panel_type="public")

        assert decision.outcome == ValidationOutcome.PanelTypeRestricted
        assert decision.details["panel_type_restriction"] == "private"
        assert (await store.get_key("abc123")).usage_count == 0

    @pytest.mark.asyncio
    async def test_matching_panel_type_is_valid(self, validator, store) -> None:
        await store.create_key(
            AccessKey(key="abc123", panel_type_restriction=PanelTypeRestriction.Private)
        )

        decision = await validator.validate("abc123", panel_type="private")

        assert decision.valid is True


class TestBurstProtection:
    def _validator(self, store, observability, clock, rng: StubRandom) -> AccessKeyValidator:
        limiter = BurstLimiter(store, observability, rng=rng, clock=clock)
        return AccessKeyValidator(store, observability, burst_limiter=limiter, clock=clock)

    @pytest.mark.asyncio
    async def test_burst_is_rejected_and_message_replayed(self, store, observability, clock) -> None:
        validator = self._validator(store, observability, clock, StubRandom(0.0))
        await store.create_key(AccessKey(key="abc123"))

        for _ in range(3):
            assert (await validator.validate("abc123")).valid is True

        rejected = await validator.validate("abc123")
        clock.advance(minutes=1)
        replayed = await validator.validate("abc123")

        assert rejected.outcome == ValidationOutcome.RateLimited
        assert rejected.status_code == 429
        assert replayed.outcome == ValidationOutcome.RateLimited
        assert replayed.message == rejected.message
        assert (await store.get_key("abc123")).usage_count == 3

    @pytest.mark.asyncio
    async def test_burst_admitted_when_draw_above_probability(self, store, observability, clock) -> None:
        validator = self._validator(store, observability, clock, StubRandom(0.99))
        await store.create_key(AccessKey(key="abc123"))

        results = [await validator.validate("abc123") for _ in range(5)]

        assert all(d.valid for d in results)


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_store_error_is_logged_and_raised(self, observability, clock) -> None:
        validator = AccessKeyValidator(FailingStore(), observability, clock=clock)

        with pytest.raises(StateStoreError):
            await validator.validate("abc123")

        assert observability.logs[-1]["level"] == "ERROR"
        assert "MongoDB unavailable" in observability.logs[-1]["message"]

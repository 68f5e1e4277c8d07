"""
Dependency injection setup for the AccessGate proxy.
"""

import random
from functools import cache

from accessgate.domain.components.access_key_validator import AccessKeyValidator
from accessgate.domain.components.burst_limiter import BurstLimiter
from accessgate.domain.components.device_authorizer import DeviceAuthorizer
from accessgate.domain.components.key_administrator import KeyAdministrator
from accessgate.domain.interfaces.access_key_store import AccessKeyStore
from accessgate.domain.interfaces.notification_sink import (
    NotificationSink,
    NullNotificationSink,
)
from accessgate.domain.interfaces.observability_manager import ObservabilityManager
from accessgate.infrastructure.config.settings import AccessGateSettings
from accessgate.infrastructure.notifications.telegram import TelegramNotificationSink
from accessgate.infrastructure.observability.logger import DefaultObservabilityManager
from accessgate.infrastructure.state_store.memory_store import InMemoryAccessKeyStore
from accessgate.infrastructure.state_store.mongo_store import MongoAccessKeyStore


@cache
def get_settings() -> AccessGateSettings:
    """Get the settings loaded from the environment."""
    return AccessGateSettings()


@cache
def get_access_key_store() -> AccessKeyStore:
    """Get a singleton AccessKeyStore.

    MongoDB when ``MONGODB_URL`` is set, otherwise the in-memory store.
    """
    settings = get_settings()
    if settings.mongodb_url:
        return MongoAccessKeyStore(
            connection_url=settings.mongodb_url,
            database_name=settings.database_name,
        )
    return InMemoryAccessKeyStore(max_transitions=settings.max_transitions)


@cache
def get_observability_manager() -> ObservabilityManager:
    """Get a singleton instance of the ObservabilityManager."""
    settings = get_settings()
    return DefaultObservabilityManager(log_level=settings.log_level, json_format=settings.json_logs)


@cache
def get_notification_sink() -> NotificationSink:
    """Get the Telegram sink when a bot token and chat ids are configured."""
    settings = get_settings()
    if settings.telegram_bot_token and settings.telegram_chat_ids:
        return TelegramNotificationSink(
            bot_token=settings.telegram_bot_token,
            chat_ids=settings.telegram_chat_ids,
        )
    return NullNotificationSink()


@cache
def get_burst_limiter() -> BurstLimiter:
    """Get a singleton instance of the BurstLimiter."""
    settings = get_settings()
    return BurstLimiter(
        access_key_store=get_access_key_store(),
        observability_manager=get_observability_manager(),
        threshold=settings.burst_threshold,
        window_seconds=settings.burst_window_seconds,
        rejection_probability=settings.burst_rejection_probability,
        cooldown_min_seconds=settings.burst_cooldown_min_seconds,
        cooldown_max_seconds=settings.burst_cooldown_max_seconds,
        history_size=settings.usage_history_size,
        rng=random.SystemRandom(),
    )


@cache
def get_access_key_validator() -> AccessKeyValidator:
    """Get a singleton instance of the AccessKeyValidator."""
    settings = get_settings()
    return AccessKeyValidator(
        access_key_store=get_access_key_store(),
        observability_manager=get_observability_manager(),
        burst_limiter=get_burst_limiter() if settings.burst_protection_enabled else None,
        require_device_id=settings.require_device_id,
        usage_history_size=settings.usage_history_size,
        timezone=settings.zone,
    )


@cache
def get_device_authorizer() -> DeviceAuthorizer:
    """Get a singleton instance of the DeviceAuthorizer."""
    return DeviceAuthorizer(
        access_key_store=get_access_key_store(),
        observability_manager=get_observability_manager(),
        notification_sink=get_notification_sink(),
        max_devices_per_key=get_settings().max_devices_per_key,
    )


@cache
def get_key_administrator() -> KeyAdministrator:
    """Get a singleton instance of the KeyAdministrator."""
    return KeyAdministrator(
        access_key_store=get_access_key_store(),
        observability_manager=get_observability_manager(),
        notification_sink=get_notification_sink(),
    )

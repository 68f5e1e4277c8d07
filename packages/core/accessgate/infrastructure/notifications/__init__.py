"""Notification sink implementations."""

from accessgate.infrastructure.notifications.telegram import TelegramNotificationSink

__all__ = ["TelegramNotificationSink"]

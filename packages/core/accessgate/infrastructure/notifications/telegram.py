"""Telegram Bot API notification sink."""

from __future__ import annotations

import html
from typing import Any

import httpx
import structlog

from accessgate.domain.interfaces.notification_sink import (
    Notification,
    NotificationError,
    NotificationKind,
    NotificationSink,
)

logger = structlog.get_logger(__name__)

MAX_CALLBACK_DATA_BYTES = 64

_TITLES: dict[NotificationKind, str] = {
    NotificationKind.DeviceActivationRequested: "New device authorization request",
    NotificationKind.DeviceAuthorized: "Device authorized",
    NotificationKind.DeviceRejected: "Device rejected",
    NotificationKind.KeyBanned: "Access key banned",
    NotificationKind.KeySuspended: "Access key suspended",
    NotificationKind.KeyUnbanned: "Access key reinstated",
    NotificationKind.KeyCreated: "Access key created",
    NotificationKind.KeyDeleted: "Access key deleted",
}


def render_message(notification: Notification) -> str:
    """Render a notification as Telegram HTML."""
    lines = [
        f"<b>{_TITLES[notification.kind]}</b>",
        f"Access key: <code>{html.escape(notification.key)}</code>",
    ]
    if notification.device_id:
        lines.append(f"Device ID: <code>{html.escape(notification.device_id)}</code>")
    if notification.reason:
        lines.append(f"Reason: {html.escape(notification.reason)}")
    for label, value in notification.data.items():
        if value is not None:
            lines.append(f"{html.escape(label.replace('_', ' ').capitalize())}: {html.escape(str(value))}")
    if notification.kind is NotificationKind.DeviceActivationRequested:
        lines.append("")
        lines.append("Authorize or reject this device.")
    return "\n".join(lines)


def activation_keyboard(key: str, device_id: str) -> dict[str, Any] | None:
    """Inline keyboard with authorize / reject callbacks for a device request.

    Returns None when the callback data for this key and device would exceed
    Telegram's limit; the request is then sent as text only and handled
    through the management API.
    """
    authorize = f"authorize_device_{key}_{device_id}"
    reject = f"reject_device_{key}_{device_id}"
    if max(len(authorize.encode()), len(reject.encode())) > MAX_CALLBACK_DATA_BYTES:
        return None
    return {
        "inline_keyboard": [
            [
                {"text": "✅ Authorize", "callback_data": authorize},
                {"text": "❌ Reject", "callback_data": reject},
            ]
        ]
    }


class TelegramNotificationSink(NotificationSink):
    """Deliver admin notifications through the Telegram Bot API.

    Device activation requests go to the primary (first) admin chat with
    authorize / reject buttons; every other notification is broadcast to all
    configured chats.

    Example:
        ```python
        sink = TelegramNotificationSink(bot_token="123:abc", chat_ids=["1001", "1002"])
        await sink.notify(Notification(kind=NotificationKind.KeyBanned, key="abc", reason="spam"))
        await sink.close()
        ```
    """

    BASE_URL = "https://api.telegram.org"
    """Telegram Bot API base URL."""

    TIMEOUT = 10.0
    """Request timeout in seconds."""

    def __init__(
        self,
        bot_token: str,
        chat_ids: list[str],
        client: httpx.AsyncClient | None = None,
        timeout: float = TIMEOUT,
    ) -> None:
        if not bot_token:
            raise ValueError("bot_token is required")
        if not chat_ids:
            raise ValueError("At least one chat id is required")
        self._bot_token = bot_token
        self._chat_ids = list(chat_ids)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def _send_url(self) -> str:
        return f"{self.BASE_URL}/bot{self._bot_token}/sendMessage"

    async def notify(self, notification: Notification) -> None:
        text = render_message(notification)
        reply_markup = None
        chat_ids = self._chat_ids
        if notification.kind is NotificationKind.DeviceActivationRequested and notification.device_id:
            reply_markup = activation_keyboard(notification.key, notification.device_id)
            chat_ids = self._chat_ids[:1]
            if reply_markup is None:
                logger.info("telegram_keyboard_omitted", reason="callback_data_too_long")
                text += "\nUse the management API to authorize or reject it."

        errors = []
        for chat_id in chat_ids:
            try:
                await self._send(chat_id, text, reply_markup)
            except NotificationError as e:
                errors.append(str(e))

        if errors:
            raise NotificationError("; ".join(errors))

    async def _send(self, chat_id: str, text: str, reply_markup: dict[str, Any] | None) -> None:
        body: dict[str, Any] = {"chat_id": chat_id, "text": text, "parse_mode": "HTML"}
        if reply_markup is not None:
            body["reply_markup"] = reply_markup

        try:
            response = await self._client.post(self._send_url, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                f"Telegram API returned {e.response.status_code} for chat {chat_id}"
            ) from e
        except httpx.TimeoutException as e:
            raise NotificationError(f"Telegram API timed out for chat {chat_id}") from e
        except httpx.HTTPError as e:
            raise NotificationError(f"Telegram API request failed for chat {chat_id}: {e}") from e
        except ValueError as e:
            raise NotificationError(f"Telegram API returned invalid JSON for chat {chat_id}") from e

        if not data.get("ok"):
            raise NotificationError(
                f"Telegram API rejected message for chat {chat_id}: {data.get('description', 'unknown error')}"
            )
        logger.debug("telegram_message_sent", chat_id=chat_id)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

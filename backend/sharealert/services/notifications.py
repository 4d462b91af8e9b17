from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Protocol

import httpx

from sharealert.config import Settings
from sharealert.errors import NotificationError
from sharealert.schemas import Alert, NotificationRequest, UserPreferences
from sharealert.services.user_repository import UserRepository

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    async def send(self, request: NotificationRequest) -> bool: ...


class LoggingNotificationSender:
    """Sender used when no webhook is configured; it only records the request."""

    async def send(self, request: NotificationRequest) -> bool:
        logger.info(
            "Notification %s for alert %s (%s) -> %s",
            request.event_type,
            request.alert.get("id"),
            request.alert.get("stock_symbol") or "*",
            request.recipient_email or request.user_id,
        )
        return True


class WebhookNotificationSender:
    def __init__(self, client: httpx.AsyncClient, url: str, token: str = "", timeout: float = 10.0) -> None:
        self._client = client
        self.url = url
        self.token = token
        self.timeout = timeout

    async def send(self, request: NotificationRequest) -> bool:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = await self._client.post(
                self.url,
                headers=headers,
                json=request.model_dump(mode="json"),
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise NotificationError(f"webhook delivery to {self.url} failed: {exc!r}") from exc
        if response.status_code >= 300:
            logger.warning("Notification webhook returned %s: %s", response.status_code, response.text[:200])
            return False
        return True


def build_notification_sender(settings: Settings, client: httpx.AsyncClient) -> NotificationSender:
    if settings.notification_webhook_url:
        return WebhookNotificationSender(
            client,
            settings.notification_webhook_url,
            token=settings.notification_webhook_token,
            timeout=settings.http_timeout_seconds,
        )
    return LoggingNotificationSender()


class NotificationDispatcher:
    """Turns a fired alert into at most one delivery attempt.

    ``notify`` never raises. Its result only reports whether the sender
    accepted the request; callers mark alerts triggered either way.
    """

    def __init__(self, users: UserRepository, sender: NotificationSender) -> None:
        self.users = users
        self.sender = sender

    async def _preferences(self, user_id: str) -> UserPreferences:
        try:
            prefs = await asyncio.to_thread(self.users.get_preferences, user_id)
        except Exception as exc:
            logger.warning("Could not load notification preferences for %s: %s", user_id, exc)
            prefs = None
        return prefs or UserPreferences(user_id=user_id)

    async def notify(self, alert: Alert, event_type: str, payload: Dict[str, Any] | None = None) -> bool:
        try:
            user = await asyncio.to_thread(self.users.get_user, alert.user_id)
        except Exception as exc:
            logger.warning("Could not load user %s for alert %s: %s", alert.user_id, alert.id, exc)
            return False
        if user is None:
            logger.warning("User %s for alert %s not found; skipping notification", alert.user_id, alert.id)
            return False

        prefs = await self._preferences(alert.user_id)
        if not prefs.email_notifications:
            logger.info("Email notifications disabled for user %s; alert %s not sent", alert.user_id, alert.id)
            return False

        request = NotificationRequest(
            user_id=user.id,
            recipient_email=user.email,
            recipient_name=user.name,
            event_type=event_type,
            alert=alert.model_dump(mode="json"),
            payload=dict(payload or {}),
        )
        try:
            delivered = await self.sender.send(request)
        except Exception as exc:
            logger.error("Failed to send %s notification for alert %s: %s", event_type, alert.id, exc)
            return False
        if not delivered:
            logger.error("Notification sender rejected %s for alert %s", event_type, alert.id)
            return False
        logger.info("Sent %s notification for alert %s to user %s", event_type, alert.id, user.id)
        return True

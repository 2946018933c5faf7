"""Channel senders: the delivery primitives behind each notification channel."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx
import redis.asyncio as aioredis
import structlog

from modules.notifications.stores import NotificationStore
from shared.config import Settings
from shared.schemas.notifications import InAppNotification, Priority, PushMessage, UserProfile

logger = structlog.get_logger()


@dataclass
class OutboundMessage:
    """Everything a channel might need to deliver one notification."""

    notification_type: str
    title: str
    message: str
    link: str | None = None
    priority: Priority = "medium"
    # Email only
    subject: str | None = None
    html_body: str | None = None
    text_body: str | None = None
    preview_text: str | None = None


class ChannelSender(ABC):
    """Interface for a delivery channel.

    ``send`` returns False for a delivery the channel rejected; I/O errors
    propagate and are treated as retryable by the dispatcher.
    """

    @abstractmethod
    async def send(self, recipient: UserProfile, message: OutboundMessage) -> bool: ...


class InAppSender(ChannelSender):
    """Creates a notification-center entry."""

    def __init__(self, store: NotificationStore):
        self.store = store

    async def send(self, recipient: UserProfile, message: OutboundMessage) -> bool:
        await self.store.create(
            InAppNotification(
                user_id=recipient.id,
                type=message.notification_type,
                title=message.title,
                message=message.message,
                link=message.link,
                priority=message.priority,
            )
        )
        return True


class HttpEmailSender(ChannelSender):
    """Posts rendered email to the platform's mail relay."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._client = client

    def _headers(self) -> dict[str, str]:
        if not self.settings.email_service_token:
            return {}
        return {"Authorization": f"Bearer {self.settings.email_service_token}"}

    async def send(self, recipient: UserProfile, message: OutboundMessage) -> bool:
        if not self.settings.email_service_url:
            logger.warning("email_service_not_configured", user_id=recipient.id)
            return False
        if not recipient.email:
            logger.warning("email_recipient_missing_address", user_id=recipient.id)
            return False

        body = {
            "from": self.settings.email_from_address,
            "to": recipient.email,
            "subject": message.subject or message.title,
            "html": message.html_body,
            "text": message.text_body,
            "preview_text": message.preview_text,
            "metadata": {"notification_type": message.notification_type, "user_id": recipient.id},
        }

        if self._client is not None:
            resp = await self._client.post(self.settings.email_service_url, json=body, headers=self._headers())
        else:
            async with httpx.AsyncClient(timeout=self.settings.email_timeout_seconds) as client:
                resp = await client.post(self.settings.email_service_url, json=body, headers=self._headers())
        resp.raise_for_status()

        logger.info("email_sent", user_id=recipient.id, notification_type=message.notification_type)
        return True


class RedisPushSender(ChannelSender):
    """Publishes push payloads for the device gateway to fan out."""

    def __init__(self, redis: aioredis.Redis, channel: str):
        self.redis = redis
        self.channel = channel

    async def send(self, recipient: UserProfile, message: OutboundMessage) -> bool:
        payload = PushMessage(
            user_id=recipient.id,
            type=message.notification_type,
            title=message.title,
            message=message.message,
            link=message.link,
        )
        await self.redis.publish(self.channel, payload.model_dump_json())
        logger.info("push_published", channel=self.channel, user_id=recipient.id)
        return True


class LoggingSmsSender(ChannelSender):
    """No SMS provider is wired up yet; messages are only logged."""

    async def send(self, recipient: UserProfile, message: OutboundMessage) -> bool:
        logger.info(
            "sms_notification_logged",
            user_id=recipient.id,
            notification_type=message.notification_type,
            title=message.title,
        )
        return True

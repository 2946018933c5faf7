"""Notification dispatcher: gate, render and fan out one notification per call."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

import structlog

from modules.notifications.clock import scheduler_now
from modules.notifications.preferences import may_deliver_now
from modules.notifications.retry_queue import RetryQueue
from modules.notifications.senders import ChannelSender, OutboundMessage
from modules.notifications.stores import AuditLog, TemplateStore, UserDirectory
from modules.notifications.templates import (
    build_variables,
    default_message,
    default_title,
    render_template,
)
from shared.config import Settings
from shared.schemas.notifications import (
    CHANNELS,
    ChannelStatus,
    NotificationLogEntry,
    NotificationPreference,
    RetryConfig,
    UserProfile,
)

logger = structlog.get_logger()


@dataclass
class ChannelResult:
    status: ChannelStatus
    retryable: bool = True


@dataclass
class DispatchResult:
    """Outcome of one dispatch. Truthy only when the notification was delivered.

    ``retryable`` is False for permanent failures (unknown user, opted-out
    type, every failed channel non-retryable). ``retry_at`` is set when quiet
    hours deferred the delivery.
    """

    delivered: bool
    retryable: bool = False
    retry_at: datetime | None = None
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.delivered


class NotificationDispatcher:
    """Delivers a notification to one user across every enabled channel."""

    def __init__(
        self,
        users: UserDirectory,
        templates: TemplateStore,
        senders: dict[str, ChannelSender],
        retry_queue: RetryQueue,
        audit_log: AuditLog,
        settings: Settings,
    ):
        self.users = users
        self.templates = templates
        self.senders = senders
        self.retry_queue = retry_queue
        self.audit_log = audit_log
        self.settings = settings

    async def dispatch(
        self,
        user_id: str,
        notification_type: str,
        data: dict[str, str],
        *,
        bypass_preferences: bool = False,
        bypass_do_not_disturb: bool = False,
        retry_on_failure: bool = True,
        now: datetime | None = None,
    ) -> DispatchResult:
        """Attempt delivery. Delivered only when every enabled channel succeeded.

        Never raises: failures are logged and, when ``retry_on_failure`` is
        set, handed to the retry queue. Quiet hours without their own
        timezone are read in the scheduler timezone.
        """
        now = scheduler_now(self.settings.notification_timezone, now)
        try:
            user = await self.users.get_user(user_id)
            if user is None:
                logger.warning(
                    "notification_user_not_found",
                    user_id=user_id,
                    notification_type=notification_type,
                )
                return DispatchResult(delivered=False, reason="user_not_found")

            preferences = await self.users.get_preferences(user_id)

            decision = may_deliver_now(
                notification_type,
                preferences,
                now,
                bypass_preferences=bypass_preferences,
                bypass_do_not_disturb=bypass_do_not_disturb,
                resume_buffer_minutes=self.settings.dnd_resume_buffer_minutes,
                fallback_hours=self.settings.dnd_fallback_hours,
            )
            if not decision.proceed:
                logger.info(
                    "notification_suppressed",
                    user_id=user_id,
                    notification_type=notification_type,
                    reason=decision.reason,
                )
                if decision.retry_at is not None and retry_on_failure:
                    await self.retry_queue.enqueue(
                        user_id,
                        notification_type,
                        data,
                        RetryConfig(
                            max_retries=self.settings.retry_max_retries,
                            retry_delay_minutes=self.settings.dnd_retry_delay_minutes,
                        ),
                        scheduled_for=decision.retry_at,
                        reason="do_not_disturb",
                        now=now,
                    )
                return DispatchResult(
                    delivered=False,
                    retryable=decision.retry_at is not None,
                    retry_at=decision.retry_at,
                    reason=decision.reason,
                )

            variables = build_variables(user, data)
            results = await self._deliver(user, preferences, notification_type, data, variables)

            enabled = [r for r in results.values() if r.status != "disabled"]
            success = all(r.status == "success" for r in enabled)
            retryable = any(r.status == "failure" and r.retryable for r in enabled)

            if not success and retry_on_failure and retryable:
                await self.retry_queue.enqueue(
                    user_id, notification_type, data, reason="delivery_failed", now=now
                )

            await self.audit_log.append(
                NotificationLogEntry(
                    user_id=user_id,
                    type=notification_type,
                    channels={channel: r.status for channel, r in results.items()},
                    title=data.get("title") or default_title(notification_type),
                    link=data.get("link"),
                    created_at=now,
                )
            )

            logger.info(
                "notification_dispatched",
                user_id=user_id,
                notification_type=notification_type,
                success=success,
                channels={channel: r.status for channel, r in results.items()},
            )
            return DispatchResult(
                delivered=success,
                retryable=not success and retryable,
                reason=None if success else "delivery_failed",
            )

        except Exception as e:
            logger.error(
                "notification_dispatch_error",
                user_id=user_id,
                notification_type=notification_type,
                error=str(e),
                exc_info=True,
            )
            if retry_on_failure:
                await self.retry_queue.enqueue(
                    user_id, notification_type, data, reason="dispatch_error", now=now
                )
            return DispatchResult(delivered=False, retryable=True, reason="dispatch_error")

    async def _deliver(
        self,
        user: UserProfile,
        preferences: NotificationPreference,
        notification_type: str,
        data: dict[str, str],
        variables: dict[str, str],
    ) -> dict[str, ChannelResult]:
        message = OutboundMessage(
            notification_type=notification_type,
            title=data.get("title") or default_title(notification_type),
            message=data.get("message") or default_message(notification_type, variables),
            link=data.get("link"),
            priority=data.get("priority") if data.get("priority") in ("high", "low") else "medium",
        )

        results: dict[str, ChannelResult] = {}
        for channel in CHANNELS:
            if not preferences.channel_enabled(channel):
                results[channel] = ChannelResult(status="disabled", retryable=False)
                continue
            if channel == "email":
                results[channel] = await self._send_email(user, notification_type, message, variables)
            else:
                results[channel] = await self._send(channel, user, message)
        return results

    async def _send(
        self, channel: str, user: UserProfile, message: OutboundMessage
    ) -> ChannelResult:
        sender = self.senders.get(channel)
        if sender is None:
            logger.warning("channel_sender_missing", channel=channel)
            return ChannelResult(status="failure", retryable=False)
        try:
            delivered = await sender.send(user, message)
        except Exception as e:
            logger.error(
                "channel_send_failed",
                channel=channel,
                user_id=user.id,
                notification_type=message.notification_type,
                error=str(e),
            )
            return ChannelResult(status="failure", retryable=True)
        if not delivered:
            return ChannelResult(status="failure", retryable=False)
        return ChannelResult(status="success")

    async def _send_email(
        self,
        user: UserProfile,
        notification_type: str,
        message: OutboundMessage,
        variables: dict[str, str],
    ) -> ChannelResult:
        template = await self.templates.get_active_template(notification_type)
        if template is None:
            logger.warning("email_template_not_found", notification_type=notification_type)
            return ChannelResult(status="failure", retryable=False)

        rendered = render_template(template, variables)
        email = replace(
            message,
            subject=rendered.subject,
            html_body=rendered.html_body,
            text_body=rendered.text_body,
            preview_text=rendered.preview_text,
        )
        return await self._send("email", user, email)

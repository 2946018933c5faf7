"""Retry queue: bounded fixed-delay re-delivery of failed or deferred notifications."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog

from modules.notifications.stores import RetryStore
from shared.config import Settings
from shared.schemas.notifications import RetryConfig, RetryRecord

if TYPE_CHECKING:
    from modules.notifications.dispatcher import NotificationDispatcher

logger = structlog.get_logger()


class RetryQueue:
    def __init__(self, store: RetryStore, settings: Settings):
        self.store = store
        self.settings = settings

    def default_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.settings.retry_max_retries,
            retry_delay_minutes=self.settings.retry_delay_minutes,
            current_retries=0,
        )

    async def enqueue(
        self,
        user_id: str,
        notification_type: str,
        data: dict[str, str],
        config: RetryConfig | None = None,
        *,
        scheduled_for: datetime | None = None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Queue another attempt. Returns False once retries are exhausted."""
        now = now or datetime.now(timezone.utc)
        base = config or self.default_config()
        attempt = base.model_copy(update={"current_retries": base.current_retries + 1})

        if attempt.current_retries > attempt.max_retries:
            logger.warning(
                "notification_retry_exhausted",
                user_id=user_id,
                notification_type=notification_type,
                max_retries=attempt.max_retries,
            )
            return False

        record = RetryRecord(
            user_id=user_id,
            notification_type=notification_type,
            payload=data,
            retry_config=attempt,
            scheduled_for=scheduled_for or now + timedelta(minutes=attempt.retry_delay_minutes),
            reason=reason,
            created_at=now,
        )
        try:
            await self.store.add(record)
        except Exception as e:
            logger.error(
                "notification_retry_enqueue_failed",
                user_id=user_id,
                notification_type=notification_type,
                error=str(e),
            )
            return False

        logger.info(
            "notification_retry_scheduled",
            user_id=user_id,
            notification_type=notification_type,
            attempt=attempt.current_retries,
            scheduled_for=record.scheduled_for.isoformat(),
            reason=reason,
        )
        return True

    async def drain_due(
        self, dispatcher: NotificationDispatcher, now: datetime | None = None
    ) -> int:
        """Re-offer every due record to the dispatcher. Returns how many were delivered."""
        now = now or datetime.now(timezone.utc)
        records = await self.store.load_due(now)
        if not records:
            return 0

        delivered = 0
        for record in records:
            result = await dispatcher.dispatch(
                record.user_id,
                record.notification_type,
                record.payload,
                retry_on_failure=False,
                now=now,
            )
            if result:
                delivered += 1
            elif result.retryable:
                # Quiet hours re-defer to the window end, other failures use the delay
                await self.enqueue(
                    record.user_id,
                    record.notification_type,
                    record.payload,
                    record.retry_config,
                    scheduled_for=result.retry_at,
                    reason=result.reason or record.reason,
                    now=now,
                )
            else:
                logger.info(
                    "notification_retry_dropped",
                    user_id=record.user_id,
                    notification_type=record.notification_type,
                    reason=result.reason,
                )
            await self.store.delete(record.id)

        logger.info("notification_retries_drained", due=len(records), delivered=delivered)
        return delivered

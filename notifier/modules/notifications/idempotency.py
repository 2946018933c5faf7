"""Ledger of handled notification keys so repeated ticks do not re-send."""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.models.idempotency_key import NotificationIdempotencyKey

logger = structlog.get_logger()


def idempotency_key(
    notification_type: str,
    user_id: str,
    subject_id: str,
    period: str | None = None,
) -> str:
    """Build ``type:recipient:subject[:period]``."""
    parts = [notification_type, user_id, subject_id]
    if period:
        parts.append(period)
    return ":".join(parts)


class IdempotencyLedger:
    """Atomic check-and-set over the ``notification_idempotency_keys`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def claim(self, key: str, now: datetime) -> bool:
        """Record ``key``. Returns False when another sweep already claimed it."""
        stmt = (
            insert(NotificationIdempotencyKey)
            .values(key=key, created_at=now)
            .on_conflict_do_nothing(index_elements=["key"])
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()

        claimed = result.rowcount == 1
        if not claimed:
            logger.debug("idempotency_key_already_claimed", key=key)
        return claimed

    async def is_claimed(self, key: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationIdempotencyKey.key).where(NotificationIdempotencyKey.key == key)
            )
            return result.scalar_one_or_none() is not None

    async def release(self, key: str) -> None:
        """Forget ``key`` so the recipient is considered again on the next tick."""
        async with self.session_factory() as session:
            await session.execute(
                delete(NotificationIdempotencyKey).where(NotificationIdempotencyKey.key == key)
            )
            await session.commit()
        logger.info("idempotency_key_released", key=key)

"""Deferred delivery attempts waiting to be re-offered to the dispatcher."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class NotificationRetry(Base):
    __tablename__ = "notification_retries"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String)
    notification_type: Mapped[str] = mapped_column(String)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    retry_config: Mapped[dict] = mapped_column(JSON)  # max_retries, retry_delay_minutes, current_retries
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    reason: Mapped[str | None] = mapped_column(String, default=None)  # delivery_failed | do_not_disturb | dispatch_error
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

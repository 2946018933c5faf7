"""Notification schedule model: when a notification type is evaluated for delivery."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class NotificationSchedule(Base):
    __tablename__ = "notification_schedules"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str | None] = mapped_column(String, default=None)

    # What to produce
    template_type: Mapped[str] = mapped_column(String, index=True)
    conditions: Mapped[dict] = mapped_column(JSON, default=dict)

    # Timing
    frequency: Mapped[str] = mapped_column(String)  # immediately | daily | weekly | monthly | recurring | custom
    recurring_schedule: Mapped[dict | None] = mapped_column(JSON, default=None)
    custom_schedule: Mapped[dict | None] = mapped_column(JSON, default=None)

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(default=True)
    last_run: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    next_run: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    execution_stats: Mapped[dict] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

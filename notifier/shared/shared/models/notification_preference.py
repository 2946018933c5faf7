"""Per-user notification preferences (channels, type opt-outs, quiet hours)."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)

    # Channels
    email: Mapped[bool] = mapped_column(default=True)
    in_app: Mapped[bool] = mapped_column(default=True)
    push: Mapped[bool] = mapped_column(default=False)
    sms: Mapped[bool] = mapped_column(default=False)

    # {"course_progress": false, ...}; missing types are enabled
    types: Mapped[dict] = mapped_column(JSON, default=dict)
    # {"enabled": true, "days": [0, 6], "start_time": "22:00", "end_time": "06:00", "timezone": "..."}
    do_not_disturb: Mapped[dict | None] = mapped_column(JSON, default=None)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

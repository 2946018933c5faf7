"""Error log model for failures that operators need to see."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class ErrorLog(Base):
    __tablename__ = "error_logs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    # Source classification
    service: Mapped[str] = mapped_column(String)        # "notifications"
    error_type: Mapped[str] = mapped_column(String)     # "schedule_execution", "tool_execution", "sweep"

    # What failed
    operation: Mapped[str | None] = mapped_column(String, default=None)
    context: Mapped[dict | None] = mapped_column(JSON, default=None)
    error_message: Mapped[str] = mapped_column(Text)
    stack_trace: Mapped[str | None] = mapped_column(Text, default=None)
    schedule_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("notification_schedules.id", ondelete="SET NULL"), nullable=True, default=None
    )
    user_id: Mapped[str | None] = mapped_column(String, nullable=True, default=None)

    # Lifecycle
    status: Mapped[str] = mapped_column(String, default="open")  # "open" | "dismissed" | "resolved"

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

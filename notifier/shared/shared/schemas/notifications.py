"""Domain schemas for notification scheduling and delivery."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, Field, model_validator

Frequency = Literal["immediately", "daily", "weekly", "monthly", "recurring", "custom"]
RecurringUnit = Literal["minutes", "hours", "days", "weeks", "months"]
Channel = Literal["in_app", "email", "push", "sms"]
ChannelStatus = Literal["success", "failure", "disabled"]
Priority = Literal["low", "medium", "high"]

CHANNELS: tuple[Channel, ...] = ("in_app", "email", "push", "sms")

NOTIFICATION_TYPES: tuple[str, ...] = (
    "course_progress",
    "course_completion",
    "certificate_expiration",
    "new_course_available",
    "inactivity_reminder",
    "enrollment_confirmation",
    "quiz_completion",
    "achievement_unlocked",
    "welcome_message",
    "team_enrollment",
    "team_progress",
    "team_completion",
)


def _as_aware(value: datetime | None) -> datetime | None:
    """Treat naive timestamps as UTC so comparisons never mix naive and aware."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


Timestamp = Annotated[datetime, AfterValidator(_as_aware)]

HHMM = Annotated[str, Field(pattern=r"^([01]\d|2[0-3]):[0-5]\d$")]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


class RecurringSchedule(BaseModel):
    """Repeat every ``interval`` ``unit``s, optionally bounded."""

    interval: int = Field(ge=1)
    unit: RecurringUnit
    max_occurrences: int | None = Field(default=None, ge=1)
    end_date: Timestamp | None = None


class CustomSchedule(BaseModel):
    """Calendar allow-sets. An empty list matches any value."""

    days: list[Annotated[int, Field(ge=0, le=6)]] = []  # 0 = Sunday
    hours: list[Annotated[int, Field(ge=0, le=23)]] = []
    minutes: list[Annotated[int, Field(ge=0, le=59)]] = []
    month_days: list[Annotated[int, Field(ge=1, le=31)]] = []
    months: list[Annotated[int, Field(ge=1, le=12)]] = []


class ExecutionStats(BaseModel):
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    last_run_status: Literal["success", "failure"] = "success"
    last_run_time_ms: int = 0
    notifications_sent: int = 0


class Schedule(BaseModel):
    """A persisted definition of a recurring notification job."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str | None = None
    template_type: str
    frequency: Frequency
    recurring_schedule: RecurringSchedule | None = None
    custom_schedule: CustomSchedule | None = None
    conditions: dict[str, Any] = {}
    is_active: bool = True
    last_run: Timestamp | None = None
    next_run: Timestamp | None = None
    execution_stats: ExecutionStats = Field(default_factory=ExecutionStats)
    created_at: Timestamp = Field(default_factory=_utcnow)
    updated_at: Timestamp = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _check_timing_block(self) -> Schedule:
        if (self.frequency == "recurring") != (self.recurring_schedule is not None):
            raise ValueError("recurring_schedule must be set exactly when frequency is 'recurring'")
        if (self.frequency == "custom") != (self.custom_schedule is not None):
            raise ValueError("custom_schedule must be set exactly when frequency is 'custom'")
        return self


# ---------------------------------------------------------------------------
# Users and preferences
# ---------------------------------------------------------------------------


class UserProfile(BaseModel):
    """Recipient as resolved by the user directory."""

    id: str
    email: str = ""
    display_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class DoNotDisturb(BaseModel):
    enabled: bool = False
    days: list[Annotated[int, Field(ge=0, le=6)]] = []  # 0 = Sunday; empty = every day
    start_time: HHMM | None = None
    end_time: HHMM | None = None
    timezone: str | None = None  # IANA name; None = scheduler timezone


class NotificationPreference(BaseModel):
    user_id: str
    email: bool = True
    in_app: bool = True
    push: bool = False
    sms: bool = False
    types: dict[str, bool] = {}
    do_not_disturb: DoNotDisturb | None = None
    updated_at: Timestamp | None = None

    def allows(self, notification_type: str) -> bool:
        """A type is opted out only when its flag is explicitly False."""
        return self.types.get(notification_type) is not False

    def channel_enabled(self, channel: Channel) -> bool:
        return bool(getattr(self, channel))


# ---------------------------------------------------------------------------
# Retries
# ---------------------------------------------------------------------------


class RetryConfig(BaseModel):
    max_retries: int = Field(default=3, ge=0)
    retry_delay_minutes: int = Field(default=15, ge=0)
    current_retries: int = Field(default=0, ge=0)


class RetryRecord(BaseModel):
    """A deferred delivery attempt."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    user_id: str
    notification_type: str
    payload: dict[str, str] = {}
    retry_config: RetryConfig
    scheduled_for: Timestamp
    reason: str | None = None
    created_at: Timestamp = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Delivery artefacts
# ---------------------------------------------------------------------------


class InAppNotification(BaseModel):
    """A notification-center entry created by the dispatcher."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    user_id: str
    type: str
    title: str
    message: str
    link: str | None = None
    priority: Priority = "medium"
    is_read: bool = False
    created_at: Timestamp = Field(default_factory=_utcnow)


class PushMessage(BaseModel):
    """Payload published on the push channel for device delivery."""

    user_id: str
    type: str
    title: str
    message: str
    link: str | None = None


class MessageTemplate(BaseModel):
    """Email template for a notification type. The newest active version is used."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    type: str
    name: str = ""
    subject: str
    html_content: str
    text_content: str
    preview_text: str | None = None
    is_active: bool = True
    version: int = Field(default=1, ge=1)
    created_at: Timestamp = Field(default_factory=_utcnow)
    updated_at: Timestamp = Field(default_factory=_utcnow)


class NotificationLogEntry(BaseModel):
    """Audit record of one dispatch, per channel."""

    user_id: str
    type: str
    channels: dict[str, ChannelStatus]
    title: str | None = None
    link: str | None = None
    created_at: Timestamp = Field(default_factory=_utcnow)

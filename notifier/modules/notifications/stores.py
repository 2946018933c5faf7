"""Collaborator contracts and their SQLAlchemy implementations."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.notifications.batching import BatchingActor
from modules.notifications.preferences import default_preferences
from shared.config import Settings
from shared.models.email_template import EmailTemplate
from shared.models.learning import Certificate, Course, CourseProgress, Enrollment
from shared.models.notification import Notification
from shared.models.notification_log import NotificationLog
from shared.models.notification_preference import (
    NotificationPreference as NotificationPreferenceModel,
)
from shared.models.notification_retry import NotificationRetry
from shared.models.notification_schedule import NotificationSchedule
from shared.models.user import User
from shared.schemas.notifications import (
    InAppNotification,
    MessageTemplate,
    NotificationLogEntry,
    NotificationPreference,
    RetryRecord,
    Schedule,
    UserProfile,
)

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Learning record rows
# ---------------------------------------------------------------------------


@dataclass
class ProgressRecord:
    user_id: str
    course_id: str
    course_title: str | None
    progress: float


@dataclass
class CompletionRecord:
    user_id: str
    course_id: str
    course_title: str | None
    completed_at: datetime


@dataclass
class CertificateRecord:
    id: str
    user_id: str
    course_id: str
    course_title: str | None
    expiration_date: datetime


@dataclass
class PublishedCourse:
    id: str
    title: str | None
    description: str | None
    published_at: datetime


@dataclass
class InactiveEnrollment:
    user_id: str
    course_id: str
    course_title: str | None
    last_accessed_at: datetime


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


class ScheduleStore(ABC):
    @abstractmethod
    async def load(
        self, active: bool | None = None, template_type: str | None = None
    ) -> list[Schedule]: ...

    @abstractmethod
    async def get(self, schedule_id: uuid.UUID) -> Schedule | None: ...

    @abstractmethod
    async def save(self, schedule: Schedule) -> Schedule: ...

    @abstractmethod
    async def update(self, schedule_id: uuid.UUID, **fields: Any) -> Schedule | None:
        """Apply a partial update and return the stored schedule (None if unknown)."""

    @abstractmethod
    async def delete(self, schedule_id: uuid.UUID) -> bool: ...


class RetryStore(ABC):
    @abstractmethod
    async def add(self, record: RetryRecord) -> None: ...

    @abstractmethod
    async def load_due(self, now: datetime) -> list[RetryRecord]:
        """Records with ``scheduled_for <= now``, oldest first."""

    @abstractmethod
    async def delete(self, record_id: uuid.UUID) -> None: ...


class UserDirectory(ABC):
    @abstractmethod
    async def get_user(self, user_id: str) -> UserProfile | None: ...

    @abstractmethod
    async def get_preferences(self, user_id: str) -> NotificationPreference:
        """Stored preferences, or the documented defaults when none exist."""

    @abstractmethod
    async def save_preferences(self, preferences: NotificationPreference) -> NotificationPreference: ...


class NotificationStore(ABC):
    @abstractmethod
    async def create(self, notification: InAppNotification) -> InAppNotification: ...


class TemplateStore(ABC):
    @abstractmethod
    async def get_active_template(self, notification_type: str) -> MessageTemplate | None: ...

    @abstractmethod
    async def load(self, notification_type: str | None = None) -> list[MessageTemplate]: ...

    @abstractmethod
    async def get(self, template_id: uuid.UUID) -> MessageTemplate | None: ...

    @abstractmethod
    async def save(self, template: MessageTemplate) -> MessageTemplate: ...

    @abstractmethod
    async def update(self, template_id: uuid.UUID, **fields: Any) -> MessageTemplate | None:
        """Apply ``fields`` and bump the version. Returns None when missing."""

    @abstractmethod
    async def delete(self, template_id: uuid.UUID) -> bool: ...


class AuditLog(ABC):
    @abstractmethod
    async def append(self, entry: NotificationLogEntry) -> None: ...

    @abstractmethod
    async def flush(self) -> int:
        """Persist buffered entries. Returns how many were written."""

    @abstractmethod
    async def load(self, since: datetime | None = None) -> list[NotificationLogEntry]: ...


class LearningRecords(ABC):
    """Read-only queries over the course platform's learning data."""

    @abstractmethod
    async def progress_between(self, low: float, high: float) -> list[ProgressRecord]:
        """Incomplete enrollments whose progress lies within ``[low, high]``."""

    @abstractmethod
    async def completed_since(self, since: datetime) -> list[CompletionRecord]: ...

    @abstractmethod
    async def certificates_expiring(self, now: datetime, until: datetime) -> list[CertificateRecord]:
        """Certificates expiring after ``now`` and no later than ``until``."""

    @abstractmethod
    async def courses_published_since(self, since: datetime) -> list[PublishedCourse]: ...

    @abstractmethod
    async def active_user_ids(self) -> list[str]: ...

    @abstractmethod
    async def enrollments_inactive_since(self, cutoff: datetime) -> list[InactiveEnrollment]:
        """Incomplete enrollments last accessed at or before ``cutoff``."""


# ---------------------------------------------------------------------------
# SQL implementations
# ---------------------------------------------------------------------------


def _column_value(value: Any) -> Any:
    """Nested schemas are stored as JSON columns."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def _schedule_columns(schedule: Schedule) -> dict[str, Any]:
    return {
        "id": schedule.id,
        "name": schedule.name,
        "template_type": schedule.template_type,
        "conditions": schedule.conditions,
        "frequency": schedule.frequency,
        "recurring_schedule": _column_value(schedule.recurring_schedule),
        "custom_schedule": _column_value(schedule.custom_schedule),
        "is_active": schedule.is_active,
        "last_run": schedule.last_run,
        "next_run": schedule.next_run,
        "execution_stats": _column_value(schedule.execution_stats),
        "created_at": schedule.created_at,
        "updated_at": schedule.updated_at,
    }


def _to_schedule(row: NotificationSchedule) -> Schedule | None:
    try:
        return Schedule.model_validate(row, from_attributes=True)
    except ValidationError as e:
        logger.warning("schedule_invalid", schedule_id=str(row.id), error=str(e))
        return None


class SqlScheduleStore(ScheduleStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load(
        self, active: bool | None = None, template_type: str | None = None
    ) -> list[Schedule]:
        stmt = select(NotificationSchedule).order_by(NotificationSchedule.created_at)
        if active is not None:
            stmt = stmt.where(NotificationSchedule.is_active.is_(active))
        if template_type:
            stmt = stmt.where(NotificationSchedule.template_type == template_type)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()

        schedules = []
        for row in rows:
            schedule = _to_schedule(row)
            if schedule is not None:
                schedules.append(schedule)
        return schedules

    async def get(self, schedule_id: uuid.UUID) -> Schedule | None:
        async with self.session_factory() as session:
            row = await session.get(NotificationSchedule, schedule_id)
        return _to_schedule(row) if row is not None else None

    async def save(self, schedule: Schedule) -> Schedule:
        async with self.session_factory() as session:
            await session.merge(NotificationSchedule(**_schedule_columns(schedule)))
            await session.commit()
        return schedule

    async def update(self, schedule_id: uuid.UUID, **fields: Any) -> Schedule | None:
        async with self.session_factory() as session:
            row = await session.get(NotificationSchedule, schedule_id)
            if row is None:
                return None
            for name, value in fields.items():
                setattr(row, name, _column_value(value))
            row.updated_at = datetime.now(timezone.utc)
            await session.commit()
        return _to_schedule(row)

    async def delete(self, schedule_id: uuid.UUID) -> bool:
        async with self.session_factory() as session:
            row = await session.get(NotificationSchedule, schedule_id)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
        return True


class SqlRetryStore(RetryStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def add(self, record: RetryRecord) -> None:
        async with self.session_factory() as session:
            session.add(
                NotificationRetry(
                    id=record.id,
                    user_id=record.user_id,
                    notification_type=record.notification_type,
                    payload=record.payload,
                    retry_config=record.retry_config.model_dump(),
                    scheduled_for=record.scheduled_for,
                    reason=record.reason,
                    created_at=record.created_at,
                )
            )
            await session.commit()

    async def load_due(self, now: datetime) -> list[RetryRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationRetry)
                .where(NotificationRetry.scheduled_for <= now)
                .order_by(NotificationRetry.scheduled_for)
            )
            rows = result.scalars().all()
        return [RetryRecord.model_validate(row, from_attributes=True) for row in rows]

    async def delete(self, record_id: uuid.UUID) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(NotificationRetry).where(NotificationRetry.id == record_id))
            await session.commit()


class SqlUserDirectory(UserDirectory):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_user(self, user_id: str) -> UserProfile | None:
        async with self.session_factory() as session:
            row = await session.get(User, user_id)
        if row is None:
            return None
        return UserProfile.model_validate(row, from_attributes=True)

    async def get_preferences(self, user_id: str) -> NotificationPreference:
        async with self.session_factory() as session:
            row = await session.get(NotificationPreferenceModel, user_id)
        if row is None:
            return default_preferences(user_id)
        return NotificationPreference.model_validate(row, from_attributes=True)

    async def save_preferences(self, preferences: NotificationPreference) -> NotificationPreference:
        preferences = preferences.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        async with self.session_factory() as session:
            await session.merge(
                NotificationPreferenceModel(
                    user_id=preferences.user_id,
                    email=preferences.email,
                    in_app=preferences.in_app,
                    push=preferences.push,
                    sms=preferences.sms,
                    types=preferences.types,
                    do_not_disturb=_column_value(preferences.do_not_disturb),
                    updated_at=preferences.updated_at,
                )
            )
            await session.commit()
        return preferences


class SqlNotificationStore(NotificationStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, notification: InAppNotification) -> InAppNotification:
        async with self.session_factory() as session:
            session.add(Notification(**notification.model_dump()))
            await session.commit()
        return notification


class SqlTemplateStore(TemplateStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_active_template(self, notification_type: str) -> MessageTemplate | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(EmailTemplate)
                .where(EmailTemplate.type == notification_type, EmailTemplate.is_active.is_(True))
                .order_by(EmailTemplate.version.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
        if row is None:
            return None
        return MessageTemplate.model_validate(row, from_attributes=True)

    async def load(self, notification_type: str | None = None) -> list[MessageTemplate]:
        stmt = select(EmailTemplate).order_by(EmailTemplate.type, EmailTemplate.version.desc())
        if notification_type:
            stmt = stmt.where(EmailTemplate.type == notification_type)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [MessageTemplate.model_validate(row, from_attributes=True) for row in rows]

    async def get(self, template_id: uuid.UUID) -> MessageTemplate | None:
        async with self.session_factory() as session:
            row = await session.get(EmailTemplate, template_id)
        if row is None:
            return None
        return MessageTemplate.model_validate(row, from_attributes=True)

    async def save(self, template: MessageTemplate) -> MessageTemplate:
        async with self.session_factory() as session:
            session.add(EmailTemplate(**template.model_dump()))
            await session.commit()
        return template

    async def update(self, template_id: uuid.UUID, **fields: Any) -> MessageTemplate | None:
        async with self.session_factory() as session:
            row = await session.get(EmailTemplate, template_id)
            if row is None:
                return None
            for name, value in fields.items():
                setattr(row, name, value)
            row.version += 1
            row.updated_at = datetime.now(timezone.utc)
            await session.commit()
        return MessageTemplate.model_validate(row, from_attributes=True)

    async def delete(self, template_id: uuid.UUID) -> bool:
        async with self.session_factory() as session:
            row = await session.get(EmailTemplate, template_id)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
        return True


class SqlAuditLog(AuditLog):
    """Audit entries are buffered and written in batches."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
    ):
        self.session_factory = session_factory
        self._actor: BatchingActor[NotificationLogEntry] = BatchingActor(
            self._write,
            clock=clock or (lambda: datetime.now(timezone.utc)),
            flush_interval=settings.audit_flush_interval_seconds,
            max_batch_size=settings.audit_batch_size,
            max_pending=settings.audit_batch_size * 2,
        )

    async def _write(self, entries: list[NotificationLogEntry]) -> None:
        async with self.session_factory() as session:
            session.add_all([NotificationLog(**entry.model_dump()) for entry in entries])
            await session.commit()

    async def append(self, entry: NotificationLogEntry) -> None:
        self._actor.submit(entry)
        await self._actor.maybe_flush()

    async def flush(self) -> int:
        total = 0
        while self._actor.pending:
            written = await self._actor.flush()
            if not written:
                break
            total += written
        return total

    async def load(self, since: datetime | None = None) -> list[NotificationLogEntry]:
        stmt = select(NotificationLog).order_by(NotificationLog.created_at)
        if since is not None:
            stmt = stmt.where(NotificationLog.created_at >= since)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [NotificationLogEntry.model_validate(row, from_attributes=True) for row in rows]


class SqlLearningRecords(LearningRecords):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _rows(self, stmt) -> list:
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.all())

    async def progress_between(self, low: float, high: float) -> list[ProgressRecord]:
        rows = await self._rows(
            select(
                CourseProgress.user_id,
                CourseProgress.course_id,
                Course.title.label("course_title"),
                CourseProgress.progress,
            )
            .join(Course, Course.id == CourseProgress.course_id)
            .where(
                CourseProgress.progress >= low,
                CourseProgress.progress <= high,
                CourseProgress.completed.is_(False),
            )
        )
        return [ProgressRecord(r.user_id, r.course_id, r.course_title, r.progress) for r in rows]

    async def completed_since(self, since: datetime) -> list[CompletionRecord]:
        rows = await self._rows(
            select(
                CourseProgress.user_id,
                CourseProgress.course_id,
                Course.title.label("course_title"),
                CourseProgress.completed_at,
            )
            .join(Course, Course.id == CourseProgress.course_id)
            .where(CourseProgress.completed.is_(True), CourseProgress.completed_at >= since)
        )
        return [CompletionRecord(r.user_id, r.course_id, r.course_title, r.completed_at) for r in rows]

    async def certificates_expiring(self, now: datetime, until: datetime) -> list[CertificateRecord]:
        rows = await self._rows(
            select(
                Certificate.id,
                Certificate.user_id,
                Certificate.course_id,
                Course.title.label("course_title"),
                Certificate.expiration_date,
            )
            .join(Course, Course.id == Certificate.course_id)
            .where(Certificate.expiration_date > now, Certificate.expiration_date <= until)
        )
        return [
            CertificateRecord(r.id, r.user_id, r.course_id, r.course_title, r.expiration_date)
            for r in rows
        ]

    async def courses_published_since(self, since: datetime) -> list[PublishedCourse]:
        rows = await self._rows(
            select(Course.id, Course.title, Course.description, Course.published_at).where(
                Course.status == "published", Course.published_at >= since
            )
        )
        return [PublishedCourse(r.id, r.title, r.description, r.published_at) for r in rows]

    async def active_user_ids(self) -> list[str]:
        rows = await self._rows(select(User.id).where(User.is_active.is_(True)))
        return [r.id for r in rows]

    async def enrollments_inactive_since(self, cutoff: datetime) -> list[InactiveEnrollment]:
        rows = await self._rows(
            select(
                Enrollment.user_id,
                Enrollment.course_id,
                Course.title.label("course_title"),
                Enrollment.last_accessed_at,
            )
            .join(Course, Course.id == Enrollment.course_id)
            .where(Enrollment.completed.is_(False), Enrollment.last_accessed_at <= cutoff)
        )
        return [
            InactiveEnrollment(r.user_id, r.course_id, r.course_title, r.last_accessed_at)
            for r in rows
        ]

"""Per-type recipient routines: who gets a scheduled notification, with what payload."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable

import structlog

from modules.notifications.idempotency import idempotency_key
from modules.notifications.stores import LearningRecords
from shared.schemas.notifications import Schedule

logger = structlog.get_logger()

# Progress matches within this many percentage points of the threshold
PROGRESS_WINDOW = 5


@dataclass
class Recipient:
    user_id: str
    data: dict[str, str] = field(default_factory=dict)
    idempotency_key: str = ""


def _condition(schedule: Schedule, name: str, default: float) -> float:
    value = schedule.conditions.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(
            "schedule_condition_invalid",
            schedule_id=str(schedule.id),
            condition=name,
            value=value,
        )
        return default


def _number(value: float) -> str:
    return f"{value:g}"


async def course_progress_recipients(
    schedule: Schedule, records: LearningRecords, now: datetime
) -> list[Recipient]:
    threshold = _condition(schedule, "courseProgress", 50)
    rows = await records.progress_between(threshold - PROGRESS_WINDOW, threshold + PROGRESS_WINDOW)

    recipients = []
    for row in rows:
        if not row.course_title:
            continue
        recipients.append(
            Recipient(
                user_id=row.user_id,
                data={
                    "courseId": row.course_id,
                    "courseName": row.course_title,
                    "progress": _number(row.progress),
                    "link": f"/courses/{row.course_id}/learn",
                    "title": f"You're making great progress in {row.course_title}!",
                    "message": (
                        f"You've completed {_number(row.progress)}% of \"{row.course_title}\". "
                        "Keep up the good work!"
                    ),
                },
                idempotency_key=idempotency_key(
                    "course_progress", row.user_id, row.course_id, _number(threshold)
                ),
            )
        )
    return recipients


async def course_completion_recipients(
    schedule: Schedule, records: LearningRecords, now: datetime
) -> list[Recipient]:
    lookback = _condition(schedule, "completionLookbackDays", 30)
    rows = await records.completed_since(now - timedelta(days=lookback))

    recipients = []
    for row in rows:
        if not row.course_title:
            continue
        recipients.append(
            Recipient(
                user_id=row.user_id,
                data={
                    "courseId": row.course_id,
                    "courseName": row.course_title,
                    "completionDate": row.completed_at.date().isoformat(),
                    "link": f"/courses/{row.course_id}/certificate",
                    "title": f"Congratulations on completing {row.course_title}!",
                    "message": (
                        f"You've successfully completed \"{row.course_title}\". "
                        "Don't forget to download your certificate!"
                    ),
                },
                idempotency_key=idempotency_key("course_completion", row.user_id, row.course_id),
            )
        )
    return recipients


async def certificate_expiration_recipients(
    schedule: Schedule, records: LearningRecords, now: datetime
) -> list[Recipient]:
    days_before = _condition(schedule, "daysBeforeExpiration", 30)
    rows = await records.certificates_expiring(now, now + timedelta(days=days_before))

    recipients = []
    for row in rows:
        if not row.course_title:
            continue
        days_left = math.ceil((row.expiration_date - now).total_seconds() / 86400)
        expiry = row.expiration_date.date().isoformat()
        recipients.append(
            Recipient(
                user_id=row.user_id,
                data={
                    "courseId": row.course_id,
                    "courseName": row.course_title,
                    "certificateId": row.id,
                    "expirationDate": expiry,
                    "daysUntilExpiration": str(days_left),
                    "link": f"/courses/{row.course_id}/certificate",
                    "title": f"Your certificate for {row.course_title} is expiring soon",
                    "message": (
                        f"Your certificate for \"{row.course_title}\" will expire in {days_left} days. "
                        "Consider renewing your certification."
                    ),
                },
                idempotency_key=idempotency_key(
                    "certificate_expiration", row.user_id, row.id, expiry
                ),
            )
        )
    return recipients


async def new_course_recipients(
    schedule: Schedule, records: LearningRecords, now: datetime
) -> list[Recipient]:
    within = _condition(schedule, "publishedWithinDays", 7)
    courses = [
        c for c in await records.courses_published_since(now - timedelta(days=within)) if c.title
    ]
    if not courses:
        return []

    user_ids = await records.active_user_ids()

    recipients = []
    for course in courses:
        for user_id in user_ids:
            recipients.append(
                Recipient(
                    user_id=user_id,
                    data={
                        "courseId": course.id,
                        "courseName": course.title,
                        "courseDescription": course.description or "Check out our new course!",
                        "link": f"/courses/{course.id}",
                        "title": f"New Course Available: {course.title}",
                        "message": (
                            f"We've just published a new course: \"{course.title}\". "
                            "Check it out and enhance your skills!"
                        ),
                    },
                    idempotency_key=idempotency_key("new_course_available", user_id, course.id),
                )
            )
    return recipients


async def inactivity_recipients(
    schedule: Schedule, records: LearningRecords, now: datetime
) -> list[Recipient]:
    days = _condition(schedule, "daysSinceLastActivity", 14)
    rows = await records.enrollments_inactive_since(now - timedelta(days=days))

    recipients = []
    for row in rows:
        if not row.course_title:
            continue
        days_inactive = math.floor((now - row.last_accessed_at).total_seconds() / 86400)
        last_access = row.last_accessed_at.date().isoformat()
        recipients.append(
            Recipient(
                user_id=row.user_id,
                data={
                    "courseId": row.course_id,
                    "courseName": row.course_title,
                    "daysInactive": str(days_inactive),
                    "lastAccessDate": last_access,
                    "link": f"/courses/{row.course_id}/learn",
                    "title": f"Continue your learning journey with {row.course_title}",
                    "message": (
                        f"It's been {days_inactive} days since you last accessed "
                        f"\"{row.course_title}\". Don't lose your momentum!"
                    ),
                },
                idempotency_key=idempotency_key(
                    "inactivity_reminder", row.user_id, row.course_id, last_access
                ),
            )
        )
    return recipients


RecipientRoutine = Callable[[Schedule, LearningRecords, datetime], Awaitable[list[Recipient]]]

RECIPIENT_ROUTINES: dict[str, RecipientRoutine] = {
    "course_progress": course_progress_recipients,
    "course_completion": course_completion_recipients,
    "certificate_expiration": certificate_expiration_recipients,
    "new_course_available": new_course_recipients,
    "inactivity_reminder": inactivity_recipients,
}

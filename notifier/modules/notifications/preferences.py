"""Preference gate: per-user opt-outs and do-not-disturb deferral."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from modules.notifications.quiet_hours import in_quiet_hours, quiet_hours_end
from shared.schemas.notifications import NotificationPreference

# Delivered even inside quiet hours
ALWAYS_DELIVER_TYPES = frozenset(
    {"course_completion", "certificate_expiration", "enrollment_confirmation"}
)

SCHEDULED_TYPES = (
    "course_progress",
    "course_completion",
    "certificate_expiration",
    "new_course_available",
    "inactivity_reminder",
)


@dataclass
class GateDecision:
    proceed: bool
    retry_at: datetime | None = None
    reason: str | None = None


def respects_do_not_disturb(notification_type: str) -> bool:
    return notification_type not in ALWAYS_DELIVER_TYPES


def default_preferences(user_id: str) -> NotificationPreference:
    """Preferences for a user who never saved any."""
    return NotificationPreference(
        user_id=user_id,
        email=True,
        in_app=True,
        push=False,
        sms=False,
        types={t: True for t in SCHEDULED_TYPES},
    )


def may_deliver_now(
    notification_type: str,
    preferences: NotificationPreference,
    now: datetime,
    *,
    bypass_preferences: bool = False,
    bypass_do_not_disturb: bool = False,
    resume_buffer_minutes: int = 5,
    fallback_hours: int = 8,
) -> GateDecision:
    """Decide whether a notification may go out at ``now``.

    An opted-out type is suppressed for good (no ``retry_at``). Quiet hours
    suppress DND-respecting types until the window ends.
    """
    if not bypass_preferences and not preferences.allows(notification_type):
        return GateDecision(proceed=False, reason="preference_disabled")

    if (
        not bypass_do_not_disturb
        and respects_do_not_disturb(notification_type)
        and in_quiet_hours(preferences.do_not_disturb, now)
    ):
        retry_at = quiet_hours_end(
            preferences.do_not_disturb,
            now,
            resume_buffer_minutes=resume_buffer_minutes,
            fallback_hours=fallback_hours,
        )
        return GateDecision(proceed=False, retry_at=retry_at, reason="do_not_disturb")

    return GateDecision(proceed=True)

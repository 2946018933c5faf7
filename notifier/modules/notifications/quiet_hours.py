"""Do-not-disturb window evaluation."""

from __future__ import annotations

import zoneinfo
from datetime import datetime, time, timedelta

import structlog

from modules.notifications.clock import sunday_weekday
from shared.schemas.notifications import DoNotDisturb

logger = structlog.get_logger()


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def _localize(dnd: DoNotDisturb, now: datetime) -> datetime:
    if not dnd.timezone:
        return now
    try:
        return now.astimezone(zoneinfo.ZoneInfo(dnd.timezone))
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.warning("dnd_timezone_invalid", timezone=dnd.timezone)
        return now


def in_quiet_hours(dnd: DoNotDisturb | None, now: datetime) -> bool:
    """True when ``now`` falls inside the user's do-not-disturb window.

    A window without start or end time covers the whole day. An end earlier
    than the start wraps past midnight. Bounds are inclusive at minute
    precision.
    """
    if dnd is None or not dnd.enabled:
        return False

    local = _localize(dnd, now)

    if dnd.days and sunday_weekday(local) not in dnd.days:
        return False

    if not dnd.start_time or not dnd.end_time:
        return True

    current = time(local.hour, local.minute)
    start = _parse_hhmm(dnd.start_time)
    end = _parse_hhmm(dnd.end_time)

    if start <= end:
        return start <= current <= end
    return current >= start or current <= end


def quiet_hours_end(
    dnd: DoNotDisturb | None,
    now: datetime,
    *,
    resume_buffer_minutes: int = 5,
    fallback_hours: int = 8,
) -> datetime:
    """Moment at which a suppressed notification should be retried."""
    if dnd is None or not dnd.end_time:
        return now + timedelta(hours=fallback_hours)

    local = _localize(dnd, now)
    end = _parse_hhmm(dnd.end_time)
    resume = local.replace(hour=end.hour, minute=end.minute, second=0, microsecond=0)
    resume += timedelta(minutes=resume_buffer_minutes)
    if resume <= local:
        resume += timedelta(days=1)
    return resume.astimezone(now.tzinfo) if now.tzinfo else resume

"""Frequency clock: decides when a schedule is due and when it runs next.

Pure functions: no I/O, the caller supplies ``now``. Calendar fields
(weekday, hour, day of month, ...) are read from ``now`` in whatever zone
it carries, so the caller converts to the scheduler timezone first.
"""

from __future__ import annotations

import zoneinfo
from datetime import datetime, timedelta, timezone

import structlog
from croniter import CroniterBadCronError, CroniterBadDateError, croniter
from dateutil.relativedelta import relativedelta

from shared.schemas.notifications import CustomSchedule, Schedule

logger = structlog.get_logger()

# Bound for the custom forward search, in minutes (~7 days)
DEFAULT_SCAN_LIMIT_MINUTES = 10_000

# Custom schedules never fire twice within this window
_CUSTOM_MIN_GAP = timedelta(hours=1)


def scheduler_now(timezone_name: str, now: datetime | None = None) -> datetime:
    """``now`` (default: the current instant) expressed in the scheduler timezone."""
    return (now or datetime.now(timezone.utc)).astimezone(zoneinfo.ZoneInfo(timezone_name))


def add_interval(moment: datetime, interval: int, unit: str) -> datetime:
    """Advance ``moment`` by ``interval`` units. Months clamp to the month end."""
    if unit == "minutes":
        return moment + timedelta(minutes=interval)
    if unit == "hours":
        return moment + timedelta(hours=interval)
    if unit == "days":
        return moment + timedelta(days=interval)
    if unit == "weeks":
        return moment + timedelta(weeks=interval)
    if unit == "months":
        return moment + relativedelta(months=interval)
    raise ValueError(f"Unknown interval unit: {unit!r}")


def sunday_weekday(moment: datetime) -> int:
    """Day of week with Sunday = 0 ... Saturday = 6."""
    return (moment.weekday() + 1) % 7


def matches_custom(custom: CustomSchedule, moment: datetime) -> bool:
    """True when every non-empty allow-set contains the matching field of ``moment``."""
    checks = (
        (custom.days, sunday_weekday(moment)),
        (custom.hours, moment.hour),
        (custom.minutes, moment.minute),
        (custom.month_days, moment.day),
        (custom.months, moment.month),
    )
    return all(not allowed or value in allowed for allowed, value in checks)


def cron_expression(custom: CustomSchedule) -> str:
    """Compile allow-sets to a five-field cron expression (minute hour dom month dow)."""

    def field(values: list[int]) -> str:
        return ",".join(str(v) for v in sorted(set(values))) if values else "*"

    return " ".join(
        field(values)
        for values in (custom.minutes, custom.hours, custom.month_days, custom.months, custom.days)
    )


def custom_schedule_is_satisfiable(custom: CustomSchedule, start: datetime) -> bool:
    """Whether the allow-sets can ever match (e.g. rejects Feb 30 or Feb 31 + Monday)."""
    try:
        croniter(cron_expression(custom), start, day_or=False).get_next(datetime)
    except (CroniterBadDateError, CroniterBadCronError):
        return False
    return True


def _top_of_hour(moment: datetime) -> datetime:
    return moment.replace(minute=0, second=0, microsecond=0)


def is_due(schedule: Schedule, now: datetime) -> bool:
    """Decide whether ``schedule`` should run at ``now``."""
    if schedule.last_run is None:
        return True

    if schedule.next_run is not None and schedule.next_run > now:
        return False

    last_run = schedule.last_run
    frequency = schedule.frequency

    if frequency == "immediately":
        # Single shot: it has already run
        return False

    if frequency in ("daily", "weekly", "monthly"):
        # A stored next_run that has been reached is authoritative
        if schedule.next_run is not None:
            return True
        if frequency == "daily":
            return last_run <= now - timedelta(days=1)
        if frequency == "weekly":
            return last_run <= now - timedelta(days=7)
        return last_run <= now - relativedelta(months=1)

    if frequency == "recurring":
        recurring = schedule.recurring_schedule
        if (
            recurring.max_occurrences
            and schedule.execution_stats.total_runs >= recurring.max_occurrences
        ):
            return False
        if recurring.end_date and recurring.end_date < now:
            return False
        return now >= add_interval(last_run, recurring.interval, recurring.unit)

    if frequency == "custom":
        if not matches_custom(schedule.custom_schedule, now):
            return False
        return last_run <= now - _CUSTOM_MIN_GAP

    return False


def next_run_time(
    schedule: Schedule,
    now: datetime,
    *,
    scan_limit_minutes: int = DEFAULT_SCAN_LIMIT_MINUTES,
) -> datetime | None:
    """Compute the next run time, or None when the schedule will not run again."""
    frequency = schedule.frequency

    if frequency == "immediately":
        return None

    if frequency == "daily":
        return _top_of_hour(now + timedelta(days=1))

    if frequency == "weekly":
        return _top_of_hour(now + timedelta(days=7))

    if frequency == "monthly":
        return _top_of_hour(now + relativedelta(months=1))

    if frequency == "recurring":
        recurring = schedule.recurring_schedule
        if (
            recurring.max_occurrences
            and schedule.execution_stats.total_runs >= recurring.max_occurrences
        ):
            return None
        base = schedule.last_run or now
        candidate = add_interval(base, recurring.interval, recurring.unit)
        if candidate < now:
            candidate = add_interval(now, recurring.interval, recurring.unit)
        if recurring.end_date and candidate > recurring.end_date:
            return None
        return candidate

    if frequency == "custom":
        return _next_custom_run(schedule, now, scan_limit_minutes)

    return None


def _next_custom_run(schedule: Schedule, now: datetime, scan_limit_minutes: int) -> datetime:
    """First whole minute after ``now`` matching the allow-sets, within the scan bound."""
    start = now.replace(second=0, microsecond=0)
    limit = start + timedelta(minutes=scan_limit_minutes)

    candidate: datetime | None
    try:
        candidate = croniter(
            cron_expression(schedule.custom_schedule), start, day_or=False
        ).get_next(datetime)
    except (CroniterBadDateError, CroniterBadCronError):
        candidate = None

    if candidate is None or candidate > limit:
        fallback = now + timedelta(days=1)
        logger.warning(
            "custom_schedule_no_match",
            schedule_id=str(schedule.id),
            scan_limit_minutes=scan_limit_minutes,
            fallback=fallback.isoformat(),
        )
        return fallback

    return candidate

"""Notification background worker: runs due schedules and drains the retry queue."""

from __future__ import annotations

import asyncio
import time
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

import redis.asyncio as aioredis
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.notifications.clock import is_due, next_run_time, scheduler_now
from modules.notifications.dispatcher import NotificationDispatcher
from modules.notifications.idempotency import IdempotencyLedger
from modules.notifications.recipients import RECIPIENT_ROUTINES
from modules.notifications.retry_queue import RetryQueue
from modules.notifications.senders import (
    HttpEmailSender,
    InAppSender,
    LoggingSmsSender,
    RedisPushSender,
)
from modules.notifications.stores import (
    AuditLog,
    LearningRecords,
    ScheduleStore,
    SqlAuditLog,
    SqlLearningRecords,
    SqlNotificationStore,
    SqlRetryStore,
    SqlScheduleStore,
    SqlTemplateStore,
    SqlUserDirectory,
    TemplateStore,
    UserDirectory,
)
from shared.config import Settings
from shared.error_capture import capture_error
from shared.schemas.notifications import Schedule

logger = structlog.get_logger()

# Only one process sweeps at a time
LEASE_KEY = "notifications:runner_lease"

ErrorSink = Callable[[Schedule, Exception], Awaitable[None]]


@dataclass
class RunOutcome:
    success: bool
    notifications_sent: int = 0
    duration_ms: int = 0
    error: str | None = None


@dataclass
class TickSummary:
    checked: int = 0
    due: int = 0
    succeeded: int = 0
    failed: int = 0
    notifications_sent: int = 0


@dataclass
class SweepSummary:
    retries_delivered: int = 0
    tick: TickSummary = field(default_factory=TickSummary)
    audit_entries_written: int = 0


class ScheduleRunner:
    """Evaluates active schedules and executes the due ones."""

    def __init__(
        self,
        schedules: ScheduleStore,
        dispatcher: NotificationDispatcher,
        records: LearningRecords,
        ledger: IdempotencyLedger,
        settings: Settings,
        error_sink: ErrorSink | None = None,
    ):
        self.schedules = schedules
        self.dispatcher = dispatcher
        self.records = records
        self.ledger = ledger
        self.settings = settings
        self.error_sink = error_sink

    async def tick(self, now: datetime | None = None) -> TickSummary:
        """Run every due schedule once. Returns per-tick counters."""
        now = scheduler_now(self.settings.notification_timezone, now)

        schedules = await self.schedules.load(active=True)
        due = [s for s in schedules if is_due(s, now)]
        summary = TickSummary(checked=len(schedules), due=len(due))
        if not due:
            return summary

        logger.info("processing_due_schedules", count=len(due))

        if self.settings.schedule_concurrency > 1:
            semaphore = asyncio.Semaphore(self.settings.schedule_concurrency)

            async def _bounded(schedule: Schedule) -> RunOutcome:
                async with semaphore:
                    return await self._run_guarded(schedule, now)

            outcomes = await asyncio.gather(*(_bounded(s) for s in due))
        else:
            outcomes = [await self._run_guarded(s, now) for s in due]

        for outcome in outcomes:
            if outcome.success:
                summary.succeeded += 1
            else:
                summary.failed += 1
            summary.notifications_sent += outcome.notifications_sent

        logger.info(
            "notification_tick_complete",
            due=summary.due,
            succeeded=summary.succeeded,
            failed=summary.failed,
            notifications_sent=summary.notifications_sent,
        )
        return summary

    async def _run_guarded(self, schedule: Schedule, now: datetime) -> RunOutcome:
        try:
            return await self.run_schedule(schedule, now)
        except Exception as e:
            # Stats could not be stored; the schedule stays due for the next tick
            logger.error("schedule_record_error", schedule_id=str(schedule.id), error=str(e))
            return RunOutcome(success=False, error=str(e))

    async def run_schedule(self, schedule: Schedule, now: datetime) -> RunOutcome:
        """Execute one schedule and record the outcome on it."""
        started = time.monotonic()
        try:
            sent = await self._send_to_recipients(schedule, now)
            outcome = RunOutcome(success=True, notifications_sent=sent)
        except Exception as e:
            logger.error(
                "schedule_execution_error",
                schedule_id=str(schedule.id),
                template_type=schedule.template_type,
                error=str(e),
                exc_info=True,
            )
            outcome = RunOutcome(success=False, error=str(e))
            if self.error_sink is not None:
                await self.error_sink(schedule, e)

        outcome.duration_ms = int((time.monotonic() - started) * 1000)
        await self.record_execution(schedule, outcome, now)

        logger.info(
            "schedule_executed",
            schedule_id=str(schedule.id),
            template_type=schedule.template_type,
            success=outcome.success,
            notifications_sent=outcome.notifications_sent,
            duration_ms=outcome.duration_ms,
        )
        return outcome

    async def _send_to_recipients(self, schedule: Schedule, now: datetime) -> int:
        routine = RECIPIENT_ROUTINES.get(schedule.template_type)
        if routine is None:
            logger.warning(
                "unknown_template_type",
                schedule_id=str(schedule.id),
                template_type=schedule.template_type,
            )
            return 0

        recipients = await routine(schedule, self.records, now)
        sent = 0
        for recipient in recipients:
            if not await self.ledger.claim(recipient.idempotency_key, now):
                continue
            try:
                result = await self.dispatcher.dispatch(
                    recipient.user_id, schedule.template_type, recipient.data, now=now
                )
            except BaseException:
                # Interrupted before the dispatcher settled: a later tick retries
                await self.ledger.release(recipient.idempotency_key)
                raise
            if result:
                sent += 1
        return sent

    async def record_execution(
        self, schedule: Schedule, outcome: RunOutcome, now: datetime
    ) -> Schedule:
        """Fold one run into the schedule's stats and compute its next run."""
        previous = schedule.execution_stats
        stats = previous.model_copy(
            update={
                "total_runs": previous.total_runs + 1,
                "successful_runs": previous.successful_runs + (1 if outcome.success else 0),
                "failed_runs": previous.failed_runs + (0 if outcome.success else 1),
                "last_run_status": "success" if outcome.success else "failure",
                "last_run_time_ms": outcome.duration_ms,
                "notifications_sent": previous.notifications_sent + outcome.notifications_sent,
            }
        )
        executed = schedule.model_copy(update={"last_run": now, "execution_stats": stats})
        next_run = next_run_time(
            executed, now, scan_limit_minutes=self.settings.custom_scan_limit_minutes
        )
        is_active = schedule.is_active and schedule.frequency != "immediately"

        updated = await self.schedules.update(
            schedule.id,
            last_run=now,
            next_run=next_run,
            execution_stats=stats,
            is_active=is_active,
        )
        if updated is not None:
            return updated
        return executed.model_copy(update={"next_run": next_run, "is_active": is_active})


@dataclass
class NotificationService:
    """The wired-up collaborators shared by the worker, the tools and the HTTP hooks."""

    schedules: ScheduleStore
    users: UserDirectory
    templates: TemplateStore
    audit_log: AuditLog
    retry_queue: RetryQueue
    dispatcher: NotificationDispatcher
    runner: ScheduleRunner

    async def sweep(self, now: datetime | None = None) -> SweepSummary:
        """Drain due retries, run due schedules, then flush the audit batch."""
        now = now or datetime.now(timezone.utc)
        delivered = await self.retry_queue.drain_due(self.dispatcher, now)
        tick = await self.runner.tick(now)
        written = await self.audit_log.flush()
        return SweepSummary(retries_delivered=delivered, tick=tick, audit_entries_written=written)


def build_service(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    redis: aioredis.Redis,
) -> NotificationService:
    """Wire the SQL stores and channel senders into a service."""
    schedules = SqlScheduleStore(session_factory)
    users = SqlUserDirectory(session_factory)
    templates = SqlTemplateStore(session_factory)
    audit_log = SqlAuditLog(session_factory, settings)
    retry_queue = RetryQueue(SqlRetryStore(session_factory), settings)
    dispatcher = NotificationDispatcher(
        users=users,
        templates=templates,
        senders={
            "in_app": InAppSender(SqlNotificationStore(session_factory)),
            "email": HttpEmailSender(settings),
            "push": RedisPushSender(redis, settings.push_channel),
            "sms": LoggingSmsSender(),
        },
        retry_queue=retry_queue,
        audit_log=audit_log,
        settings=settings,
    )

    async def _capture(schedule: Schedule, error: Exception) -> None:
        await capture_error(
            session_factory,
            service="notifications",
            error_type="schedule_execution",
            operation="run_schedule",
            error_message=str(error),
            stack_trace="".join(traceback.format_exception(error)),
            schedule_id=str(schedule.id),
            context={"template_type": schedule.template_type, "frequency": schedule.frequency},
        )

    runner = ScheduleRunner(
        schedules,
        dispatcher,
        SqlLearningRecords(session_factory),
        IdempotencyLedger(session_factory),
        settings,
        error_sink=_capture,
    )
    return NotificationService(
        schedules=schedules,
        users=users,
        templates=templates,
        audit_log=audit_log,
        retry_queue=retry_queue,
        dispatcher=dispatcher,
        runner=runner,
    )


async def sweep_with_lease(
    service: NotificationService,
    redis: aioredis.Redis,
    settings: Settings,
    now: datetime | None = None,
) -> SweepSummary | None:
    """Sweep once if no other process holds the runner lease."""
    token = uuid.uuid4().hex
    acquired = await redis.set(LEASE_KEY, token, nx=True, ex=settings.runner_lease_seconds)
    if not acquired:
        logger.debug("sweep_lease_held_elsewhere")
        return None
    try:
        return await service.sweep(now)
    finally:
        if await redis.get(LEASE_KEY) == token:
            await redis.delete(LEASE_KEY)


async def notification_loop(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    redis_url: str,
    service: NotificationService | None = None,
) -> None:
    """Background loop that sweeps every ``notification_loop_interval_seconds``."""
    redis = aioredis.from_url(redis_url, decode_responses=True)
    service = service or build_service(session_factory, settings, redis)
    logger.info("notification_worker_started")

    try:
        while True:
            try:
                await sweep_with_lease(service, redis, settings)
            except Exception as e:
                logger.error("notification_loop_error", error=str(e))

            await asyncio.sleep(settings.notification_loop_interval_seconds)
    finally:
        await redis.aclose()

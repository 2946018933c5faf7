"""Notification module tool implementations: schedules, preferences and email templates."""

from __future__ import annotations

import uuid
from collections import Counter, defaultdict
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

import structlog

from modules.notifications.clock import (
    custom_schedule_is_satisfiable,
    next_run_time,
    scheduler_now,
)
from modules.notifications.templates import SAMPLE_VARIABLES, coerce_variables, render_template
from modules.notifications.worker import NotificationService
from shared.config import Settings
from shared.schemas.notifications import (
    CHANNELS,
    NOTIFICATION_TYPES,
    CustomSchedule,
    DoNotDisturb,
    ExecutionStats,
    MessageTemplate,
    Schedule,
)

logger = structlog.get_logger()

_TIMING_FIELDS = ("frequency", "recurring_schedule", "custom_schedule")


def _parse_id(value: str, field: str = "schedule_id") -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except (ValueError, TypeError, AttributeError):
        raise ValueError(f"Invalid {field}: {value!r}")


def _serialize(schedule: Schedule) -> dict:
    return schedule.model_dump(mode="json")


class NotificationTools:
    """Tools for operators managing notification schedules and preferences."""

    def __init__(self, service: NotificationService, settings: Settings):
        self.service = service
        self.settings = settings

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    async def create_schedule(
        self,
        template_type: str,
        frequency: str,
        conditions: dict | None = None,
        name: str | None = None,
        is_active: bool = True,
        recurring_schedule: dict | None = None,
        custom_schedule: dict | None = None,
    ) -> dict:
        """Create a schedule with any frequency model."""
        if template_type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {template_type!r}")

        now = scheduler_now(self.settings.notification_timezone)
        schedule = Schedule(
            name=name,
            template_type=template_type,
            frequency=frequency,
            conditions=conditions or {},
            recurring_schedule=recurring_schedule,
            custom_schedule=custom_schedule,
            is_active=is_active,
            execution_stats=ExecutionStats(),
            created_at=now,
            updated_at=now,
        )
        self._check_custom(schedule.custom_schedule, now)

        if schedule.is_active:
            schedule.next_run = next_run_time(
                schedule, now, scan_limit_minutes=self.settings.custom_scan_limit_minutes
            )

        await self.service.schedules.save(schedule)
        logger.info(
            "schedule_created",
            schedule_id=str(schedule.id),
            template_type=template_type,
            frequency=frequency,
        )
        return _serialize(schedule)

    async def create_recurring_schedule(
        self,
        template_type: str,
        interval: int,
        unit: str,
        max_occurrences: int | None = None,
        end_date: str | None = None,
        conditions: dict | None = None,
        name: str | None = None,
    ) -> dict:
        """Create a schedule that repeats every ``interval`` ``unit``s."""
        return await self.create_schedule(
            template_type=template_type,
            frequency="recurring",
            conditions=conditions,
            name=name,
            recurring_schedule={
                "interval": interval,
                "unit": unit,
                "max_occurrences": max_occurrences,
                "end_date": end_date,
            },
        )

    async def create_custom_schedule(
        self,
        template_type: str,
        days: list[int] | None = None,
        hours: list[int] | None = None,
        minutes: list[int] | None = None,
        month_days: list[int] | None = None,
        months: list[int] | None = None,
        conditions: dict | None = None,
        name: str | None = None,
    ) -> dict:
        """Create a schedule that fires on matching calendar minutes."""
        return await self.create_schedule(
            template_type=template_type,
            frequency="custom",
            conditions=conditions,
            name=name,
            custom_schedule={
                "days": days or [],
                "hours": hours or [],
                "minutes": minutes or [],
                "month_days": month_days or [],
                "months": months or [],
            },
        )

    async def list_schedules(
        self,
        template_type: str | None = None,
        active_only: bool = False,
    ) -> list[dict]:
        schedules = await self.service.schedules.load(
            active=True if active_only else None,
            template_type=template_type,
        )
        return [_serialize(s) for s in schedules]

    async def get_schedule(self, schedule_id: str) -> dict:
        schedule = await self.service.schedules.get(_parse_id(schedule_id))
        if schedule is None:
            raise ValueError(f"Schedule {schedule_id} not found")
        return _serialize(schedule)

    async def update_schedule(
        self,
        schedule_id: str,
        name: str | None = None,
        conditions: dict | None = None,
        frequency: str | None = None,
        recurring_schedule: dict | None = None,
        custom_schedule: dict | None = None,
        is_active: bool | None = None,
    ) -> dict:
        """Change a schedule. ``next_run`` is recomputed when its timing changes."""
        sid = _parse_id(schedule_id)
        existing = await self.service.schedules.get(sid)
        if existing is None:
            raise ValueError(f"Schedule {schedule_id} not found")

        changes: dict[str, Any] = {
            key: value
            for key, value in {
                "name": name,
                "conditions": conditions,
                "frequency": frequency,
                "recurring_schedule": recurring_schedule,
                "custom_schedule": custom_schedule,
                "is_active": is_active,
            }.items()
            if value is not None
        }
        if frequency is not None:
            # Drop the timing block the new frequency no longer uses
            if frequency != "recurring":
                changes.setdefault("recurring_schedule", None)
            if frequency != "custom":
                changes.setdefault("custom_schedule", None)
        if not changes:
            return _serialize(existing)

        merged = Schedule.model_validate({**existing.model_dump(), **changes})
        now = scheduler_now(self.settings.notification_timezone)
        self._check_custom(merged.custom_schedule, now)

        fields = {key: getattr(merged, key) for key in changes}
        if any(key in changes for key in _TIMING_FIELDS) or (is_active and not existing.is_active):
            fields["next_run"] = next_run_time(
                merged, now, scan_limit_minutes=self.settings.custom_scan_limit_minutes
            )

        updated = await self.service.schedules.update(sid, **fields)
        if updated is None:
            raise ValueError(f"Schedule {schedule_id} not found")
        logger.info("schedule_updated", schedule_id=schedule_id, fields=sorted(fields))
        return _serialize(updated)

    async def set_schedule_active(self, schedule_id: str, is_active: bool) -> dict:
        sid = _parse_id(schedule_id)
        existing = await self.service.schedules.get(sid)
        if existing is None:
            raise ValueError(f"Schedule {schedule_id} not found")

        fields: dict[str, Any] = {"is_active": is_active}
        if is_active and not existing.is_active:
            fields["next_run"] = next_run_time(
                existing,
                scheduler_now(self.settings.notification_timezone),
                scan_limit_minutes=self.settings.custom_scan_limit_minutes,
            )

        updated = await self.service.schedules.update(sid, **fields)
        logger.info("schedule_active_changed", schedule_id=schedule_id, is_active=is_active)
        return _serialize(updated or existing)

    async def delete_schedule(self, schedule_id: str) -> dict:
        deleted = await self.service.schedules.delete(_parse_id(schedule_id))
        if not deleted:
            raise ValueError(f"Schedule {schedule_id} not found")
        logger.info("schedule_deleted", schedule_id=schedule_id)
        return {"schedule_id": schedule_id, "deleted": True}

    def _check_custom(self, custom: CustomSchedule | None, now: datetime) -> None:
        if custom is not None and not custom_schedule_is_satisfiable(custom, now):
            raise ValueError("custom_schedule can never match (check month_days against months)")

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def get_preferences(self, user_id: str) -> dict:
        preferences = await self.service.users.get_preferences(user_id)
        return preferences.model_dump(mode="json")

    async def update_preferences(
        self,
        user_id: str,
        email: bool | None = None,
        in_app: bool | None = None,
        push: bool | None = None,
        sms: bool | None = None,
        types: dict | None = None,
        do_not_disturb: dict | None = None,
    ) -> dict:
        """Merge changes into a user's preferences. ``types`` flags are merged per key."""
        current = await self.service.users.get_preferences(user_id)
        changes: dict[str, Any] = {
            key: value
            for key, value in {"email": email, "in_app": in_app, "push": push, "sms": sms}.items()
            if value is not None
        }
        if types:
            unknown = sorted(set(types) - set(NOTIFICATION_TYPES))
            if unknown:
                raise ValueError(f"Unknown notification types: {', '.join(unknown)}")
            changes["types"] = {**current.types, **{k: bool(v) for k, v in types.items()}}
        if do_not_disturb is not None:
            changes["do_not_disturb"] = DoNotDisturb.model_validate(do_not_disturb)

        saved = await self.service.users.save_preferences(current.model_copy(update=changes))
        logger.info("preferences_updated", user_id=user_id, fields=sorted(changes))
        return saved.model_dump(mode="json")

    # ------------------------------------------------------------------
    # Email templates
    # ------------------------------------------------------------------

    async def list_templates(self, template_type: str | None = None) -> list[dict]:
        templates = await self.service.templates.load(template_type)
        return [t.model_dump(mode="json") for t in templates]

    async def create_template(
        self,
        template_type: str,
        name: str,
        subject: str,
        html_content: str,
        text_content: str,
        preview_text: str | None = None,
        is_active: bool = True,
    ) -> dict:
        """Add an email template. The newest active version per type is the one sent."""
        if template_type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {template_type!r}")

        template = MessageTemplate(
            type=template_type,
            name=name,
            subject=subject,
            html_content=html_content,
            text_content=text_content,
            preview_text=preview_text,
            is_active=is_active,
        )
        await self.service.templates.save(template)
        logger.info("template_created", template_id=str(template.id), template_type=template_type)
        return template.model_dump(mode="json")

    async def update_template(
        self,
        template_id: str,
        name: str | None = None,
        subject: str | None = None,
        html_content: str | None = None,
        text_content: str | None = None,
        preview_text: str | None = None,
        is_active: bool | None = None,
    ) -> dict:
        """Change a template's content. Each update bumps its version."""
        tid = _parse_id(template_id, "template_id")
        changes: dict[str, Any] = {
            key: value
            for key, value in {
                "name": name,
                "subject": subject,
                "html_content": html_content,
                "text_content": text_content,
                "preview_text": preview_text,
                "is_active": is_active,
            }.items()
            if value is not None
        }
        if not changes:
            existing = await self.service.templates.get(tid)
            if existing is None:
                raise ValueError(f"Template {template_id} not found")
            return existing.model_dump(mode="json")

        updated = await self.service.templates.update(tid, **changes)
        if updated is None:
            raise ValueError(f"Template {template_id} not found")
        logger.info(
            "template_updated",
            template_id=template_id,
            version=updated.version,
            fields=sorted(changes),
        )
        return updated.model_dump(mode="json")

    async def delete_template(self, template_id: str) -> dict:
        deleted = await self.service.templates.delete(_parse_id(template_id, "template_id"))
        if not deleted:
            raise ValueError(f"Template {template_id} not found")
        logger.info("template_deleted", template_id=template_id)
        return {"template_id": template_id, "deleted": True}

    async def preview_template(self, template_id: str, variables: dict | None = None) -> dict:
        """Render a template with sample values, overridden by ``variables``."""
        template = await self.service.templates.get(_parse_id(template_id, "template_id"))
        if template is None:
            raise ValueError(f"Template {template_id} not found")

        values = {**SAMPLE_VARIABLES, **coerce_variables(variables)}
        rendered = render_template(template, values)
        return {
            "template_id": template_id,
            "subject": rendered.subject,
            "html_body": rendered.html_body,
            "text_body": rendered.text_body,
            "preview_text": rendered.preview_text,
            "variables": values,
        }

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def send_notification(
        self,
        user_id: str,
        notification_type: str,
        data: dict | None = None,
        bypass_preferences: bool = False,
        bypass_do_not_disturb: bool = False,
        retry_on_failure: bool = True,
    ) -> dict:
        """Send one notification now, outside any schedule."""
        if notification_type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {notification_type!r}")

        result = await self.service.dispatcher.dispatch(
            user_id,
            notification_type,
            coerce_variables(data),
            bypass_preferences=bypass_preferences,
            bypass_do_not_disturb=bypass_do_not_disturb,
            retry_on_failure=retry_on_failure,
        )
        await self.service.audit_log.flush()
        return {
            "user_id": user_id,
            "notification_type": notification_type,
            "delivered": bool(result),
        }

    async def get_stats(self, since: str | None = None) -> dict:
        """Delivery totals from the audit log plus schedule execution counters."""
        since_dt: datetime | None = None
        if since:
            since_dt = datetime.fromisoformat(since)
            if since_dt.tzinfo is None:
                since_dt = since_dt.replace(tzinfo=timezone.utc)

        await self.service.audit_log.flush()
        entries = await self.service.audit_log.load(since_dt)
        schedules = await self.service.schedules.load()

        by_type = Counter(entry.type for entry in entries)
        by_channel: dict[str, Counter] = defaultdict(Counter)
        for entry in entries:
            for channel, status in entry.channels.items():
                by_channel[channel][status] += 1

        return {
            "total_notifications": len(entries),
            "by_type": dict(by_type),
            "by_channel": {channel: dict(by_channel[channel]) for channel in CHANNELS},
            "schedules": {
                "total": len(schedules),
                "active": sum(1 for s in schedules if s.is_active),
                "total_runs": sum(s.execution_stats.total_runs for s in schedules),
                "failed_runs": sum(s.execution_stats.failed_runs for s in schedules),
                "notifications_sent": sum(s.execution_stats.notifications_sent for s in schedules),
            },
        }

    async def run_sweep(self) -> dict:
        """Drain due retries and run due schedules immediately."""
        summary = await self.service.sweep()
        return asdict(summary)

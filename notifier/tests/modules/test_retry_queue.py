"""Tests for the retry queue."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from shared.schemas.notifications import DoNotDisturb, NotificationPreference, RetryConfig

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_default_config_and_delay(self, retry_queue, retry_store):
        assert await retry_queue.enqueue("user-1", "course_progress", {"a": "b"}, now=NOW)

        [record] = retry_store.records.values()
        assert record.retry_config == RetryConfig(
            max_retries=3, retry_delay_minutes=15, current_retries=1
        )
        assert record.scheduled_for == NOW + timedelta(minutes=15)
        assert record.payload == {"a": "b"}

    @pytest.mark.asyncio
    async def test_explicit_schedule_and_reason(self, retry_queue, retry_store):
        at = NOW + timedelta(hours=7)
        await retry_queue.enqueue(
            "user-1", "course_progress", {}, scheduled_for=at, reason="do_not_disturb", now=NOW
        )
        [record] = retry_store.records.values()
        assert record.scheduled_for == at
        assert record.reason == "do_not_disturb"

    @pytest.mark.asyncio
    async def test_refuses_past_max_retries(self, retry_queue, retry_store):
        config = RetryConfig(max_retries=3, retry_delay_minutes=15, current_retries=3)
        assert not await retry_queue.enqueue("user-1", "course_progress", {}, config, now=NOW)
        assert retry_store.records == {}

    @pytest.mark.asyncio
    async def test_store_error_reported_as_false(self, retry_queue, retry_store):
        retry_store.fail_on_add = True
        assert not await retry_queue.enqueue("user-1", "course_progress", {}, now=NOW)


class TestDrainDue:
    @pytest.mark.asyncio
    async def test_only_due_records_are_drained(
        self, retry_queue, retry_store, dispatcher, known_user, user_directory
    ):
        user_directory.preferences["user-1"] = NotificationPreference(user_id="user-1", email=False)
        await retry_queue.enqueue("user-1", "course_progress", {}, now=NOW - timedelta(minutes=20))
        await retry_queue.enqueue("user-1", "course_progress", {}, now=NOW)

        delivered = await retry_queue.drain_due(dispatcher, NOW)

        assert delivered == 1
        [remaining] = retry_store.records.values()
        assert remaining.scheduled_for == NOW + timedelta(minutes=15)

    @pytest.mark.asyncio
    async def test_failure_requeues_with_incremented_count(
        self, retry_queue, retry_store, dispatcher, known_user, user_directory, senders
    ):
        user_directory.preferences["user-1"] = NotificationPreference(user_id="user-1", email=False)
        senders["in_app"].error = ConnectionError("down")
        await retry_queue.enqueue("user-1", "course_progress", {"k": "v"}, now=NOW)

        later = NOW + timedelta(minutes=15)
        assert await retry_queue.drain_due(dispatcher, later) == 0

        [record] = retry_store.records.values()
        assert record.retry_config.current_retries == 2
        assert record.scheduled_for == later + timedelta(minutes=15)
        assert record.payload == {"k": "v"}

    @pytest.mark.asyncio
    async def test_dropped_after_max_retries_plus_one_attempts(
        self, retry_queue, retry_store, dispatcher, known_user, user_directory, senders
    ):
        user_directory.preferences["user-1"] = NotificationPreference(user_id="user-1", email=False)
        senders["in_app"].error = ConnectionError("down")

        # First attempt fails and enqueues retry #1
        assert not await dispatcher.dispatch("user-1", "course_progress", {}, now=NOW)

        moment = NOW
        for _ in range(3):
            moment += timedelta(minutes=15)
            await retry_queue.drain_due(dispatcher, moment)

        # 1 original + 3 retries = max_retries + 1 attempts: nothing left queued
        assert retry_store.records == {}
        assert await retry_queue.drain_due(dispatcher, moment + timedelta(days=1)) == 0

    @pytest.mark.asyncio
    async def test_opted_out_type_is_dropped_not_requeued(
        self, retry_queue, retry_store, dispatcher, known_user, user_directory, senders
    ):
        await retry_queue.enqueue("user-1", "course_progress", {}, now=NOW)
        user_directory.preferences["user-1"] = NotificationPreference(
            user_id="user-1", types={"course_progress": False}
        )

        assert await retry_queue.drain_due(dispatcher, NOW + timedelta(minutes=15)) == 0

        assert retry_store.records == {}
        assert senders["in_app"].sent == []

    @pytest.mark.asyncio
    async def test_unknown_user_is_dropped(self, retry_queue, retry_store, dispatcher):
        await retry_queue.enqueue("ghost", "course_progress", {}, now=NOW)

        await retry_queue.drain_due(dispatcher, NOW + timedelta(minutes=15))

        assert retry_store.records == {}

    @pytest.mark.asyncio
    async def test_quiet_hours_in_scheduler_timezone_re_defer_to_window_end(
        self, retry_queue, retry_store, dispatcher, known_user, user_directory, senders, settings
    ):
        settings.notification_timezone = "America/New_York"
        user_directory.preferences["user-1"] = NotificationPreference(
            user_id="user-1",
            email=False,
            do_not_disturb=DoNotDisturb(enabled=True, start_time="07:00", end_time="09:00"),
        )
        await retry_queue.enqueue(
            "user-1", "course_progress", {}, reason="delivery_failed", now=NOW
        )

        # 12:30Z is 08:30 in New York, inside the window
        drained_at = NOW + timedelta(minutes=30)
        assert await retry_queue.drain_due(dispatcher, drained_at) == 0
        assert senders["in_app"].sent == []

        [record] = retry_store.records.values()
        assert record.scheduled_for == datetime(2026, 3, 10, 13, 5, tzinfo=timezone.utc)
        assert record.reason == "do_not_disturb"
        assert record.retry_config.current_retries == 2

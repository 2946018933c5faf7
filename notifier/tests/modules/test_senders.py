"""Tests for the channel senders."""

from __future__ import annotations

import json

import httpx
import pytest

from modules.notifications.senders import (
    HttpEmailSender,
    InAppSender,
    LoggingSmsSender,
    OutboundMessage,
    RedisPushSender,
)

MESSAGE = OutboundMessage(
    notification_type="course_completion",
    title="Course Completed!",
    message="Well done",
    link="/courses/c1/certificate",
    subject="Congrats Ada",
    html_body="<p>Done</p>",
    text_body="Done",
)


@pytest.fixture
def email_settings(settings):
    settings.email_service_url = "http://mail-relay:8080/send"
    settings.email_service_token = "relay-token"
    return settings


class TestHttpEmailSender:
    @pytest.mark.asyncio
    async def test_posts_rendered_email(self, email_settings, known_user):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers.get("Authorization")
            captured["body"] = json.loads(request.content)
            return httpx.Response(202, json={"queued": True})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            sender = HttpEmailSender(email_settings, client=client)
            assert await sender.send(known_user, MESSAGE)

        assert captured["url"] == "http://mail-relay:8080/send"
        assert captured["auth"] == "Bearer relay-token"
        body = captured["body"]
        assert body["to"] == "learner@example.com"
        assert body["subject"] == "Congrats Ada"
        assert body["html"] == "<p>Done</p>"
        assert body["metadata"] == {"notification_type": "course_completion", "user_id": "user-1"}

    @pytest.mark.asyncio
    async def test_relay_error_raises(self, email_settings, known_user):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with httpx.AsyncClient(transport=transport) as client:
            sender = HttpEmailSender(email_settings, client=client)
            with pytest.raises(httpx.HTTPStatusError):
                await sender.send(known_user, MESSAGE)

    @pytest.mark.asyncio
    async def test_unconfigured_relay_rejects(self, settings, known_user):
        assert not await HttpEmailSender(settings).send(known_user, MESSAGE)

    @pytest.mark.asyncio
    async def test_missing_address_rejects(self, email_settings, make_user):
        user = make_user(user_id="u2", email="")
        assert not await HttpEmailSender(email_settings).send(user, MESSAGE)


@pytest.mark.asyncio
async def test_in_app_creates_entry(notification_store, known_user):
    assert await InAppSender(notification_store).send(known_user, MESSAGE)

    [entry] = notification_store.created
    assert entry.user_id == "user-1"
    assert entry.type == "course_completion"
    assert entry.link == "/courses/c1/certificate"
    assert entry.is_read is False


@pytest.mark.asyncio
async def test_push_publishes_payload(mock_redis, known_user):
    assert await RedisPushSender(mock_redis, "notifications:push").send(known_user, MESSAGE)

    channel, raw = mock_redis.publish.await_args.args
    assert channel == "notifications:push"
    payload = json.loads(raw)
    assert payload["user_id"] == "user-1"
    assert payload["title"] == "Course Completed!"


@pytest.mark.asyncio
async def test_sms_is_logged(known_user):
    assert await LoggingSmsSender().send(known_user, MESSAGE)

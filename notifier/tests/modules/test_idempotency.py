"""Tests for idempotency keys and the claim ledger."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from modules.notifications.idempotency import IdempotencyLedger, idempotency_key

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def test_key_layout():
    assert idempotency_key("course_completion", "u1", "c1") == "course_completion:u1:c1"
    assert idempotency_key("course_progress", "u1", "c1", "75") == "course_progress:u1:c1:75"


class TestLedger:
    @pytest.mark.asyncio
    async def test_first_claim_wins(self, mock_session_factory, mock_db_session):
        result = MagicMock()
        result.rowcount = 1
        mock_db_session.execute.return_value = result

        ledger = IdempotencyLedger(mock_session_factory)

        assert await ledger.claim("course_progress:u1:c1:75", NOW)
        mock_db_session.commit.assert_awaited_once()
        stmt = mock_db_session.execute.await_args.args[0]
        assert "ON CONFLICT" in str(stmt.compile(dialect=postgresql.dialect())).upper()

    @pytest.mark.asyncio
    async def test_conflict_reports_already_claimed(self, mock_session_factory, mock_db_session):
        result = MagicMock()
        result.rowcount = 0
        mock_db_session.execute.return_value = result

        assert not await IdempotencyLedger(mock_session_factory).claim("k", NOW)

    @pytest.mark.asyncio
    async def test_is_claimed(self, mock_session_factory, mock_db_session):
        ledger = IdempotencyLedger(mock_session_factory)
        assert not await ledger.is_claimed("k")

        mock_db_session.execute.return_value.scalar_one_or_none.return_value = "k"
        assert await ledger.is_claimed("k")

    @pytest.mark.asyncio
    async def test_release_deletes_key(self, mock_session_factory, mock_db_session):
        await IdempotencyLedger(mock_session_factory).release("course_progress:u1:c1:75")

        stmt = mock_db_session.execute.await_args.args[0]
        assert str(stmt.compile(dialect=postgresql.dialect())).upper().startswith("DELETE")
        mock_db_session.commit.assert_awaited_once()

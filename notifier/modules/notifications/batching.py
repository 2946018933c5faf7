"""Time-bucketed write batching with an injected clock."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class BatchingActor(Generic[T]):
    """Accumulates items and hands them to ``flush_fn`` in time buckets.

    Items submitted within the same ``bucket_seconds`` window are written
    together. A failed bucket is put back in front of the queue together with
    everything after it, and the actor waits twice the flush interval before
    it reports itself due again. The queue never holds more than
    ``max_pending`` items; the oldest are dropped first.
    """

    def __init__(
        self,
        flush_fn: Callable[[list[T]], Awaitable[None]],
        *,
        clock: Callable[[], datetime],
        flush_interval: float,
        max_batch_size: int = 500,
        bucket_seconds: int = 10,
        max_pending: int = 1000,
    ):
        self.flush_fn = flush_fn
        self.clock = clock
        self.flush_interval = timedelta(seconds=flush_interval)
        self.max_batch_size = max_batch_size
        self.bucket_seconds = bucket_seconds
        self.max_pending = max_pending
        self._pending: deque[tuple[datetime, T]] = deque()
        self._backoff_until: datetime | None = None

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(self, item: T) -> None:
        self._pending.append((self.clock(), item))
        self._trim()

    def due(self) -> bool:
        if not self._pending:
            return False
        now = self.clock()
        if self._backoff_until is not None and now < self._backoff_until:
            return False
        if len(self._pending) >= self.max_batch_size:
            return True
        oldest, _ = self._pending[0]
        return now - oldest >= self.flush_interval

    async def maybe_flush(self) -> int:
        if not self.due():
            return 0
        return await self.flush()

    async def flush(self) -> int:
        """Write up to ``max_batch_size`` items. Returns how many were written."""
        if not self._pending:
            return 0

        batch = [self._pending.popleft() for _ in range(min(self.max_batch_size, len(self._pending)))]

        buckets: list[list[tuple[datetime, T]]] = []
        current_key: int | None = None
        for entry in batch:
            key = int(entry[0].timestamp()) // self.bucket_seconds
            if key != current_key:
                buckets.append([])
                current_key = key
            buckets[-1].append(entry)

        written = 0
        for index, bucket in enumerate(buckets):
            try:
                await self.flush_fn([item for _, item in bucket])
            except Exception as e:
                unflushed = [entry for rest in buckets[index:] for entry in rest]
                self._pending.extendleft(reversed(unflushed))
                self._trim()
                self._backoff_until = self.clock() + 2 * self.flush_interval
                logger.warning(
                    "batch_flush_failed",
                    error=str(e),
                    requeued=len(unflushed),
                    pending=len(self._pending),
                )
                return written
            written += len(bucket)

        self._backoff_until = None
        return written

    def _trim(self) -> None:
        dropped = 0
        while len(self._pending) > self.max_pending:
            self._pending.popleft()
            dropped += 1
        if dropped:
            logger.warning("batch_overflow_dropped", dropped=dropped, max_pending=self.max_pending)

"""
Progress reporting for long stage runs.

ProgressTracker throttles publishes to at most one per interval, plus the
initial and final snapshots. Sinks decide where snapshots go.
"""

import json
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import structlog
from pydantic import BaseModel
from redis.exceptions import RedisError

logger = structlog.get_logger(__name__)


class ProgressSnapshot(BaseModel):
    stage: str
    processed: int
    total: int
    percentage: int
    estimated_ms_remaining: Optional[int] = None
    done: bool = False


class ProgressSink(ABC):
    @abstractmethod
    async def publish(self, snapshot: ProgressSnapshot) -> None:
        ...

    @abstractmethod
    async def latest(self) -> Optional[ProgressSnapshot]:
        ...


class InMemoryProgressSink(ProgressSink):
    """Keeps every snapshot; used in-process and by tests."""

    def __init__(self):
        self.snapshots: list[ProgressSnapshot] = []

    async def publish(self, snapshot: ProgressSnapshot) -> None:
        self.snapshots.append(snapshot)

    async def latest(self) -> Optional[ProgressSnapshot]:
        return self.snapshots[-1] if self.snapshots else None


class RedisProgressSink(ProgressSink):
    """Stores the latest snapshot under a key and announces it on a channel."""

    def __init__(self, redis, key: Optional[str] = None, channel: Optional[str] = None, ttl_seconds: int = 3600):
        from reviewsync.config import settings

        self.redis = redis
        self.key = key or settings.PROGRESS_KEY
        self.channel = channel or settings.PROGRESS_CHANNEL
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: Optional[str] = None) -> "RedisProgressSink":
        from redis.asyncio import Redis
        from reviewsync.config import settings

        return cls(Redis.from_url(url or settings.REDIS_URL))

    async def publish(self, snapshot: ProgressSnapshot) -> None:
        payload = snapshot.model_dump_json()
        try:
            await self.redis.set(self.key, payload, ex=self.ttl_seconds)
            await self.redis.publish(self.channel, payload)
        except RedisError as e:
            # Progress is advisory; a Redis outage must not stop the batch
            logger.warning("progress_publish_failed", stage=snapshot.stage, error=str(e))

    async def latest(self) -> Optional[ProgressSnapshot]:
        raw = await self.redis.get(self.key)
        if raw is None:
            return None
        return ProgressSnapshot.model_validate(json.loads(raw))


class ProgressTracker:
    def __init__(
        self,
        sink: Optional[ProgressSink],
        stage: str,
        total: int,
        interval_seconds: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sink = sink
        self.stage = stage
        self.total = total
        self.interval_seconds = interval_seconds
        self._clock = clock
        self.processed = 0
        self._started_at = clock()
        self._last_published: Optional[float] = None

    def snapshot(self, done: bool = False) -> ProgressSnapshot:
        percentage = round(self.processed * 100 / self.total) if self.total else 100
        remaining_ms = None
        if done:
            remaining_ms = 0
        elif self.processed:
            elapsed = self._clock() - self._started_at
            per_item = elapsed / self.processed
            remaining_ms = round(per_item * (self.total - self.processed) * 1000)
        return ProgressSnapshot(
            stage=self.stage,
            processed=self.processed,
            total=self.total,
            percentage=percentage,
            estimated_ms_remaining=remaining_ms,
            done=done,
        )

    async def _publish(self, done: bool = False) -> None:
        if self.sink is None:
            return
        self._last_published = self._clock()
        await self.sink.publish(self.snapshot(done=done))

    async def start(self) -> None:
        self._started_at = self._clock()
        await self._publish()

    async def advance(self, count: int = 1) -> None:
        self.processed += count
        now = self._clock()
        if self._last_published is None or now - self._last_published >= self.interval_seconds:
            await self._publish()

    async def finish(self) -> None:
        await self._publish(done=True)
        logger.debug("progress_finished", stage=self.stage, processed=self.processed, total=self.total)

"""Single-shot deferred execution of registered actions.

A scheduled job is a ``(fire_at, action, args)`` triple. Delivery is
at-least-once: the scheduler is not transactional with the stores, so
handlers must treat a missing record as a no-op.

Redis keys used:
    ``{prefix}:schedule``: Sorted set of JSON jobs scored by fire time
    ``{prefix}:schedule:lock``: Sweep lock (``SET NX EX``)

Only one sweep dispatches at a time: the Redis lock is held, and renewed
every third of its TTL, until the sweep's handlers have finished. Jobs
claimed by a sweep run concurrently with each other.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import json
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.core.errors import SchedulingError

logger = logging.getLogger(__name__)

ActionHandler = Callable[..., Awaitable[Any]]
Clock = Callable[[], float]


@dataclass
class ScheduledJob:
    """A claimed unit of work.

    Attributes:
        action: Registered action id.
        args: Keyword arguments passed to the handler.
        fire_at: Epoch seconds at or after which the job may run.
        id: Unique job id; keeps otherwise identical jobs distinct.
    """

    action: str
    args: dict[str, Any] = field(default_factory=dict)
    fire_at: float = 0.0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_member(self) -> str:
        return json.dumps({"id": self.id, "action": self.action, "args": self.args}, sort_keys=True)

    @classmethod
    def from_member(cls, member: str, fire_at: float = 0.0) -> ScheduledJob:
        data = json.loads(member)
        return cls(action=data["action"], args=data.get("args", {}), fire_at=fire_at, id=data.get("id", ""))


@runtime_checkable
class Scheduler(Protocol):
    """Deferred single-shot execution substrate."""

    def register(self, action_id: str, handler: ActionHandler) -> None:
        """Bind ``handler`` to ``action_id``."""
        ...

    async def schedule_once(self, delay: float, action_id: str, args: dict[str, Any] | None = None) -> str:
        """Run ``action_id(**args)`` once, no earlier than ``delay`` seconds from now.

        Returns:
            The job id.

        Raises:
            SchedulingError: The substrate is unavailable.
        """
        ...

    async def run_due(self, now: float | None = None) -> int:
        """Dispatch every job due at ``now``. Returns the number dispatched."""
        ...


class _ActionRegistry:
    """Handler bookkeeping shared by the scheduler implementations."""

    def __init__(self) -> None:
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, action_id: str, handler: ActionHandler) -> None:
        if action_id in self._handlers:
            logger.warning("Replacing handler for action %s", action_id)
        self._handlers[action_id] = handler

    def _check_action(self, action_id: str) -> None:
        if action_id not in self._handlers:
            raise SchedulingError(f"Unknown action: {action_id}")

    async def _execute(self, job: ScheduledJob) -> None:
        handler = self._handlers.get(job.action)
        if handler is None:
            logger.error("Dropping job %s for unregistered action %s", job.id, job.action)
            return
        try:
            await handler(**job.args)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled action %s failed (job %s)", job.action, job.id)

    async def _dispatch(self, jobs: list[ScheduledJob]) -> int:
        if jobs:
            await asyncio.gather(*(self._execute(job) for job in jobs))
        return len(jobs)


class LocalScheduler(_ActionRegistry):
    """In-process scheduler backed by a heap.

    Args:
        clock: Time source in epoch seconds.
        batch_size: Maximum jobs dispatched per sweep.
    """

    def __init__(self, clock: Clock = time.time, batch_size: int = 100) -> None:
        super().__init__()
        self._clock = clock
        self._batch_size = batch_size
        self._heap: list[tuple[float, int, ScheduledJob]] = []
        self._seq = itertools.count()
        self._sweep_lock = asyncio.Lock()

    async def schedule_once(self, delay: float, action_id: str, args: dict[str, Any] | None = None) -> str:
        self._check_action(action_id)
        job = ScheduledJob(action=action_id, args=dict(args or {}), fire_at=self._clock() + max(delay, 0))
        heapq.heappush(self._heap, (job.fire_at, next(self._seq), job))
        logger.debug("Scheduled %s in %ss (job %s)", action_id, delay, job.id)
        return job.id

    def pending(self) -> list[ScheduledJob]:
        """Jobs not yet dispatched, earliest first."""
        return [job for _, _, job in sorted(self._heap)]

    async def run_due(self, now: float | None = None) -> int:
        if self._sweep_lock.locked():
            return 0
        async with self._sweep_lock:
            now = self._clock() if now is None else now
            due: list[ScheduledJob] = []
            while self._heap and self._heap[0][0] <= now and len(due) < self._batch_size:
                due.append(heapq.heappop(self._heap)[2])
            return await self._dispatch(due)


class RedisScheduler(_ActionRegistry):
    """Scheduler whose queue lives in a Redis sorted set.

    Args:
        client: Async Redis client created with ``decode_responses=True``.
        key_prefix: Namespace for the schedule and lock keys.
        clock: Time source in epoch seconds.
        batch_size: Maximum jobs claimed per sweep.
        lock_ttl: Seconds before an abandoned sweep lock expires. A live
            sweep renews it until dispatch completes.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        key_prefix: str = "postrelay",
        clock: Clock = time.time,
        batch_size: int = 100,
        lock_ttl: int = 60,
    ) -> None:
        super().__init__()
        self._client = client
        self._clock = clock
        self._batch_size = batch_size
        self._lock_ttl = lock_ttl
        self.schedule_key = f"{key_prefix}:schedule"
        self.lock_key = f"{key_prefix}:schedule:lock"

    async def schedule_once(self, delay: float, action_id: str, args: dict[str, Any] | None = None) -> str:
        self._check_action(action_id)
        job = ScheduledJob(action=action_id, args=dict(args or {}), fire_at=self._clock() + max(delay, 0))
        try:
            await self._client.zadd(self.schedule_key, {job.to_member(): job.fire_at})
        except (RedisError, OSError) as exc:
            raise SchedulingError(f"Failed to schedule {action_id}: {exc}") from exc
        logger.debug("Scheduled %s in %ss (job %s)", action_id, delay, job.id)
        return job.id

    async def run_due(self, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        token = str(uuid.uuid4())
        acquired = await self._client.set(self.lock_key, token, nx=True, ex=self._lock_ttl)
        if not acquired:
            logger.debug("Another sweep holds the schedule lock")
            return 0
        renewer = asyncio.create_task(self._renew_lock(token))
        try:
            claimed = await self._claim_due(now)
            return await self._dispatch(claimed)
        finally:
            renewer.cancel()
            try:
                await renewer
            except asyncio.CancelledError:
                pass
            if await self._client.get(self.lock_key) == token:
                await self._client.delete(self.lock_key)

    async def _renew_lock(self, token: str) -> None:
        """Extend the sweep lock while handlers run; stops if it was lost."""
        interval = max(self._lock_ttl / 3, 0.01)
        while True:
            await asyncio.sleep(interval)
            try:
                if await self._client.get(self.lock_key) != token:
                    logger.warning("Schedule lock lost during dispatch")
                    return
                await self._client.expire(self.lock_key, self._lock_ttl)
            except (RedisError, OSError):
                logger.exception("Failed to renew schedule lock")

    async def _claim_due(self, now: float) -> list[ScheduledJob]:
        entries = await self._client.zrangebyscore(
            self.schedule_key, "-inf", now, start=0, num=self._batch_size, withscores=True
        )
        claimed: list[ScheduledJob] = []
        for member, score in entries:
            # Another process may have claimed it already
            if not await self._client.zrem(self.schedule_key, member):
                continue
            try:
                claimed.append(ScheduledJob.from_member(member, fire_at=float(score)))
            except (json.JSONDecodeError, KeyError, TypeError):
                logger.error("Discarding malformed scheduled job: %s", member)
        return claimed


async def run_scheduler(
    scheduler: Scheduler,
    shutdown_event: asyncio.Event | None = None,
    interval: float = 1.0,
) -> None:
    """Periodically dispatch due jobs until ``shutdown_event`` is set."""
    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    logger.info("Scheduler loop started (interval=%ss)", interval)

    while not shutdown_event.is_set():
        try:
            dispatched = await scheduler.run_due()
            if dispatched:
                logger.info("Dispatched %d scheduled job(s)", dispatched)
        except asyncio.CancelledError:
            break
        except Exception:
            logger.exception("Scheduler sweep failed, retrying in 5s")
            await asyncio.sleep(5)
            continue

        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
        except TimeoutError:
            pass
        except asyncio.CancelledError:
            break

    logger.info("Scheduler loop stopped")

"""
Deferred jobs: fan-out and auto-subscribe run after the primary write commits.

Flow:
- Services call ``defer(session, job)`` while they mutate state. Jobs are kept
  on the session, so a rolled-back transaction never dispatches anything.
- ``commit_and_dispatch(session)`` commits, then hands the collected jobs to
  the configured dispatcher. Dispatch failures are logged and swallowed:
  losing a notification is acceptable, failing a committed mutation is not.

Dispatchers:
- ``FanOutQueue``: in-process worker pool. Jobs are sharded by key onto one
  FIFO queue per worker, so jobs sharing a key (a card) run in submission
  order. Each job is retried up to ``max_attempts`` times, then dropped.
- ``ArqDispatcher``: enqueues onto Redis for ``boardfeed.tasks.fanout`` workers.
"""

from __future__ import annotations

import asyncio
import zlib
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

import structlog
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from boardfeed.core.redis import get_redis

log = structlog.get_logger()

_SESSION_KEY = "deferred_jobs"

JobHandler = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class DeferredJob:
    name: str
    shard_key: str
    kwargs: dict[str, Any] = field(default_factory=dict)
    # Stable id for backends that can collapse duplicate enqueues
    dedupe_id: Optional[str] = None


def defer(session: AsyncSession, job: DeferredJob) -> None:
    """Attach a job to the session; it is dispatched after commit."""
    session.info.setdefault(_SESSION_KEY, []).append(job)


def pending_jobs(session: AsyncSession) -> list[DeferredJob]:
    return list(session.info.get(_SESSION_KEY, []))


def _pop_jobs(session: AsyncSession) -> list[DeferredJob]:
    return session.info.pop(_SESSION_KEY, [])


@event.listens_for(Session, "after_rollback")
def _discard_jobs(session: Session) -> None:
    session.info.pop(_SESSION_KEY, None)


# ---------------------------------------------------------------------------
# Dispatchers
# ---------------------------------------------------------------------------


class Dispatcher(Protocol):
    async def submit(self, jobs: list[DeferredJob]) -> None: ...


class FanOutQueue:
    """Sharded asyncio worker pool with bounded retry."""

    def __init__(
        self,
        handlers: dict[str, JobHandler],
        session_factory: Callable[[], AsyncSession],
        workers: int = 4,
        max_attempts: int = 3,
        retry_base_seconds: float = 0.5,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._handlers = handlers
        self._session_factory = session_factory
        self._max_attempts = max(1, max_attempts)
        self._retry_base = retry_base_seconds
        self._queues: list[asyncio.Queue] = [asyncio.Queue() for _ in range(workers)]
        self._tasks: list[asyncio.Task] = []
        self.completed = 0
        self.dropped = 0

    def shard_for(self, key: str) -> int:
        return zlib.crc32(key.encode()) % len(self._queues)

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"fanout-worker-{i}")
            for i in range(len(self._queues))
        ]
        log.info("fanout.queue_started", workers=len(self._queues))

    async def stop(self) -> None:
        """Drain outstanding jobs, then stop the workers."""
        if not self._tasks:
            return
        await self.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        log.info("fanout.queue_stopped", completed=self.completed, dropped=self.dropped)

    async def join(self) -> None:
        """Wait until every submitted job has completed or been dropped."""
        for queue in self._queues:
            await queue.join()

    async def submit(self, jobs: list[DeferredJob]) -> None:
        for job in jobs:
            if job.name not in self._handlers:
                log.error("fanout.unknown_job", job=job.name)
                continue
            await self._queues[self.shard_for(job.shard_key)].put(job)

    async def _worker(self, index: int) -> None:
        queue = self._queues[index]
        while True:
            job = await queue.get()
            try:
                await self._run(job)
            finally:
                queue.task_done()

    async def _run(self, job: DeferredJob) -> None:
        handler = self._handlers[job.name]
        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self._session_factory() as session:
                    try:
                        await handler(session, **job.kwargs)
                        await session.commit()
                    except Exception:
                        await session.rollback()
                        raise
                self.completed += 1
                return
            except Exception as exc:
                if attempt >= self._max_attempts:
                    break
                log.warning(
                    "fanout.retry",
                    job=job.name,
                    key=job.shard_key,
                    attempt=attempt,
                    error=str(exc),
                )
                await asyncio.sleep(self._retry_base * (2 ** (attempt - 1)))

        self.dropped += 1
        log.error(
            "fanout.dropped",
            job=job.name,
            key=job.shard_key,
            attempts=self._max_attempts,
            kwargs={k: str(v) for k, v in job.kwargs.items()},
        )


class ArqDispatcher:
    """Enqueue jobs on Redis for ARQ workers."""

    async def submit(self, jobs: list[DeferredJob]) -> None:
        redis = await get_redis()
        for job in jobs:
            await redis.enqueue_job(job.name, _job_id=job.dedupe_id, **job.kwargs)


_dispatcher: Dispatcher | None = None


def set_dispatcher(dispatcher: Dispatcher | None) -> None:
    global _dispatcher
    _dispatcher = dispatcher


def get_dispatcher() -> Dispatcher | None:
    return _dispatcher


async def commit_and_dispatch(session: AsyncSession) -> None:
    """Commit the primary mutation, then schedule its deferred jobs."""
    await session.commit()
    jobs = _pop_jobs(session)
    if not jobs:
        return

    dispatcher = get_dispatcher()
    if dispatcher is None:
        log.warning("fanout.no_dispatcher", dropped=len(jobs))
        return
    try:
        await dispatcher.submit(jobs)
    except Exception as exc:
        log.error("fanout.dispatch_failed", jobs=len(jobs), error=str(exc))

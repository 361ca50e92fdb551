"""Sequential in-process job queue with retry and exponential backoff."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

Job = Callable[[], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[Any]]

DEFAULT_MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
BACKOFF_MULTIPLIER = 2


@dataclass(slots=True)
class QueuedJob:
    job: Job
    retries: int
    max_retries: int
    backoff_seconds: float
    name: str | None = None

    @property
    def label(self) -> str:
        return self.name or "Unnamed job"


class JobQueue:
    """Run queued jobs one at a time.

    New jobs join the tail. A failed job waits out its backoff and then goes
    back to the head with the backoff doubled, so it is retried before any
    job queued behind it starts. After ``max_retries`` retries it is dropped.
    """

    def __init__(self, *, sleep: Sleep = asyncio.sleep) -> None:
        self._sleep = sleep
        self._entries: deque[QueuedJob] = deque()
        self._draining = False
        self._drain_task: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        return len(self._entries)

    @property
    def is_draining(self) -> bool:
        return self._draining

    def enqueue(
        self,
        job: Job,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff: float = INITIAL_BACKOFF_SECONDS,
        name: str | None = None,
    ) -> None:
        entry = QueuedJob(
            job=job,
            retries=0,
            max_retries=max_retries,
            backoff_seconds=initial_backoff,
            name=name,
        )
        logger.info("[Queue] Enqueuing {} (queue size: {})", entry.label, len(self._entries) + 1)
        self._entries.append(entry)
        self._ensure_draining()

    def _ensure_draining(self) -> None:
        if self._draining:
            logger.debug("[Queue] Already draining ({} waiting)", len(self._entries))
            return
        self._draining = True
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def join(self) -> None:
        """Wait until the active drain, if any, has emptied the queue."""
        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.shield(self._drain_task)

    async def _drain(self) -> None:
        logger.info("[Queue] Starting queue processing ({} items)", len(self._entries))
        try:
            while self._entries:
                entry = self._entries.popleft()
                attempt = entry.retries + 1
                total = entry.max_retries + 1
                logger.info(
                    "[Queue] Processing {} (attempt {}/{}, {} remaining)",
                    entry.label,
                    attempt,
                    total,
                    len(self._entries),
                )
                try:
                    await entry.job()
                except Exception:
                    logger.exception("[Queue] {} failed (attempt {}/{})", entry.label, attempt, total)
                    if entry.retries < entry.max_retries:
                        logger.info("[Queue] Retrying {} in {:.1f}s", entry.label, entry.backoff_seconds)
                        await self._sleep(entry.backoff_seconds)
                        self._entries.appendleft(
                            QueuedJob(
                                job=entry.job,
                                retries=entry.retries + 1,
                                max_retries=entry.max_retries,
                                backoff_seconds=entry.backoff_seconds * BACKOFF_MULTIPLIER,
                                name=entry.name,
                            )
                        )
                    else:
                        logger.error("[Queue] {} failed after {} attempts; giving up", entry.label, total)
                else:
                    logger.info("[Queue] Completed {}", entry.label)
        finally:
            self._draining = False

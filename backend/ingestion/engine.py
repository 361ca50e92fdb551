"""Ingestion engine: initial sync, recurring polls and their shared state."""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Mapping
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from app.core.config import Settings, get_settings
from app.models import EventStream

from .client import BitqueryClient
from .processor import EventFetcher, EventProcessor, SyncMode
from .progress import SyncProgressTracker, SyncStatus
from .queue import JobQueue
from .service import EventStore
from .streams import build_stream_definitions

# Launch order of the initial sync tasks; the streams race regardless.
STREAM_ORDER = (
    EventStream.QUESTION_INITIALIZED,
    EventStream.CONDITION_PREPARATION,
    EventStream.TOKEN_REGISTERED,
    EventStream.ORDER_FILLED,
)


class IngestionEngine:
    """Own the job queue, progress tracker, processors and poll schedule.

    Built once per process and handed to the API and CLI by reference.
    """

    def __init__(
        self,
        *,
        processors: Mapping[EventStream, EventProcessor],
        store: EventStore,
        settings: Settings | None = None,
        job_queue: JobQueue | None = None,
        tracker: SyncProgressTracker | None = None,
        scheduler: Any | None = None,
        client: BitqueryClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.processors = dict(processors)
        self.store = store
        self.job_queue = job_queue or JobQueue()
        self.tracker = tracker or SyncProgressTracker(stream.value for stream in self.processors)
        self._scheduler = scheduler or AsyncIOScheduler(timezone=self.settings.polling_timezone)
        self._client = client
        self._polling_started = False
        self._initial_sync_task: asyncio.Task | None = None

    @property
    def polling_started(self) -> bool:
        return self._polling_started

    @property
    def initial_sync_task(self) -> asyncio.Task | None:
        return self._initial_sync_task

    def get_initial_sync_status(self) -> SyncStatus:
        return self.tracker.snapshot()

    def _ordered_processors(self) -> list[EventProcessor]:
        ordered = [self.processors[stream] for stream in STREAM_ORDER if stream in self.processors]
        ordered.extend(p for stream, p in self.processors.items() if stream not in STREAM_ORDER)
        return ordered

    # ------------------------------------------------------------------
    # Initial sync

    async def run_initial_sync(self) -> dict[str, int] | None:
        """Run every processor concurrently unless all streams already hold data.

        Returns the per-stream counts, or None when the sync was skipped.
        """
        try:
            tables_empty = not self.store.any_stream_populated()
            all_filled = self.store.all_streams_populated()
        except Exception:
            logger.exception("[Initial Sync] Could not check whether storage is populated")
            return None

        logger.info("[Initial Sync] Tables empty: {}, All filled: {}", tables_empty, all_filled)
        if all_filled:
            logger.info("[Initial Sync] Skipping - all tables already filled")
            return None

        logger.info("[Initial Sync] Starting initial data sync (parallel mode)")
        self.tracker.begin()
        results: dict[str, int] = {stream.value: 0 for stream in self.processors}
        try:
            tasks = [
                asyncio.create_task(self._initial_stream_task(processor, results))
                for processor in self._ordered_processors()
            ]
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("[Initial Sync] All streams completed: {}", results)
            try:
                self.store.checkpoint()
            except Exception:
                logger.exception("[Initial Sync] Checkpoint after initial sync failed")
        finally:
            self.tracker.finish()
        return results

    async def _initial_stream_task(self, processor: EventProcessor, results: dict[str, int]) -> None:
        key = processor.stream.value
        try:
            count = await processor.process(SyncMode.INITIAL)
        except Exception:
            logger.exception("[Initial Sync] {} failed", processor.name)
            self.tracker.complete(key)
            return
        results[key] = count
        self.tracker.complete(key, count)
        logger.info("[Initial Sync] {} completed: {} events", processor.name, count)

    # ------------------------------------------------------------------
    # Recurring polls

    def start_polling(self) -> bool:
        """Start the initial sync and the recurring poller; later calls are no-ops.

        Must be called from a running event loop. Returns True when this call
        started polling.
        """
        if self._polling_started:
            logger.info("[Polling] Already started, skipping")
            return False

        loop = asyncio.get_running_loop()
        logger.info("[Polling] Starting polling system")
        self._polling_started = True

        self._initial_sync_task = loop.create_task(self.run_initial_sync())
        self._schedule_recurring_polls()
        self._scheduler.start()
        return True

    def _schedule_recurring_polls(self) -> None:
        for processor in self._ordered_processors():
            trigger = CronTrigger.from_crontab(
                self.settings.polling_cron, timezone=self.settings.polling_timezone
            )
            self._scheduler.add_job(
                self.enqueue_refresh,
                trigger=trigger,
                args=[processor.stream],
                id=f"poll-{processor.stream.value}",
                name=f"{processor.name} (Polling)",
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
            logger.info(
                "[Polling] Scheduled {} with cron '{}'", processor.name, self.settings.polling_cron
            )

    async def enqueue_refresh(self, stream: EventStream) -> None:
        processor = self.processors[stream]
        self.job_queue.enqueue(
            functools.partial(processor.process, SyncMode.POLLING, propagate_fetch_errors=True),
            max_retries=self.settings.queue_max_retries,
            initial_backoff=self.settings.queue_initial_backoff_seconds,
            name=f"{processor.name} (Polling)",
        )

    async def refresh_all(self) -> None:
        """Queue one refresh per stream and wait for the queue to drain."""
        for processor in self._ordered_processors():
            await self.enqueue_refresh(processor.stream)
        await self.job_queue.join()

    async def shutdown(self) -> None:
        if getattr(self._scheduler, "running", False):
            self._scheduler.shutdown(wait=False)
        if self._client is not None:
            await self._client.aclose()


def build_ingestion_engine(
    settings: Settings | None = None,
    *,
    store: EventStore | None = None,
    fetcher: EventFetcher | None = None,
) -> IngestionEngine:
    settings = settings or get_settings()
    store = store or EventStore()
    client = None
    if fetcher is None:
        client = BitqueryClient(settings=settings)
        fetcher = client

    processors = {
        stream: EventProcessor(
            definition,
            fetcher,
            store.session_scope,
            batch_limit=settings.ingestion_batch_limit,
            commit_every=settings.ingestion_commit_every,
        )
        for stream, definition in build_stream_definitions().items()
    }
    return IngestionEngine(
        processors=processors,
        store=store,
        settings=settings,
        client=client,
    )

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from loguru import logger
from sqlalchemy.orm import Session

from app.models import EventStream

from .streams import StreamDefinition

DEFAULT_BATCH_LIMIT = 10_000
DEFAULT_COMMIT_EVERY = 1_000


class SyncMode(str, Enum):
    INITIAL = "initial"
    POLLING = "polling"

    @property
    def log_prefix(self) -> str:
        return "[Initial Sync]" if self is SyncMode.INITIAL else "[Polling]"


class EventFetcher(Protocol):
    async def fetch_events(self, stream: EventStream, limit: int) -> list[dict[str, Any]]: ...


class StreamFetchError(RuntimeError):
    """A stream's batch could not be fetched; the job queue may retry it."""

    def __init__(self, stream: str, cause: BaseException) -> None:
        super().__init__(f"{stream} fetch failed: {cause}")
        self.stream = stream
        self.cause = cause


@dataclass(slots=True)
class ProcessingStats:
    fetched: int = 0
    written: int = 0
    skipped: int = 0


class EventProcessor:
    """Fetch one stream's latest batch and upsert every valid event."""

    def __init__(
        self,
        definition: StreamDefinition,
        fetcher: EventFetcher,
        session_scope: Callable[[], AbstractContextManager[Session]],
        *,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        commit_every: int = DEFAULT_COMMIT_EVERY,
    ) -> None:
        self.definition = definition
        self._fetcher = fetcher
        self._session_scope = session_scope
        self._batch_limit = batch_limit
        self._commit_every = commit_every
        self.last_stats: ProcessingStats | None = None

    @property
    def name(self) -> str:
        return self.definition.label

    @property
    def stream(self) -> EventStream:
        return self.definition.stream

    async def process(
        self,
        mode: SyncMode = SyncMode.POLLING,
        *,
        propagate_fetch_errors: bool = False,
    ) -> int:
        """Return the number of records written.

        Errors are logged and turn into a partial (possibly zero) count. Only
        a fetch failure with ``propagate_fetch_errors`` set escapes, as
        ``StreamFetchError``.
        """
        prefix = mode.log_prefix
        try:
            events = await self._fetcher.fetch_events(self.stream, self._batch_limit)
        except Exception as exc:
            if propagate_fetch_errors:
                logger.warning("{} {} fetch failed: {}", prefix, self.name, exc)
                raise StreamFetchError(self.name, exc) from exc
            logger.exception("{} Error fetching {} events", prefix, self.name)
            self.last_stats = ProcessingStats()
            return 0

        stats = ProcessingStats(fetched=len(events))
        self.last_stats = stats
        try:
            self._store(events, stats, prefix)
        except Exception:
            logger.exception(
                "{} Error processing {} after {} records", prefix, self.name, stats.written
            )

        logger.info(
            "{} {}: {} written, {} skipped of {} fetched",
            prefix,
            self.name,
            stats.written,
            stats.skipped,
            stats.fetched,
        )
        return stats.written

    def _store(self, events: list[dict[str, Any]], stats: ProcessingStats, prefix: str) -> None:
        with self._session_scope() as session:
            pending = 0
            for raw_event in events:
                record = self.definition.build_record(raw_event)
                if record is None:
                    stats.skipped += 1
                    continue
                self.definition.write(session, record)
                pending += 1
                if pending >= self._commit_every:
                    session.commit()
                    stats.written += pending
                    pending = 0
                    logger.info(
                        "{} {} progress: {}/{} processed", prefix, self.name, stats.written, stats.fetched
                    )
            session.commit()
            stats.written += pending

"""Process-wide progress of the initial sync, read by the status endpoints."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class StreamProgress:
    completed: bool = False
    count: int = 0


@dataclass(slots=True)
class SyncStatus:
    in_progress: bool
    start_time: datetime | None
    duration_seconds: int
    progress: dict[str, StreamProgress] = field(default_factory=dict)


class SyncProgressTracker:
    """Mutable sync state guarded by a lock.

    Stream tasks of the initial sync update it while the API reads snapshots,
    so every read and write goes through the lock and snapshots are copies.
    """

    def __init__(
        self,
        streams: Iterable[str],
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._streams = tuple(streams)
        self._in_progress = False
        self._start_time: datetime | None = None
        self._progress = {name: StreamProgress() for name in self._streams}

    @property
    def in_progress(self) -> bool:
        with self._lock:
            return self._in_progress

    def begin(self) -> datetime:
        with self._lock:
            self._in_progress = True
            self._start_time = self._clock()
            self._progress = {name: StreamProgress() for name in self._streams}
            return self._start_time

    def complete(self, stream: str, count: int | None = None) -> None:
        # count and completed change together so readers never see a finished
        # stream carrying the previous pass's count.
        with self._lock:
            entry = self._progress.setdefault(stream, StreamProgress())
            entry.count = count if count is not None else 0
            entry.completed = True

    def finish(self) -> None:
        with self._lock:
            self._in_progress = False
            self._start_time = None

    def snapshot(self) -> SyncStatus:
        with self._lock:
            start_time = self._start_time
            duration = 0
            if start_time is not None:
                duration = max(0, int((self._clock() - start_time).total_seconds()))
            return SyncStatus(
                in_progress=self._in_progress,
                start_time=start_time,
                duration_seconds=duration,
                progress={name: replace(entry) for name, entry in self._progress.items()},
            )

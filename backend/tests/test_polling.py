from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

from apscheduler.triggers.cron import CronTrigger

from app.models import EventStream
from ingestion.client import BitqueryError
from ingestion.engine import build_ingestion_engine
from ingestion.queue import JobQueue
from ingestion.service import EventStore


class FakeScheduler:
    def __init__(self) -> None:
        self.jobs: list[dict] = []
        self.start_calls = 0
        self.running = False

    def add_job(self, func, trigger=None, args=None, **kwargs):
        self.jobs.append({"func": func, "trigger": trigger, "args": args or [], **kwargs})

    def start(self):
        self.start_calls += 1
        self.running = True

    def shutdown(self, wait=True):
        self.running = False


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FlakyFetcher:
    """Fail the first ``failures`` requests, then serve ``events``."""

    def __init__(self, events, failures: int = 0) -> None:
        self.events = events
        self.failures = failures
        self.calls: list[EventStream] = []

    async def fetch_events(self, stream, limit):
        self.calls.append(stream)
        if len(self.calls) <= self.failures:
            raise BitqueryError("502 Bad Gateway")
        return list(self.events.get(stream, []))


def _engine(settings, store, fetcher, sleep=None):
    engine = build_ingestion_engine(settings, store=store, fetcher=fetcher)
    engine._scheduler = FakeScheduler()
    engine.job_queue = JobQueue(sleep=sleep or RecordingSleep())
    return engine


def _populated_store() -> MagicMock:
    store = MagicMock(spec=EventStore)
    store.all_streams_populated.return_value = True
    return store


def test_start_polling_is_idempotent(test_settings):
    """Verify the poller is registered once with one cron job per stream."""

    async def scenario():
        engine = _engine(test_settings, _populated_store(), FlakyFetcher({}))
        first = engine.start_polling()
        second = engine.start_polling()
        await engine.initial_sync_task
        return engine, first, second

    engine, first, second = asyncio.run(scenario())

    assert (first, second) == (True, False)
    assert engine.polling_started is True
    scheduler = engine._scheduler
    assert scheduler.start_calls == 1
    assert [job["id"] for job in scheduler.jobs] == [
        "poll-question_initialized",
        "poll-condition_preparation",
        "poll-token_registered",
        "poll-order_filled",
    ]
    assert all(isinstance(job["trigger"], CronTrigger) for job in scheduler.jobs)
    assert all(job["max_instances"] == 1 and job["coalesce"] for job in scheduler.jobs)


def test_start_polling_launches_initial_sync(test_settings):
    """Verify starting the poller also runs the initial sync check."""
    store = _populated_store()

    async def scenario():
        engine = _engine(test_settings, store, FlakyFetcher({}))
        engine.start_polling()
        return await engine.initial_sync_task

    assert asyncio.run(scenario()) is None
    store.all_streams_populated.assert_called_once()


def test_scheduled_job_enqueues_refresh(test_settings, event_store, make_event, monkeypatch):
    """Verify a cron tick queues the stream's processor on the job queue."""
    events = {EventStream.QUESTION_INITIALIZED: [make_event({"questionID": "0xq1"})]}
    fetcher = FlakyFetcher(events)
    monkeypatch.setattr(event_store, "all_streams_populated", lambda: True)

    async def scenario():
        engine = _engine(test_settings, event_store, fetcher)
        engine.start_polling()
        await engine.initial_sync_task
        job = next(j for j in engine._scheduler.jobs if j["id"] == "poll-question_initialized")
        await job["func"](*job["args"])
        await engine.job_queue.join()

    asyncio.run(scenario())

    assert fetcher.calls == [EventStream.QUESTION_INITIALIZED]


def test_refresh_retries_fetch_failures_with_backoff(test_settings, event_store, make_event):
    """Verify a failing poll is retried after 1s and 2s before succeeding."""
    events = {EventStream.ORDER_FILLED: [
        make_event(
            {
                "orderHash": "0xo1",
                "maker": "0xm",
                "taker": "0xt",
                "makerAssetId": "1",
                "takerAssetId": "0",
            }
        )
    ]}
    fetcher = FlakyFetcher(events, failures=2)
    sleep = RecordingSleep()

    async def scenario():
        engine = _engine(test_settings, event_store, fetcher, sleep=sleep)
        await engine.enqueue_refresh(EventStream.ORDER_FILLED)
        await engine.job_queue.join()

    asyncio.run(scenario())

    assert len(fetcher.calls) == 3
    assert sleep.delays == [1.0, 2.0]
    assert event_store.table_counts()[EventStream.ORDER_FILLED] == 1


def test_refresh_gives_up_after_max_retries(test_settings, event_store):
    """Verify a stream that keeps failing is dropped after four attempts."""
    fetcher = FlakyFetcher({}, failures=100)
    sleep = RecordingSleep()

    async def scenario():
        engine = _engine(test_settings, event_store, fetcher, sleep=sleep)
        await engine.enqueue_refresh(EventStream.TOKEN_REGISTERED)
        await engine.job_queue.join()
        return engine

    engine = asyncio.run(scenario())

    assert len(fetcher.calls) == 4
    assert sleep.delays == [1.0, 2.0, 4.0]
    assert engine.job_queue.pending == 0


def test_refresh_all_runs_streams_in_order(test_settings, event_store):
    """Verify a full refresh processes every stream one after another."""
    fetcher = FlakyFetcher({})

    async def scenario():
        engine = _engine(test_settings, event_store, fetcher)
        await engine.refresh_all()

    asyncio.run(scenario())

    assert fetcher.calls == [
        EventStream.QUESTION_INITIALIZED,
        EventStream.CONDITION_PREPARATION,
        EventStream.TOKEN_REGISTERED,
        EventStream.ORDER_FILLED,
    ]


def test_shutdown_stops_scheduler(test_settings):
    async def scenario():
        engine = _engine(test_settings, _populated_store(), FlakyFetcher({}))
        engine.start_polling()
        await engine.initial_sync_task
        await engine.shutdown()
        return engine

    engine = asyncio.run(scenario())

    assert engine._scheduler.running is False


def test_background_sync_survives_storage_errors(test_settings):
    """Verify the initial sync task launched by the poller finishes cleanly."""
    store = MagicMock(spec=EventStore)
    store.all_streams_populated.side_effect = RuntimeError("database is locked")

    async def scenario():
        engine = _engine(test_settings, store, FlakyFetcher({}))
        engine.start_polling()
        await asyncio.wait([engine.initial_sync_task], timeout=1)
        return engine.initial_sync_task

    task = asyncio.run(scenario())

    assert task.done()
    assert task.exception() is None
    assert task.result() is None

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from app import crud
from app.models import EventStream, QuestionInitializedEvent
from ingestion.client import BitqueryError
from ingestion.processor import EventProcessor, StreamFetchError, SyncMode
from ingestion.streams import build_stream_definitions


class FakeFetcher:
    def __init__(self, events=None, error: Exception | None = None) -> None:
        self.events = events or []
        self.error = error
        self.calls: list[tuple[EventStream, int]] = []

    async def fetch_events(self, stream, limit):
        self.calls.append((stream, limit))
        if self.error is not None:
            raise self.error
        return list(self.events)


def _order_events(make_event, count: int):
    return [
        make_event(
            {
                "orderHash": f"0xorder{index}",
                "maker": "0xmaker",
                "taker": "0xtaker",
                "makerAssetId": "1",
                "takerAssetId": "0",
                "makerAmountFilled": str(index * 10),
                "takerAmountFilled": str(index),
            },
            block_number=55_000_000 + index,
        )
        for index in range(count)
    ]


def _processor(event_store, fetcher, stream=EventStream.ORDER_FILLED, **kwargs):
    definition = build_stream_definitions()[stream]
    return EventProcessor(definition, fetcher, event_store.session_scope, **kwargs)


def _count(event_store, stream) -> int:
    return event_store.table_counts()[stream]


def test_invalid_events_are_skipped(event_store, make_event):
    """Verify 10 fetched events with 3 missing a required field store 7 rows."""
    events = _order_events(make_event, 7)
    events += [make_event({"orderHash": f"0xbroken{index}", "maker": "0xmaker"}) for index in range(3)]
    processor = _processor(event_store, FakeFetcher(events))

    written = asyncio.run(processor.process(SyncMode.INITIAL))

    assert written == 7
    assert processor.last_stats.fetched == 10
    assert processor.last_stats.skipped == 3
    assert _count(event_store, EventStream.ORDER_FILLED) == 7


def test_batch_limit_is_passed_to_fetcher(event_store):
    fetcher = FakeFetcher([])
    processor = _processor(event_store, fetcher, batch_limit=250)

    assert asyncio.run(processor.process()) == 0
    assert fetcher.calls == [(EventStream.ORDER_FILLED, 250)]


def test_reprocessing_same_batch_is_idempotent(event_store, make_event):
    """Verify replaying a batch leaves one row per natural key."""
    processor = _processor(event_store, FakeFetcher(_order_events(make_event, 5)))

    asyncio.run(processor.process())
    asyncio.run(processor.process())

    assert _count(event_store, EventStream.ORDER_FILLED) == 5


def test_progress_commits_in_chunks(event_store, make_event):
    """Verify chunked commits still store every record."""
    processor = _processor(
        event_store, FakeFetcher(_order_events(make_event, 25)), commit_every=10
    )

    assert asyncio.run(processor.process(SyncMode.INITIAL)) == 25
    assert _count(event_store, EventStream.ORDER_FILLED) == 25


def test_write_failure_keeps_committed_chunks(event_store, make_event):
    """Verify a mid-batch failure returns the count already committed."""
    definition = build_stream_definitions()[EventStream.ORDER_FILLED]
    writes = {"count": 0}

    def flaky_write(session, record):
        writes["count"] += 1
        if writes["count"] == 5:
            raise RuntimeError("disk full")
        return crud.insert_order_fill(session, record)

    processor = EventProcessor(
        replace(definition, write=flaky_write),
        FakeFetcher(_order_events(make_event, 8)),
        event_store.session_scope,
        commit_every=2,
    )

    assert asyncio.run(processor.process()) == 4
    assert _count(event_store, EventStream.ORDER_FILLED) == 4


def test_fetch_failure_returns_zero_by_default(event_store):
    """Verify fetch errors are logged and reported as zero records."""
    processor = _processor(event_store, FakeFetcher(error=BitqueryError("timeout")))

    assert asyncio.run(processor.process(SyncMode.INITIAL)) == 0
    assert _count(event_store, EventStream.ORDER_FILLED) == 0


def test_fetch_failure_propagates_when_requested(event_store):
    """Verify queued polls see fetch failures so they can be retried."""
    processor = _processor(event_store, FakeFetcher(error=BitqueryError("timeout")))

    with pytest.raises(StreamFetchError) as excinfo:
        asyncio.run(processor.process(SyncMode.POLLING, propagate_fetch_errors=True))

    assert excinfo.value.stream == "OrderFilled"
    assert isinstance(excinfo.value.cause, BitqueryError)


def test_question_stream_stores_decoded_payload(event_store, make_event):
    """Verify questions are stored with their decoded ancillary data."""
    ancillary = "0x" + "q: title: Rain?, description: Rain today.".encode().hex()
    events = [
        make_event({"questionID": "0xq1", "ancillaryData": ancillary}),
        make_event({"questionID": "0xq2", "ancillaryData": "0xff"}),
    ]
    processor = _processor(event_store, FakeFetcher(events), stream=EventStream.QUESTION_INITIALIZED)

    assert asyncio.run(processor.process()) == 2

    with event_store.session_scope() as session:
        decoded = session.get(QuestionInitializedEvent, "0xq1").ancillary_data_decoded
        undecodable = session.get(QuestionInitializedEvent, "0xq2").ancillary_data_decoded

    assert decoded["title"] == "Rain?"
    assert undecodable is None

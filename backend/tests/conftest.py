from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Callable

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest

from app.core.config import Settings
from app.db import build_db_components, init_db
from ingestion.service import EventStore


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'polymarket.db'}",
        bitquery_oauth_token="test-token",
        ingestion_batch_limit=50,
        ingestion_commit_every=1000,
        queue_initial_backoff_seconds=1.0,
        auto_start_polling=False,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def event_store(test_settings) -> EventStore:
    engine, session_factory = build_db_components(test_settings.resolved_database_url)
    init_db(engine)
    yield EventStore(engine, session_factory)
    engine.dispose()


@pytest.fixture
def make_event() -> Callable[..., dict[str, Any]]:
    """Build a raw Bitquery event; arguments set to None are left out."""

    def _make_event(
        arguments: dict[str, Any],
        *,
        block_number: int = 55_000_000,
        block_time: str = "2024-05-01T12:00:00Z",
        tx_hash: str = "0xfeed",
    ) -> dict[str, Any]:
        return {
            "Arguments": [
                {"Name": name, "Type": "string", "Value": {"string": value}}
                for name, value in arguments.items()
                if value is not None
            ],
            "Block": {"Time": block_time, "Number": str(block_number)},
            "Transaction": {"Hash": tx_hash},
        }

    return _make_event

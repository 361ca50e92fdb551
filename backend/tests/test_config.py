from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.core.config import Settings


def test_defaults():
    """Verify the ingestion defaults match the documented polling policy."""
    settings = Settings(_env_file=None)

    assert settings.polling_cron == "0 * * * *"
    assert settings.queue_max_retries == 3
    assert settings.queue_initial_backoff_seconds == 1.0
    assert settings.ingestion_batch_limit == 10_000
    assert settings.ingestion_commit_every == 1_000


def test_blank_token_is_treated_as_missing():
    settings = Settings(_env_file=None, bitquery_oauth_token="   ")

    assert settings.bitquery_oauth_token is None
    assert settings.has_bitquery_token is False


def test_invalid_cron_is_rejected():
    """Verify a malformed crontab fails at startup instead of at the first tick."""
    with pytest.raises(ValidationError):
        Settings(_env_file=None, polling_cron="every hour")


def test_postgres_url_uses_psycopg_driver():
    settings = Settings(_env_file=None, database_url="postgres://user:pw@localhost/polymarket")

    assert settings.resolved_database_url.startswith("postgresql+psycopg://")

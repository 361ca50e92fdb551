from functools import lru_cache
from typing import Any
from urllib.parse import urlparse, urlunparse

from apscheduler.triggers.cron import CronTrigger
from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    return urlunparse(parsed._replace(scheme=scheme))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///./data/polymarket.db",
        description="SQLAlchemy compatible database URL",
    )
    bitquery_api_url: AnyUrl = Field(
        default="https://streaming.bitquery.io/graphql",
        description="Bitquery streaming GraphQL endpoint",
    )
    bitquery_oauth_token: str | None = Field(
        default=None,
        description="Bearer token sent with every Bitquery request",
    )
    bitquery_network: str = Field(
        default="matic",
        description="Bitquery EVM network identifier that hosts the Polymarket contracts",
    )
    bitquery_timeout_seconds: float = Field(
        default=120.0,
        description="HTTP timeout applied to a single Bitquery request",
        gt=0,
    )
    ctf_exchange_address: str = Field(
        default="0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E",
        description="CTF Exchange contract emitting TokenRegistered and OrderFilled",
    )
    conditional_tokens_address: str = Field(
        default="0x4D97DCd97eC945f40cF65F87097ACe5EA0476045",
        description="Conditional Tokens contract emitting ConditionPreparation",
    )
    uma_adapter_address: str = Field(
        default="0x6A9D222616C90FcA5754cd1333cFD9b7fb6a4F74",
        description="UMA CTF adapter contract emitting QuestionInitialized",
    )
    ingestion_batch_limit: int = Field(
        default=10_000,
        description="Maximum number of events fetched per stream in a single pass",
        ge=1,
    )
    ingestion_commit_every: int = Field(
        default=1_000,
        description="Number of upserted records between commits (and progress log lines)",
        ge=1,
    )
    queue_max_retries: int = Field(
        default=3,
        description="Retries granted to a recurring job before it is dropped",
        ge=0,
    )
    queue_initial_backoff_seconds: float = Field(
        default=1.0,
        description="Wait before the first retry; doubled after every further failure",
        gt=0,
    )
    polling_cron: str = Field(
        default="0 * * * *",
        description="Crontab expression driving the recurring poll of every stream",
    )
    polling_timezone: str = Field(
        default="UTC",
        description="Timezone the polling crontab is evaluated in",
    )
    auto_start_polling: bool = Field(
        default=True,
        description="Start the initial sync and recurring poller when the API boots",
    )

    @field_validator("polling_cron")
    @classmethod
    def _validate_polling_cron(cls, value: str) -> str:
        candidate = value.strip()
        try:
            CronTrigger.from_crontab(candidate)
        except ValueError as exc:
            raise ValueError(f"polling_cron is not a valid crontab expression: {exc}") from exc
        return candidate

    @field_validator("bitquery_oauth_token", mode="before")
    @classmethod
    def _blank_token_is_missing(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def resolved_database_url(self) -> str:
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))

    @property
    def has_bitquery_token(self) -> bool:
        return bool(self.bitquery_oauth_token)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

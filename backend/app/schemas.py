from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class StreamProgress(BaseModel):
    completed: bool
    count: int

    model_config = {"from_attributes": True}


class InitialSyncStatus(BaseModel):
    in_progress: bool
    start_time: datetime | None = None
    duration_seconds: int = 0
    progress: dict[str, StreamProgress] = Field(default_factory=dict)

    model_config = {"from_attributes": True}


class HealthStatus(BaseModel):
    status: str = "ok"
    timestamp: datetime
    uptime_seconds: float


class InitResponse(BaseModel):
    success: bool
    message: str


class DatabaseInfo(BaseModel):
    url: str
    path: str | None = None
    exists: bool
    checkpoint_status: str


class SyncInfo(BaseModel):
    in_progress: bool
    duration_seconds: int
    tables_empty: bool
    all_tables_filled: bool
    needs_sync: bool
    polling_started: bool
    queue_pending: int
    queue_draining: bool


class EnvironmentInfo(BaseModel):
    environment: str
    has_oauth_token: bool
    token_length: int


class MarketDiagnostics(BaseModel):
    total_questions: int
    total_conditions: int
    with_decoded: int
    with_decoded_and_conditions: int
    markets_query_count: int
    sample_market: dict[str, Any] | None = None


class DebugReport(BaseModel):
    database: DatabaseInfo
    tables: dict[str, int]
    sync: SyncInfo
    environment: EnvironmentInfo
    sample_question: dict[str, Any] | None = None
    sample_condition: dict[str, Any] | None = None
    markets: MarketDiagnostics

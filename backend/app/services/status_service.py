"""Diagnostics for the ingestion status and debug endpoints."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import func, inspect, select
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.db import database_path
from app.models import (
    ConditionPreparationEvent,
    QuestionInitializedEvent,
    TokenRegisteredEvent,
)
from app.schemas import (
    DatabaseInfo,
    DebugReport,
    EnvironmentInfo,
    InitialSyncStatus,
    MarketDiagnostics,
    SyncInfo,
)
from ingestion.engine import IngestionEngine

MARKETS_QUERY_LIMIT = 500


def _row_to_dict(row: Any) -> dict[str, Any] | None:
    if row is None:
        return None
    mapper = inspect(row).mapper
    return {column.key: getattr(row, column.key) for column in mapper.column_attrs}


def _scalar(session: Session, query) -> int:
    return int(session.execute(query).scalar_one() or 0)


class StatusService:
    """Combine storage counts, sync progress and queue state into one report."""

    def __init__(self, engine: IngestionEngine, settings: Settings) -> None:
        self._engine = engine
        self._settings = settings

    def sync_status(self) -> InitialSyncStatus:
        return InitialSyncStatus.model_validate(
            self._engine.get_initial_sync_status(), from_attributes=True
        )

    def debug_report(self) -> DebugReport:
        store = self._engine.store
        # Checkpoint first so counts include writes still sitting in the WAL.
        checkpoint_status = store.checkpoint()
        counts = {stream.value: count for stream, count in store.table_counts().items()}
        tables_empty = not any(counts.values())
        all_filled = bool(counts) and all(counts.values())
        status = self._engine.get_initial_sync_status()

        db_path = database_path(store.engine)
        token = self._settings.bitquery_oauth_token or ""

        with store.session_scope() as session:
            sample_question = _row_to_dict(
                session.execute(select(QuestionInitializedEvent).limit(1)).scalar_one_or_none()
            )
            sample_condition = _row_to_dict(
                session.execute(select(ConditionPreparationEvent).limit(1)).scalar_one_or_none()
            )
            markets = self.market_diagnostics(session)

        return DebugReport(
            database=DatabaseInfo(
                url=store.engine.url.render_as_string(hide_password=True),
                path=db_path,
                exists=bool(db_path and Path(db_path).exists()),
                checkpoint_status=checkpoint_status,
            ),
            tables=counts,
            sync=SyncInfo(
                in_progress=status.in_progress,
                duration_seconds=status.duration_seconds,
                tables_empty=tables_empty,
                all_tables_filled=all_filled,
                needs_sync=tables_empty and not status.in_progress,
                polling_started=self._engine.polling_started,
                queue_pending=self._engine.job_queue.pending,
                queue_draining=self._engine.job_queue.is_draining,
            ),
            environment=EnvironmentInfo(
                environment=self._settings.environment,
                has_oauth_token=self._settings.has_bitquery_token,
                token_length=len(token),
            ),
            sample_question=sample_question,
            sample_condition=sample_condition,
            markets=markets,
        )

    def market_diagnostics(self, session: Session) -> MarketDiagnostics:
        """Count questions that can be rendered as markets on the dashboard."""
        decoded = QuestionInitializedEvent.ancillary_data_decoded.is_not(None)

        total_questions = _scalar(session, select(func.count(QuestionInitializedEvent.question_id)))
        total_conditions = _scalar(
            session, select(func.count(ConditionPreparationEvent.condition_id))
        )
        with_decoded = _scalar(
            session, select(func.count(QuestionInitializedEvent.question_id)).where(decoded)
        )
        with_conditions = _scalar(
            session,
            select(func.count(func.distinct(QuestionInitializedEvent.question_id)))
            .select_from(QuestionInitializedEvent)
            .join(
                ConditionPreparationEvent,
                ConditionPreparationEvent.question_id == QuestionInitializedEvent.question_id,
            )
            .where(decoded),
        )

        rows = session.execute(
            select(
                QuestionInitializedEvent.question_id,
                QuestionInitializedEvent.ancillary_data_decoded,
                QuestionInitializedEvent.block_time.label("question_time"),
                ConditionPreparationEvent.condition_id,
                ConditionPreparationEvent.outcome_slot_count,
                TokenRegisteredEvent.token0,
                TokenRegisteredEvent.token1,
            )
            .select_from(QuestionInitializedEvent)
            .join(
                ConditionPreparationEvent,
                ConditionPreparationEvent.question_id == QuestionInitializedEvent.question_id,
            )
            .join(
                TokenRegisteredEvent,
                TokenRegisteredEvent.condition_id == ConditionPreparationEvent.condition_id,
                isouter=True,
            )
            .where(decoded)
            .order_by(QuestionInitializedEvent.block_time.desc())
            .limit(MARKETS_QUERY_LIMIT)
        ).mappings().all()

        return MarketDiagnostics(
            total_questions=total_questions,
            total_conditions=total_conditions,
            with_decoded=with_decoded,
            with_decoded_and_conditions=with_conditions,
            markets_query_count=len(rows),
            sample_market=dict(rows[0]) if rows else None,
        )

"""Persistence helpers for the four on-chain event tables."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.domain import (
    BlockProvenance,
    ConditionPreparation,
    OrderFill,
    QuestionInitialization,
    TokenRegistration,
)
from app.models import (
    STREAM_TABLES,
    ConditionPreparationEvent,
    EventStream,
    OrderFilledEvent,
    QuestionInitializedEvent,
    TokenRegisteredEvent,
    utcnow,
)


def _apply_provenance(row, provenance: BlockProvenance) -> None:
    row.block_time = provenance.block_time
    row.block_number = provenance.block_number
    row.transaction_hash = provenance.transaction_hash
    row.ingested_at = utcnow()


class EventRepository:
    """Upsert normalized events by their natural key.

    Every write looks the row up by primary key and overwrites its attributes,
    so replaying the same event leaves the table unchanged.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def upsert_token_registration(self, record: TokenRegistration) -> TokenRegisteredEvent:
        existing = self._session.get(
            TokenRegisteredEvent, (record.condition_id, record.token0)
        )
        if existing is None:
            existing = TokenRegisteredEvent(
                condition_id=record.condition_id, token0=record.token0
            )
            self._session.add(existing)

        existing.token1 = record.token1
        _apply_provenance(existing, record.provenance)
        return existing

    def upsert_order_fill(self, record: OrderFill) -> OrderFilledEvent:
        existing = self._session.get(OrderFilledEvent, record.order_hash)
        if existing is None:
            existing = OrderFilledEvent(order_hash=record.order_hash)
            self._session.add(existing)

        existing.maker = record.maker
        existing.taker = record.taker
        existing.maker_asset_id = record.maker_asset_id
        existing.taker_asset_id = record.taker_asset_id
        existing.maker_amount_filled = record.maker_amount_filled
        existing.taker_amount_filled = record.taker_amount_filled
        existing.fee = record.fee
        _apply_provenance(existing, record.provenance)
        return existing

    def upsert_condition_preparation(
        self, record: ConditionPreparation
    ) -> ConditionPreparationEvent:
        existing = self._session.get(ConditionPreparationEvent, record.condition_id)
        if existing is None:
            existing = ConditionPreparationEvent(condition_id=record.condition_id)
            self._session.add(existing)

        existing.question_id = record.question_id
        existing.outcome_slot_count = record.outcome_slot_count
        existing.oracle = record.oracle
        _apply_provenance(existing, record.provenance)
        return existing

    def upsert_question_initialization(
        self, record: QuestionInitialization
    ) -> QuestionInitializedEvent:
        existing = self._session.get(QuestionInitializedEvent, record.question_id)
        if existing is None:
            existing = QuestionInitializedEvent(question_id=record.question_id)
            self._session.add(existing)

        existing.request_timestamp = record.request_timestamp
        existing.creator = record.creator
        existing.ancillary_data = record.ancillary_data
        existing.ancillary_data_decoded = record.ancillary_data_decoded
        existing.reward_token = record.reward_token
        existing.reward = record.reward
        existing.proposal_bond = record.proposal_bond
        _apply_provenance(existing, record.provenance)
        return existing

    # ------------------------------------------------------------------
    # Queries

    def count(self, stream: EventStream) -> int:
        table = STREAM_TABLES[stream]
        return int(self._session.execute(select(func.count()).select_from(table)).scalar_one())

    def table_counts(self) -> dict[EventStream, int]:
        return {stream: self.count(stream) for stream in EventStream}

    def has_rows(self, stream: EventStream) -> bool:
        table = STREAM_TABLES[stream]
        return self._session.execute(select(table).limit(1)).first() is not None


__all__ = ["EventRepository"]

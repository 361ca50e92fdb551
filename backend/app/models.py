from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, BigInteger, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class EventStream(str, Enum):
    """The four independent on-chain event streams."""

    TOKEN_REGISTERED = "token_registered"
    ORDER_FILLED = "order_filled"
    CONDITION_PREPARATION = "condition_preparation"
    QUESTION_INITIALIZED = "question_initialized"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenRegisteredEvent(Base):
    __tablename__ = "token_registered_events"

    condition_id: Mapped[str] = mapped_column(String(66), primary_key=True)
    token0: Mapped[str] = mapped_column(String(100), primary_key=True)
    token1: Mapped[str | None] = mapped_column(String(100), nullable=True)
    block_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    ingested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class OrderFilledEvent(Base):
    __tablename__ = "order_filled_events"

    order_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    maker: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    taker: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    maker_asset_id: Mapped[str] = mapped_column(String(100), nullable=False)
    taker_asset_id: Mapped[str] = mapped_column(String(100), nullable=False)
    # Raw uint256 amounts are kept as decimal strings.
    maker_amount_filled: Mapped[str] = mapped_column(String(80), nullable=False, default="0")
    taker_amount_filled: Mapped[str] = mapped_column(String(80), nullable=False, default="0")
    fee: Mapped[str | None] = mapped_column(String(80), nullable=True)
    block_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    ingested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class ConditionPreparationEvent(Base):
    __tablename__ = "condition_preparation_events"

    condition_id: Mapped[str] = mapped_column(String(66), primary_key=True)
    question_id: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    outcome_slot_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    oracle: Mapped[str | None] = mapped_column(String(42), nullable=True)
    block_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    ingested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class QuestionInitializedEvent(Base):
    __tablename__ = "question_initialized_events"

    question_id: Mapped[str] = mapped_column(String(66), primary_key=True)
    request_timestamp: Mapped[str | None] = mapped_column(String(32), nullable=True)
    creator: Mapped[str | None] = mapped_column(String(42), nullable=True)
    ancillary_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    ancillary_data_decoded: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    reward_token: Mapped[str | None] = mapped_column(String(42), nullable=True)
    reward: Mapped[str | None] = mapped_column(String(80), nullable=True)
    proposal_bond: Mapped[str | None] = mapped_column(String(80), nullable=True)
    block_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    ingested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


STREAM_TABLES: dict[EventStream, type[Base]] = {
    EventStream.TOKEN_REGISTERED: TokenRegisteredEvent,
    EventStream.ORDER_FILLED: OrderFilledEvent,
    EventStream.CONDITION_PREPARATION: ConditionPreparationEvent,
    EventStream.QUESTION_INITIALIZED: QuestionInitializedEvent,
}

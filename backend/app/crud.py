from __future__ import annotations

from sqlalchemy.orm import Session

from app.domain import (
    ConditionPreparation,
    OrderFill,
    QuestionInitialization,
    TokenRegistration,
)
from app.models import EventStream
from app.repositories import EventRepository

from .models import (
    ConditionPreparationEvent,
    OrderFilledEvent,
    QuestionInitializedEvent,
    TokenRegisteredEvent,
)


def insert_token_registration(
    session: Session, record: TokenRegistration
) -> TokenRegisteredEvent:
    return EventRepository(session).upsert_token_registration(record)


def insert_order_fill(session: Session, record: OrderFill) -> OrderFilledEvent:
    return EventRepository(session).upsert_order_fill(record)


def insert_condition_preparation(
    session: Session, record: ConditionPreparation
) -> ConditionPreparationEvent:
    return EventRepository(session).upsert_condition_preparation(record)


def insert_question_initialization(
    session: Session, record: QuestionInitialization
) -> QuestionInitializedEvent:
    return EventRepository(session).upsert_question_initialization(record)


def table_counts(session: Session) -> dict[EventStream, int]:
    return EventRepository(session).table_counts()


def are_tables_empty(session: Session) -> bool:
    repo = EventRepository(session)
    return not any(repo.has_rows(stream) for stream in EventStream)


def are_all_tables_filled(session: Session) -> bool:
    repo = EventRepository(session)
    return all(repo.has_rows(stream) for stream in EventStream)

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from app import crud
from app.db import SessionLocal, checkpoint_database
from app.db import engine as default_engine
from app.models import EventStream


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


class EventStore:
    """Storage handle shared by the processors, the orchestrator and status views."""

    def __init__(
        self,
        engine: Engine | None = None,
        session_factory: sessionmaker[Session] | None = None,
    ) -> None:
        self.engine = engine or default_engine
        self.session_factory = session_factory or SessionLocal

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        with session_scope(self.session_factory) as session:
            yield session

    def all_streams_populated(self) -> bool:
        with self.session_scope() as session:
            return crud.are_all_tables_filled(session)

    def any_stream_populated(self) -> bool:
        with self.session_scope() as session:
            return not crud.are_tables_empty(session)

    def table_counts(self) -> dict[EventStream, int]:
        with self.session_scope() as session:
            return crud.table_counts(session)

    def checkpoint(self) -> str:
        status = checkpoint_database(self.engine)
        logger.info("Database checkpoint status: {}", status)
        return status

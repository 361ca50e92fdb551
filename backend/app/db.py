from collections.abc import Generator
from pathlib import Path

from loguru import logger
from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .core.config import settings


def _ensure_sqlite_path(url: str) -> None:
    if not url.startswith("sqlite"):
        return

    parsed = make_url(url)
    database = parsed.database
    if not database or database == ":memory:":
        return

    path = Path(database)
    path.parent.mkdir(parents=True, exist_ok=True)


def _enable_sqlite_wal(engine: Engine) -> None:
    """Switch every new SQLite connection to write-ahead logging.

    The initial sync writes four streams from concurrent tasks; WAL lets the
    status endpoints keep reading while those writes land.
    """

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA temp_store=MEMORY")
        finally:
            cursor.close()


def _create_engine(url: str) -> Engine:
    connect_args: dict[str, object] = {}
    engine_kwargs: dict[str, object] = {
        "echo": settings.debug,
        "future": True,
        "pool_pre_ping": True,
    }

    parsed = make_url(url)
    backend = parsed.get_backend_name()

    if backend == "sqlite":
        connect_args["check_same_thread"] = False
        _ensure_sqlite_path(url)
    else:
        engine_kwargs["pool_recycle"] = 300

    if connect_args:
        engine_kwargs["connect_args"] = connect_args

    engine = create_engine(url, **engine_kwargs)
    if backend == "sqlite" and parsed.database not in (None, "", ":memory:"):
        _enable_sqlite_wal(engine)
    return engine


def _create_session_factory(engine: Engine) -> sessionmaker[Session]:
    # autoflush lets a batch that repeats the same natural key find the
    # pending row through Session.get instead of inserting it twice.
    return sessionmaker(bind=engine, autoflush=True, autocommit=False, future=True)


def build_db_components(url: str) -> tuple[Engine, sessionmaker[Session]]:
    engine = _create_engine(url)
    session_factory = _create_session_factory(engine)
    return engine, session_factory


engine, SessionLocal = build_db_components(settings.resolved_database_url)
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def init_db(bind: Engine | None = None) -> None:
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def database_path(bind: Engine | None = None) -> str | None:
    """Return the on-disk path of a file-backed SQLite database, if any."""

    url = (bind or engine).url
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return None
    return str(Path(url.database).resolve())


def checkpoint_database(bind: Engine | None = None) -> str:
    """Flush the SQLite write-ahead log into the main database file.

    Returns a short status string instead of raising: ``success``,
    ``restart_success``, ``failed_<busy>``, ``skipped`` for non-SQLite
    backends, or ``error_<message>``.
    """

    target = bind or engine
    if target.url.get_backend_name() != "sqlite":
        return "skipped"

    try:
        with target.connect() as connection:
            row = connection.execute(text("PRAGMA wal_checkpoint(TRUNCATE)")).fetchone()
            busy = row[0] if row else 0
            if busy == 0:
                return "success"
            logger.warning("WAL checkpoint returned busy={} (active readers?)", busy)
            row = connection.execute(text("PRAGMA wal_checkpoint(RESTART)")).fetchone()
            if row is not None and row[0] == 0:
                return "restart_success"
            return f"failed_{busy}"
    except SQLAlchemyError as exc:
        logger.error("WAL checkpoint failed: {}", exc)
        return f"error_{exc}"

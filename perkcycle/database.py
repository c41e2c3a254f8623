"""Database engine and session management."""
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from perkcycle.config import Settings

Base = declarative_base()


def create_db_engine(
    database_url: str,
    echo: bool = False,
    busy_timeout: float = 30.0,
) -> Engine:
    """Create an engine suitable for concurrent account transactions.

    SQLite connections are opened with a busy timeout and every transaction
    starts with BEGIN IMMEDIATE, so parallel writers queue on the database
    lock instead of failing on a lock upgrade.
    """
    is_sqlite = database_url.startswith("sqlite")
    # SQLite requires check_same_thread=False for the batch worker threads
    connect_args = {"check_same_thread": False, "timeout": busy_timeout} if is_sqlite else {}

    if is_sqlite:
        database_path = make_url(database_url).database
        if database_path and database_path != ":memory:":
            Path(database_path).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(database_url, connect_args=connect_args, echo=echo)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
            # Let SQLAlchemy emit BEGIN itself (see below)
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys = ON;")
            cursor.close()

        @event.listens_for(engine, "begin")
        def begin_immediate(conn) -> None:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def create_engine_from_settings(settings: Settings) -> Engine:
    return create_db_engine(
        settings.database_url,
        echo=settings.debug,
        busy_timeout=settings.transaction_timeout_seconds,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables registered on Base."""
    # Import all models so they're registered with Base
    from perkcycle import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Context manager for a committed-or-rolled-back unit of work."""
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

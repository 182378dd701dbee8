"""
Database configuration — SQLAlchemy engine, session factory and the
transaction boundary used by every money-affecting operation.

SQLite:     the engine issues BEGIN IMMEDIATE so concurrent writers serialize
            on the database lock (SELECT ... FOR UPDATE is a no-op there).
PostgreSQL: row locks from SELECT ... FOR UPDATE serialize writers per row.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

import config

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT = 30  # seconds a writer waits for the database lock

# Base class for ORM models
Base = declarative_base()


def make_engine(database_url: str) -> Engine:
    """Create an engine; SQLite connections get serializable write transactions."""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=False,
            connect_args={"timeout": SQLITE_BUSY_TIMEOUT, "check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            # Let SQLAlchemy emit BEGIN itself
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_engine(database_url, echo=False, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
    )


engine = make_engine(config.DATABASE_URL)
SessionLocal = make_session_factory(engine)


def get_db() -> Iterator[Session]:
    """Dependency for FastAPI - yields database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """Initialize database - create all tables."""
    # Register the ORM tables on Base.metadata
    import models.db_models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Run a unit of work: commit on success, roll back on any exception.

    Everything the block does through `db` (balance changes, state
    transitions, audit rows) lands together or not at all.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise

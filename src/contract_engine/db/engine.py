"""Engine construction, session factory and transactional scope."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from contract_engine.db.base import Base

logger = structlog.get_logger(__name__)


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine for *database_url*.

    SQLite gets the pysqlite transaction fix-up so that SAVEPOINTs (used
    to isolate proposal creation and sweep items) behave as on PostgreSQL.
    In-memory SQLite shares a single connection across threads.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Disable pysqlite's own BEGIN handling; SQLAlchemy emits it below.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def create_tables(engine: Engine) -> None:
    from contract_engine.db import tables  # noqa: F401

    Base.metadata.create_all(engine)
    logger.info("tables_created", url=engine.url.render_as_string(hide_password=True))


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Commit on success, roll back on any exception, always close."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

"""Engine / session factory and the transaction helper used by every step."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from corpusflow.config import settings
from corpusflow.db.models import Base

logger = logging.getLogger(__name__)


def _use_immediate_transactions(engine: Engine) -> None:
    """Make SQLite take the write lock at BEGIN.

    Parallel workflow steps run read-then-write transactions; with the
    driver's deferred BEGIN two of them can deadlock on the lock upgrade
    instead of waiting on the busy timeout.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):  # noqa: ANN001
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_session_factory(database_url: str | None = None, *, create_tables: bool = False) -> sessionmaker[Session]:
    """Build a ``sessionmaker`` bound to *database_url* (defaults to settings).

    Parameters
    ----------
    database_url:
        SQLAlchemy URL.  Falls back to ``settings.database_url``.
    create_tables:
        Run ``create_all`` on the metadata, for local runs and tests.
    """
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
        _use_immediate_transactions(engine)
    else:
        engine = create_engine(url, pool_pre_ping=True)

    if create_tables:
        Base.metadata.create_all(engine)
        logger.info("Created tables on %s", engine.url.render_as_string(hide_password=True))
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Yield a session wrapped in one transaction; commit on success, roll back on error."""
    session = session_factory()
    try:
        with session.begin():
            yield session
    finally:
        session.close()

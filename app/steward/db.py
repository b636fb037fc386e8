from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from collections.abc import Generator
from typing import Any

from flask import Flask, current_app, g
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


def engine_options(config: dict[str, Any]) -> dict[str, Any]:
    """create_engine() keyword arguments for the configured database."""
    opts: dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if config["DATABASE_URL"].startswith("postgres"):
        # Each gunicorn worker holds its own pool.
        opts.update(
            {
                "pool_recycle": 1800,
                "pool_size": config.get("DB_POOL_SIZE", 5),
                "max_overflow": config.get("DB_MAX_OVERFLOW", 10),
                "pool_timeout": 30,
            }
        )
    return opts


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    # Tenant deletes rely on ON DELETE CASCADE, which SQLite ignores unless switched on per connection.
    @event.listens_for(engine, "connect")
    def _fk_pragma(dbapi_connection, connection_record):  # type: ignore[no-redef]
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()


def _dispose_after_fork(engine: Engine) -> None:
    # gunicorn --preload forks after the engine exists; children must not share its sockets.
    if not hasattr(os, "register_at_fork"):
        return

    def _after_fork_child() -> None:
        engine.dispose(close=False)
        logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

    os.register_at_fork(after_in_child=_after_fork_child)


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    engine = create_engine(db_url, **engine_options(app.config))
    if db_url.startswith("sqlite"):
        _enable_sqlite_foreign_keys(engine)
    _dispose_after_fork(engine)

    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def db_session() -> Session:
    """
    Session for the current request, opened on first use and closed at teardown.
    Tenant filtering is the caller's job: every query names its church_id.
    """
    s: Session | None = g.get("db_session")
    if s is None:
        s = current_app.extensions["sqlalchemy_sessionmaker"]()
        g.db_session = s
    return s


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = getattr(g, "db_session", None)
    if s is not None:
        try:
            s.close()
        finally:
            g.db_session = None


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Non-request helper for scripts and tests: yields a session and commits/rolls back.
    """
    sm = app.extensions["sqlalchemy_sessionmaker"]
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def check_database(s: Session) -> str | None:
    """Round-trip a trivial query. Returns the error text, or None when the database answers."""
    try:
        s.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        s.rollback()
        return str(e)
    return None

from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator
from typing import Any

from flask import Flask, current_app, g
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


def engine_options(db_url: str, *, pool_size: int = 5, max_overflow: int = 10) -> dict[str, Any]:
    """Pool settings apply to server databases only; SQLite keeps SQLAlchemy's defaults."""
    if db_url.startswith("sqlite"):
        return {"future": True}
    return {
        "future": True,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": 30,
    }


def build_engine(db_url: str, **pool: int) -> Engine:
    engine = create_engine(db_url, **engine_options(db_url, **pool))
    if db_url.startswith("sqlite"):
        # ON DELETE SET NULL / CASCADE rely on it
        @event.listens_for(engine, "connect")
        def _sqlite_foreign_keys(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    return engine


def make_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False)


def init_db(app: Flask) -> None:
    engine = build_engine(
        app.config["DATABASE_URL"],
        pool_size=app.config["DB_POOL_SIZE"],
        max_overflow=app.config["DB_MAX_OVERFLOW"],
    )
    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = make_sessionmaker(engine)


def db_session() -> Session:
    """
    Request-scoped session, created on first use and closed on teardown.
    """
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        s = current_app.extensions["sqlalchemy_sessionmaker"]()
        g.db_session = s
    return s


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = getattr(g, "db_session", None)
    if s is not None:
        if _exc is not None:
            s.rollback()
        s.close()
        g.db_session = None


@contextmanager
def transaction(s: Session) -> Generator[Session, None, None]:
    """
    Commit on success, roll back on any error.
    """
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """A short-lived session outside a request, for after_request hooks and tests."""
    s: Session = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        with transaction(s):
            yield s
    finally:
        s.close()

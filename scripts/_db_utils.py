from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session

from app.authz.db import build_engine, make_sessionmaker, transaction

DEFAULT_DATABASE_URL = "sqlite:///authz.db"


def resolve_database_url(database_url: str | None = None) -> str:
    return (database_url or os.environ.get("DATABASE_URL") or DEFAULT_DATABASE_URL).strip()


@contextmanager
def script_session(database_url: str | None = None) -> Iterator[Session]:
    """One transaction against DATABASE_URL without building the Flask app."""
    engine = build_engine(resolve_database_url(database_url), pool_size=1, max_overflow=0)
    s = make_sessionmaker(engine)()
    try:
        with transaction(s):
            yield s
    finally:
        s.close()
        engine.dispose()

"""
Release phase: migrate the schema to head, then seed the privilege catalog.

DATABASE_URL is mandatory here; production refuses SQLite.

Usage:
  python scripts/release.py           # upgrade + seed
  python scripts/release.py --check   # exit 1 when the schema is behind head
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.authz.db import build_engine


def _require_env(name: str) -> str:
    v = (os.environ.get(name) or "").strip()
    if not v:
        raise RuntimeError(f"Missing required environment variable {name}.")
    return v


def alembic_config(db_url: str) -> Config:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


def schema_revisions(cfg: Config, db_url: str) -> tuple[str | None, str | None]:
    """(revision the database is at, head revision of the migration scripts)."""
    head = ScriptDirectory.from_config(cfg).get_current_head()
    engine = build_engine(db_url, pool_size=1, max_overflow=0)
    try:
        with engine.connect() as conn:
            current = MigrationContext.configure(conn).get_current_revision()
    finally:
        engine.dispose()
    return current, head


def run_release() -> None:
    db_url = _require_env("DATABASE_URL")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")

    cfg = alembic_config(db_url)
    current, head = schema_revisions(cfg, db_url)
    print(f"=== authz release (ENV={env or '(unset)'}) ===", flush=True)
    print(f"Schema revision {current or '(empty)'} -> {head}", flush=True)

    if current != head:
        command.upgrade(cfg, "head")
        print("Migrations complete.", flush=True)

    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("=== authz release done ===", flush=True)


def check_only() -> int:
    db_url = _require_env("DATABASE_URL")
    current, head = schema_revisions(alembic_config(db_url), db_url)
    if current != head:
        print(f"Schema is behind: at {current or '(empty)'}, head is {head}", flush=True)
        return 1
    print(f"Schema is at head ({head})", flush=True)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--check", action="store_true", help="Only compare the schema revision with head")
    args = parser.parse_args()
    if args.check:
        sys.exit(check_only())
    run_release()


if __name__ == "__main__":
    main()

import pytest
from sqlalchemy import create_engine, inspect, select

from app.authz.constants import PrivilegeKey
from app.authz.models import Privilege
from scripts import release
from scripts._db_utils import resolve_database_url, script_session
from scripts.start import gunicorn_argv, parse_port


def test_parse_port():
    assert parse_port(None) == 8080
    assert parse_port(" 5000 ") == 5000
    with pytest.raises(ValueError):
        parse_port("70000")
    with pytest.raises(ValueError):
        parse_port("http")


def test_gunicorn_argv_targets_wsgi_app():
    argv = gunicorn_argv(9000, workers=3, timeout=30)
    assert argv[:2] == ["gunicorn", "app.wsgi:app"]
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:9000"
    assert argv[argv.index("--workers") + 1] == "3"


def test_resolve_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    assert resolve_database_url() == "sqlite:///authz.db"
    monkeypatch.setenv("DATABASE_URL", " sqlite:///other.db ")
    assert resolve_database_url() == "sqlite:///other.db"
    assert resolve_database_url("sqlite:///given.db") == "sqlite:///given.db"


def test_release_migrates_and_seeds(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path/'release.db'}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    monkeypatch.setenv("ENV", "test")

    assert release.check_only() == 1
    release.run_release()
    assert release.check_only() == 0

    engine = create_engine(db_url)
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert {"institutions", "institution_users", "roles", "privileges", "sync_events"} <= tables

    # a second release is a no-op
    release.run_release()
    with script_session(db_url) as s:
        keys = s.scalars(select(Privilege.key)).all()
    assert sorted(keys) == sorted(p.value for p in PrivilegeKey)


def test_release_refuses_sqlite_in_production(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///prod.db")
    monkeypatch.setenv("ENV", "production")
    with pytest.raises(RuntimeError):
        release.run_release()

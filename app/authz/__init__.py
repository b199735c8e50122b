import logging
import os

from dotenv import load_dotenv
from flask import Flask, g, request
from sqlalchemy import inspect as sa_inspect

from app.authz.audit import record_failure_event
from app.authz.auth import assign_request_id, load_current_user
from app.authz.config import load_config
from app.authz.db import init_db, teardown_db_session
from app.authz.errors import register_error_handlers
from app.authz.routes import bp as routes_bp
from app.authz.modules.departments.api import bp as departments_bp
from app.authz.modules.institution_users.api import bp as institution_users_bp
from app.authz.modules.institutions.api import bp as institutions_bp
from app.authz.modules.jwt_claims.api import bp as jwt_claims_bp
from app.authz.modules.roles.api import bp as roles_bp
from app.authz.modules.user_import.api import bp as user_import_bp
from app.authz.modules.vacations.api import bp as vacations_bp

EXPECTED_TABLES = (
    "institutions",
    "users",
    "institution_users",
    "roles",
    "privileges",
    "departments",
    "institution_vacations",
    "institution_user_vacations",
    "institution_vacation_exclusions",
    "audit_events",
    "sync_events",
)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.json.sort_keys = False

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not (app.config.get("KEYCLOAK_REALM_PUBLIC_KEY") or app.config.get("KEYCLOAK_JWKS_URL")):
            raise RuntimeError("KEYCLOAK_REALM_PUBLIC_KEY or KEYCLOAK_JWKS_URL is required in production.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    register_error_handlers(app)

    app.register_blueprint(routes_bp)
    # import routes are registered before the generic /institution-users/<id> views
    app.register_blueprint(user_import_bp, url_prefix="/api")
    app.register_blueprint(institution_users_bp, url_prefix="/api")
    app.register_blueprint(institutions_bp, url_prefix="/api")
    app.register_blueprint(departments_bp, url_prefix="/api")
    app.register_blueprint(roles_bp, url_prefix="/api")
    app.register_blueprint(vacations_bp, url_prefix="/api")
    app.register_blueprint(jwt_claims_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(("/health", "/healthz")):
            assign_request_id()
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)

    @app.after_request
    def _echo_request_id(response):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        if rid:
            response.headers["X-Request-Id"] = rid
        missing = getattr(g, "missing_privilege", None)
        if missing and response.status_code == 403:
            app.logger.warning("Forbidden: missing_privilege=%s request_id=%s", missing, rid)
        return response

    app.after_request(record_failure_event)
    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): log loudly when the schema is behind the code.
    def _run_schema_health_check() -> None:
        engine = app.extensions.get("sqlalchemy_engine")
        try:
            insp = sa_inspect(engine)
            missing = [t for t in EXPECTED_TABLES if not insp.has_table(t)]
        except Exception:
            app.logger.exception("Schema health check failed")
            return
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app

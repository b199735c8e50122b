import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    keycloak_realm_public_key: str
    keycloak_jwks_url: str
    keycloak_issuer: str
    keycloak_accepted_authorized_parties: str
    sso_internal_client_id: str
    jwt_leeway_seconds: int

    db_pool_size: int
    db_max_overflow: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///authz.db"),
        keycloak_realm_public_key=_getenv("KEYCLOAK_REALM_PUBLIC_KEY", ""),
        keycloak_jwks_url=_getenv("KEYCLOAK_JWKS_URL", ""),
        keycloak_issuer=_getenv("KEYCLOAK_ISSUER", ""),
        keycloak_accepted_authorized_parties=_getenv("KEYCLOAK_ACCEPTED_AUTHORIZED_PARTIES", ""),
        sso_internal_client_id=_getenv("SSO_INTERNAL_CLIENT_ID", ""),
        jwt_leeway_seconds=int(_getenv("JWT_LEEWAY_SECONDS", "5")),
        db_pool_size=int(_getenv("DB_POOL_SIZE", "5")),
        db_max_overflow=int(_getenv("DB_MAX_OVERFLOW", "10")),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "KEYCLOAK_REALM_PUBLIC_KEY": s.keycloak_realm_public_key,
        "KEYCLOAK_JWKS_URL": s.keycloak_jwks_url,
        "KEYCLOAK_ISSUER": s.keycloak_issuer,
        "KEYCLOAK_ACCEPTED_AUTHORIZED_PARTIES": [
            p.strip() for p in s.keycloak_accepted_authorized_parties.split(",") if p.strip()
        ],
        "SSO_INTERNAL_CLIENT_ID": s.sso_internal_client_id,
        "JWT_LEEWAY_SECONDS": s.jwt_leeway_seconds,
        "DB_POOL_SIZE": s.db_pool_size,
        "DB_MAX_OVERFLOW": s.db_max_overflow,
        # CSV imports are small; 10MB is plenty
        "MAX_CONTENT_LENGTH": 10 * 1024 * 1024,
    }

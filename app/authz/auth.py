"""
Bearer token authentication against the Keycloak realm.

Tokens are RS256 JWTs. The verification key is either the configured realm public key
or fetched (and cached) from the realm JWKS endpoint. Application claims live under
the "tolkevarav" claim.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any

import jwt
from flask import current_app, g, request
from jwt import PyJWKClient
from jwt.exceptions import InvalidTokenError, PyJWKClientError

from app.authz.errors import Unauthenticated

logger = logging.getLogger(__name__)

CUSTOM_CLAIMS_KEY = "tolkevarav"


class TokenValidationError(Exception):
    """Raised when a bearer token cannot be trusted."""


@dataclass(frozen=True)
class CurrentUser:
    personal_identification_code: str | None
    user_id: str | None
    institution_user_id: str | None
    institution_id: str | None
    forename: str | None
    surname: str | None
    privileges: frozenset[str] = field(default_factory=frozenset)
    azp: str | None = None

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "CurrentUser":
        custom = claims.get(CUSTOM_CLAIMS_KEY) or {}
        institution = custom.get("selectedInstitution") or {}
        return cls(
            personal_identification_code=custom.get("personalIdentificationCode"),
            user_id=_str_or_none(custom.get("userId")),
            institution_user_id=_str_or_none(custom.get("institutionUserId")),
            institution_id=_str_or_none(institution.get("id")),
            forename=custom.get("forename"),
            surname=custom.get("surname"),
            privileges=frozenset(str(p) for p in (custom.get("privileges") or [])),
            azp=claims.get("azp"),
        )


def _str_or_none(v: Any) -> str | None:
    return None if v is None else str(v)


def _pem_from_config(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("-----BEGIN"):
        return raw
    # Keycloak admin console shows the bare base64 body
    body = "\n".join(raw[i : i + 64] for i in range(0, len(raw), 64))
    return f"-----BEGIN PUBLIC KEY-----\n{body}\n-----END PUBLIC KEY-----"


def get_jwks_client() -> PyJWKClient:
    client = current_app.extensions.get("jwks_client")
    if client is None:
        jwks_url = current_app.config["KEYCLOAK_JWKS_URL"]
        logger.info("Initializing JWKS client for: %s", jwks_url)
        client = PyJWKClient(jwks_url, cache_keys=True, max_cached_keys=16, lifespan=3600)
        current_app.extensions["jwks_client"] = client
    return client


def _verification_key(token: str) -> Any:
    public_key = current_app.config.get("KEYCLOAK_REALM_PUBLIC_KEY")
    if public_key:
        return _pem_from_config(public_key)
    if not current_app.config.get("KEYCLOAK_JWKS_URL"):
        raise TokenValidationError("No token verification key configured")
    try:
        return get_jwks_client().get_signing_key_from_jwt(token).key
    except PyJWKClientError as e:
        raise TokenValidationError(f"Unable to resolve signing key: {e}") from e


def validate_jwt_token(token: str) -> dict[str, Any]:
    """
    Verify signature, expiry, issuer (when configured) and authorized party.
    Returns the decoded claims.
    """
    cfg = current_app.config
    issuer = cfg.get("KEYCLOAK_ISSUER") or None
    try:
        claims = jwt.decode(
            token,
            _verification_key(token),
            algorithms=["RS256"],
            issuer=issuer,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_iss": bool(issuer),
                "verify_aud": False,
            },
            leeway=cfg.get("JWT_LEEWAY_SECONDS", 5),
        )
    except InvalidTokenError as e:
        raise TokenValidationError(str(e)) from e

    accepted = list(cfg.get("KEYCLOAK_ACCEPTED_AUTHORIZED_PARTIES") or [])
    if accepted and cfg.get("SSO_INTERNAL_CLIENT_ID"):
        accepted.append(cfg["SSO_INTERNAL_CLIENT_ID"])
    if accepted and claims.get("azp") not in accepted:
        raise TokenValidationError("Token was issued to a client that is not accepted")
    return claims


def assign_request_id() -> str:
    """Takes X-Request-Id from the request or mints a fresh one."""
    g.request_id = (request.headers.get("X-Request-Id") or "").strip()[:64] or uuid.uuid4().hex
    return g.request_id


def load_current_user() -> None:
    """
    Assigns g.request_id and g.current_user from the bearer token.
    An invalid token leaves g.current_user as None; protected views answer 401.
    """
    assign_request_id()
    g.current_user = None
    g.jwt_claims = None

    header = request.headers.get("Authorization") or ""
    if not header.lower().startswith("bearer "):
        return
    token = header[7:].strip()
    if not token:
        return
    try:
        claims = validate_jwt_token(token)
    except TokenValidationError as e:
        logger.warning("Rejected bearer token (request_id=%s): %s", g.request_id, e)
        return
    g.jwt_claims = claims
    g.current_user = CurrentUser.from_claims(claims)


def current_user() -> CurrentUser:
    u: CurrentUser | None = getattr(g, "current_user", None)
    if u is None:
        raise Unauthenticated()
    return u


def require_auth(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        current_user()
        return fn(*args, **kwargs)

    return wrapped

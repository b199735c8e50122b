import time

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy import select

from app.authz import create_app
from app.authz.constants import PrivilegeKey
from app.authz.db import session_scope
from app.authz.models import Base, InstitutionUser, Role, User
from app.authz.modules.institutions.service import create_institution_with_main_user
from app.authz.modules.roles.service import ensure_privileges

ALL_PRIVILEGES = [p.value for p in PrivilegeKey]
MAIN_PIC = "39511267470"
OTHER_PIC = "37605030299"
THIRD_PIC = "49403136515"
FOURTH_PIC = "38001085718"

WEB_CLIENT = "web"
SSO_INTERNAL_CLIENT = "sso-internal"


@pytest.fixture(scope="session")
def rsa_keys():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


@pytest.fixture()
def app(tmp_path, monkeypatch, rsa_keys):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("KEYCLOAK_REALM_PUBLIC_KEY", rsa_keys[1])
    monkeypatch.setenv("KEYCLOAK_ACCEPTED_AUTHORIZED_PARTIES", WEB_CLIENT)
    monkeypatch.setenv("SSO_INTERNAL_CLIENT_ID", SSO_INTERNAL_CLIENT)
    for k in ("KEYCLOAK_JWKS_URL", "KEYCLOAK_ISSUER"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        ensure_privileges(s)

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_token(rsa_keys):
    def _make(custom=None, *, azp=WEB_CLIENT, expires_in=300, key=None):
        now = int(time.time())
        payload = {"iat": now, "exp": now + expires_in, "azp": azp}
        if custom is not None:
            payload["tolkevarav"] = custom
        return jwt.encode(payload, key or rsa_keys[0], algorithm="RS256")

    return _make


@pytest.fixture()
def tenant(app):
    """An institution whose main user holds the root role."""
    with session_scope(app) as s:
        iu = create_institution_with_main_user(
            s,
            name="Tõlkebüroo",
            personal_identification_code=MAIN_PIC,
            forename="Mari",
            surname="Maasikas",
        )
        return {
            "institution_id": iu.institution_id,
            "institution_user_id": iu.id,
            "user_id": iu.user_id,
            "root_role_id": iu.roles[0].id,
        }


@pytest.fixture()
def other_tenant(app):
    with session_scope(app) as s:
        iu = create_institution_with_main_user(
            s,
            name="Teine asutus",
            personal_identification_code=FOURTH_PIC,
            forename="Peeter",
            surname="Paan",
        )
        return {
            "institution_id": iu.institution_id,
            "institution_user_id": iu.id,
            "root_role_id": iu.roles[0].id,
        }


@pytest.fixture()
def add_role(app):
    def _add(institution_id, name="Tõlkija", privileges=(PrivilegeKey.VIEW_USER,)):
        from app.authz.models import Privilege

        with session_scope(app) as s:
            role = Role(institution_id=institution_id, name=name)
            role.privileges = list(
                s.scalars(select(Privilege).where(Privilege.key.in_([PrivilegeKey(p).value for p in privileges])))
            )
            s.add(role)
            s.flush()
            return role.id

    return _add


@pytest.fixture()
def add_member(app):
    def _add(institution_id, pic=OTHER_PIC, forename="Jaan", surname="Tamm", role_ids=(), **fields):
        with session_scope(app) as s:
            user = s.scalars(select(User).where(User.personal_identification_code == pic)).one_or_none()
            if user is None:
                user = User(personal_identification_code=pic, forename=forename, surname=surname)
                s.add(user)
                s.flush()
            iu = InstitutionUser(institution_id=institution_id, user_id=user.id, **fields)
            iu.roles = [s.get(Role, rid) for rid in role_ids]
            s.add(iu)
            s.flush()
            return iu.id

    return _add


@pytest.fixture()
def auth_headers(app, make_token):
    """Bearer headers for an institution user; privileges default to the full catalog."""

    def _headers(institution_user_id, privileges=None):
        with session_scope(app) as s:
            iu = s.get(InstitutionUser, institution_user_id)
            custom = {
                "personalIdentificationCode": iu.user.personal_identification_code,
                "userId": iu.user_id,
                "institutionUserId": iu.id,
                "forename": iu.user.forename,
                "surname": iu.user.surname,
                "selectedInstitution": {"id": iu.institution_id, "name": iu.institution.name},
                "privileges": ALL_PRIVILEGES if privileges is None else [PrivilegeKey(p).value for p in privileges],
            }
        return {"Authorization": f"Bearer {make_token(custom)}"}

    return _headers

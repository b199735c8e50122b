from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.authz.audit import record_modify
from app.authz.constants import (
    MAX_NAME_LENGTH,
    ROOT_ROLE_NAME,
    WORKTIME_FIELDS,
    AuditObjectType,
    InstitutionUserStatus,
    PrivilegeKey,
)
from app.authz.errors import ErrorBag, NotFound, field_error
from app.authz.models import Institution, InstitutionUser, Role, User
from app.authz.modules.institution_users.status import status_clause
from app.authz.modules.roles.service import ensure_privileges
from app.authz.rbac import ensure_privilege
from app.authz.utils import is_valid_email, is_valid_phone, normalize_text, worktime_from_payload

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.authz.auth import CurrentUser


def list_for_personal_identification_code(s: "Session", pic: str) -> list[Institution]:
    """Institutions where the person is an active member."""
    return list(
        s.scalars(
            select(Institution)
            .join(InstitutionUser, InstitutionUser.institution_id == Institution.id)
            .join(User, User.id == InstitutionUser.user_id)
            .where(
                User.personal_identification_code == pic,
                User.deleted_at.is_(None),
                InstitutionUser.deleted_at.is_(None),
                status_clause(InstitutionUserStatus.ACTIVE),
                Institution.deleted_at.is_(None),
            )
            .order_by(Institution.name.asc())
            .distinct()
        )
    )


def get_institution(s: "Session", institution_id: str) -> Institution:
    inst = s.get(Institution, institution_id)
    if inst is None or inst.is_deleted:
        raise NotFound()
    return inst


def _snapshot(inst: Institution) -> dict[str, Any]:
    out: dict[str, Any] = {f: getattr(inst, f) for f in ("name", "short_name", "email", "phone", "logo_url")}
    for f in WORKTIME_FIELDS:
        v = getattr(inst, f)
        out[f] = v.isoformat() if hasattr(v, "isoformat") else v
    return out


def update_institution(s: "Session", actor: "CurrentUser", inst: Institution, payload: dict[str, Any]) -> Institution:
    if any(f in payload for f in WORKTIME_FIELDS):
        ensure_privilege(actor, PrivilegeKey.EDIT_INSTITUTION_WORKTIME)

    errors = ErrorBag()
    changes: dict[str, Any] = {}
    if "name" in payload:
        name = normalize_text(payload["name"])
        if not name:
            errors.add("name", "The name field is required.")
        elif len(name) > MAX_NAME_LENGTH:
            errors.add("name", f"The name may not be greater than {MAX_NAME_LENGTH} characters.")
        changes["name"] = name
    if "short_name" in payload:
        short_name = normalize_text(payload["short_name"]) or None
        if short_name and len(short_name) > 3:
            errors.add("short_name", "The short_name may not be greater than 3 characters.")
        changes["short_name"] = short_name
    if "email" in payload:
        email = payload["email"]
        if email is not None and not is_valid_email(email):
            errors.add("email", "The email must be a valid email address.")
        changes["email"] = email
    if "phone" in payload:
        phone = payload["phone"]
        if phone is not None and not is_valid_phone(phone):
            errors.add("phone", "The phone format is invalid.")
        changes["phone"] = phone
    if "logo_url" in payload:
        logo_url = payload["logo_url"]
        if logo_url is not None and (not isinstance(logo_url, str) or len(logo_url) > 1024):
            errors.add("logo_url", "The logo_url must be a string of at most 1024 characters.")
        changes["logo_url"] = logo_url
    worktime = worktime_from_payload(payload, errors)
    errors.raise_if_any()

    pre = _snapshot(inst)
    for k, v in {**changes, **(worktime or {})}.items():
        setattr(inst, k, v)
    s.flush()
    record_modify(s, actor, AuditObjectType.INSTITUTION, inst.identity_subset(), pre, _snapshot(inst))
    return inst


def create_institution_with_main_user(
    s: "Session",
    *,
    name: str,
    personal_identification_code: str,
    forename: str,
    surname: str,
    short_name: str | None = None,
    email: str | None = None,
    phone: str | None = None,
) -> InstitutionUser:
    """
    Bootstraps a tenant: the institution, its root role holding every privilege and the
    main user as the sole root holder.
    """
    name = normalize_text(name)
    if not name:
        raise field_error("name", "The name field is required.")

    inst = Institution(name=name, short_name=short_name, email=email, phone=phone)
    s.add(inst)
    s.flush()

    root = Role(institution_id=inst.id, name=ROOT_ROLE_NAME, is_root=True)
    root.privileges = ensure_privileges(s)
    s.add(root)

    user = s.scalars(
        select(User).where(User.personal_identification_code == personal_identification_code)
    ).one_or_none()
    if user is None:
        user = User(personal_identification_code=personal_identification_code, forename=forename, surname=surname)
        s.add(user)
        s.flush()

    iu = InstitutionUser(institution_id=inst.id, user_id=user.id, email=email, phone=phone)
    iu.roles = [root]
    s.add(iu)
    s.flush()
    return iu

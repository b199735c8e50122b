from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select

from app.authz import events
from app.authz.audit import record_create, record_modify, record_remove
from app.authz.constants import MAX_NAME_LENGTH, AuditObjectType, PrivilegeKey
from app.authz.errors import ErrorBag, Forbidden, NotFound, field_error
from app.authz.models import InstitutionUserRole, Privilege, PrivilegeRole, Role
from app.authz.utils import is_uuid, normalize_text

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.authz.auth import CurrentUser


ROOT_ROLE_MESSAGE = "Can't modify or delete root role"
NAME_TAKEN_MESSAGE = "Institution already has a role with the same name."


def ensure_privileges(s: "Session") -> list[Privilege]:
    """
    Idempotently seeds the privilege catalog and gives every root role the full catalog.
    Returns every privilege ordered by key.
    """
    existing = {p.key for p in s.scalars(select(Privilege))}
    for key in PrivilegeKey:
        if key.value not in existing:
            s.add(Privilege(key=key.value))
    s.flush()

    privileges = list_privileges(s)
    root_roles = list(s.scalars(select(Role).where(Role.is_root.is_(True), Role.deleted_at.is_(None))))
    for role in root_roles:
        held = set(role.privilege_keys)
        missing = [p for p in privileges if p.key not in held]
        if missing:
            role.privileges.extend(missing)
            s.flush()
            events.institution_user_saved(s, events.role_members(s, role.id))
    return privileges


def list_privileges(s: "Session") -> list[Privilege]:
    return list(s.scalars(select(Privilege).order_by(Privilege.key.asc())))


def list_roles(s: "Session", institution_id: str) -> list[Role]:
    return list(
        s.scalars(
            select(Role)
            .where(Role.institution_id == institution_id, Role.deleted_at.is_(None))
            .order_by(Role.name.asc())
        )
    )


def get_role(s: "Session", institution_id: str, role_id: Any) -> Role:
    role = s.get(Role, role_id) if is_uuid(role_id) else None
    if role is None or role.is_deleted or role.institution_id != institution_id:
        raise NotFound()
    return role


def _validate_name(s: "Session", institution_id: str, raw: Any, exclude_id: str | None = None) -> str:
    name = normalize_text(raw)
    if not name:
        raise field_error("name", "The name field is required.")
    if len(name) > MAX_NAME_LENGTH:
        raise field_error("name", f"The name may not be greater than {MAX_NAME_LENGTH} characters.")
    q = select(func.count()).select_from(Role).where(
        Role.institution_id == institution_id,
        Role.deleted_at.is_(None),
        Role.name == name,
    )
    if exclude_id:
        q = q.where(Role.id != exclude_id)
    if s.scalar(q):
        raise field_error("name", NAME_TAKEN_MESSAGE)
    return name


def _resolve_privileges(s: "Session", raw: Any) -> list[Privilege]:
    """Accepts ["KEY", ...] or [{"key": "KEY"}, ...]."""
    if not isinstance(raw, list) or not raw:
        raise field_error("privileges", "The privileges field must be a non-empty array.")
    keys: list[str] = []
    errors = ErrorBag()
    for i, item in enumerate(raw):
        key = item.get("key") if isinstance(item, dict) else item
        try:
            keys.append(PrivilegeKey(key).value)
        except ValueError:
            errors.add(f"privileges.{i}", f"The selected privileges.{i} is invalid.")
    errors.raise_if_any()
    keys = list(dict.fromkeys(keys))
    found = {p.key: p for p in s.scalars(select(Privilege).where(Privilege.key.in_(keys)))}
    missing = [k for k in keys if k not in found]
    if missing:
        raise field_error("privileges", f"Unknown privileges: {', '.join(missing)}.")
    return [found[k] for k in keys]


def _snapshot(role: Role) -> dict[str, Any]:
    return {"name": role.name, "privileges": role.privilege_keys}


def create_role(s: "Session", actor: "CurrentUser", payload: dict[str, Any], *, is_root: bool = False) -> Role:
    institution_id = payload.get("institution_id")
    if not institution_id:
        raise field_error("institution_id", "The institution_id field is required.")
    if actor is not None and institution_id != actor.institution_id:
        raise Forbidden()
    name = _validate_name(s, institution_id, payload.get("name"))
    privileges = _resolve_privileges(s, payload.get("privileges"))

    role = Role(institution_id=institution_id, name=name, is_root=is_root)
    role.privileges = privileges
    s.add(role)
    s.flush()
    record_create(s, actor, AuditObjectType.ROLE, {**role.identity_subset(), **_snapshot(role)})
    return role


def update_role(s: "Session", actor: "CurrentUser", role: Role, payload: dict[str, Any]) -> Role:
    if role.is_root and ("privileges" in payload or payload.get("is_root") is False):
        raise field_error("role", ROOT_ROLE_MESSAGE)

    pre = _snapshot(role)
    if "name" in payload:
        role.name = _validate_name(s, role.institution_id, payload.get("name"), exclude_id=role.id)
    if "privileges" in payload:
        role.privileges = _resolve_privileges(s, payload.get("privileges"))
    s.flush()

    post = _snapshot(role)
    record_modify(s, actor, AuditObjectType.ROLE, role.identity_subset(), pre, post)
    if pre != post:
        events.institution_user_saved(s, events.role_members(s, role.id))
    return role


def delete_role(s: "Session", actor: "CurrentUser", role: Role) -> None:
    if role.is_root:
        raise field_error("role", ROOT_ROLE_MESSAGE)

    members = events.role_members(s, role.id)
    s.execute(delete(InstitutionUserRole).where(InstitutionUserRole.role_id == role.id))
    s.execute(delete(PrivilegeRole).where(PrivilegeRole.role_id == role.id))
    role.soft_delete()
    s.flush()
    s.expire(role, ["privileges", "institution_users"])
    record_remove(s, actor, AuditObjectType.ROLE, role.identity_subset())
    events.institution_user_saved(s, members)

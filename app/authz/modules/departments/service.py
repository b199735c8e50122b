from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from app.authz import events
from app.authz.audit import record_create, record_modify, record_remove
from app.authz.constants import MAX_NAME_LENGTH, AuditObjectType
from app.authz.errors import ErrorBag, NotFound, ValidationFailed, field_error
from app.authz.models import InstitutionUser
from app.authz.modules.departments.models import Department
from app.authz.utils import is_uuid, normalize_text

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.authz.auth import CurrentUser


NAME_TAKEN_MESSAGE = "Institution already has a department with the same name."


def list_departments(s: "Session", institution_id: str) -> list[Department]:
    return list(
        s.scalars(
            select(Department)
            .where(Department.institution_id == institution_id, Department.deleted_at.is_(None))
            .order_by(Department.name.asc())
        )
    )


def get_department(s: "Session", institution_id: str, department_id: Any) -> Department:
    dep = s.get(Department, department_id) if is_uuid(department_id) else None
    if dep is None or dep.is_deleted or dep.institution_id != institution_id:
        raise NotFound()
    return dep


def validate_name(raw: Any, field: str = "name") -> str:
    name = normalize_text(raw)
    if not name:
        raise field_error(field, f"The {field} field is required.")
    if len(name) > MAX_NAME_LENGTH:
        raise field_error(field, f"The {field} may not be greater than {MAX_NAME_LENGTH} characters.")
    return name


def name_taken(s: "Session", institution_id: str, name: str, exclude_id: str | None = None) -> bool:
    q = select(func.count()).select_from(Department).where(
        Department.institution_id == institution_id,
        Department.deleted_at.is_(None),
        Department.name == name,
    )
    if exclude_id:
        q = q.where(Department.id != exclude_id)
    return bool(s.scalar(q))


def _member_ids(s: "Session", department_id: str) -> list[str]:
    return list(
        s.scalars(
            select(InstitutionUser.id).where(
                InstitutionUser.department_id == department_id,
                InstitutionUser.deleted_at.is_(None),
            )
        )
    )


def create_department(s: "Session", actor: "CurrentUser", institution_id: str, payload: dict[str, Any]) -> Department:
    name = validate_name(payload.get("name"))
    if name_taken(s, institution_id, name):
        raise field_error("name", NAME_TAKEN_MESSAGE)

    dep = Department(institution_id=institution_id, name=name)
    s.add(dep)
    s.flush()
    record_create(s, actor, AuditObjectType.DEPARTMENT, dep.identity_subset())
    return dep


def rename_department(s: "Session", actor: "CurrentUser", dep: Department, payload: dict[str, Any]) -> Department:
    name = validate_name(payload.get("name"))
    if name_taken(s, dep.institution_id, name, exclude_id=dep.id):
        raise field_error("name", NAME_TAKEN_MESSAGE)
    if name == dep.name:
        return dep

    pre = {"name": dep.name}
    dep.name = name
    s.flush()
    record_modify(s, actor, AuditObjectType.DEPARTMENT, dep.identity_subset(), pre, {"name": dep.name})
    events.institution_user_saved(s, _member_ids(s, dep.id))
    return dep


def delete_department(s: "Session", actor: "CurrentUser", dep: Department) -> None:
    """Soft delete; members stay in the institution without a department."""
    members = _member_ids(s, dep.id)
    for iu in s.scalars(select(InstitutionUser).where(InstitutionUser.id.in_(members))):
        iu.department_id = None
    dep.soft_delete()
    s.flush()
    record_remove(s, actor, AuditObjectType.DEPARTMENT, dep.identity_subset())
    events.institution_user_saved(s, members)


def bulk_update(s: "Session", actor: "CurrentUser", institution_id: str, payload: dict[str, Any]) -> list[Department]:
    """
    Replaces the department set: listed ids are renamed, items without an id are created
    and existing departments missing from the list are deleted.
    """
    items = payload.get("data")
    if not isinstance(items, list):
        raise field_error("data", "The data field must be an array.")

    existing = {d.id: d for d in list_departments(s, institution_id)}
    errors = ErrorBag()
    seen_names: set[str] = set()
    parsed: list[tuple[str | None, str]] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            errors.add(f"data.{i}", f"The data.{i} must be an object.")
            continue
        dep_id = item.get("id")
        if dep_id is not None and not is_uuid(dep_id):
            errors.add(f"data.{i}.id", f"The data.{i}.id must be a valid UUID.")
            dep_id = None
        elif dep_id is not None and dep_id not in existing:
            errors.add(f"data.{i}.id", f"The selected data.{i}.id is invalid.")
        try:
            name = validate_name(item.get("name"), f"data.{i}.name")
        except ValidationFailed as e:
            for field, messages in (e.errors or {}).items():
                for m in messages:
                    errors.add(field, m)
            continue
        if name in seen_names:
            errors.add(f"data.{i}.name", NAME_TAKEN_MESSAGE)
        seen_names.add(name)
        parsed.append((dep_id, name))
    errors.raise_if_any()

    kept_ids = {dep_id for dep_id, _ in parsed if dep_id}
    for dep_id, dep in existing.items():
        if dep_id not in kept_ids:
            delete_department(s, actor, dep)
    for dep_id, name in parsed:
        if dep_id:
            dep = existing[dep_id]
            if dep.name != name:
                pre = {"name": dep.name}
                dep.name = name
                s.flush()
                record_modify(s, actor, AuditObjectType.DEPARTMENT, dep.identity_subset(), pre, {"name": name})
                events.institution_user_saved(s, _member_ids(s, dep.id))
        else:
            dep = Department(institution_id=institution_id, name=name)
            s.add(dep)
            s.flush()
            record_create(s, actor, AuditObjectType.DEPARTMENT, dep.identity_subset())
    s.flush()
    return list_departments(s, institution_id)

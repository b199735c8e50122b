from __future__ import annotations

import csv
import io
from datetime import date
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, exists, func, select

from app.authz import events
from app.authz.audit import record_modify
from app.authz.constants import (
    ALLOWED_PER_PAGE,
    AuditObjectType,
    InstitutionUserStatus,
    PrivilegeKey,
    WORKTIME_FIELDS,
)
from app.authz.dates import add_years, now_utc, parse_iso_date, today_in_estonia
from app.authz.errors import ErrorBag, Forbidden, NotFound, field_error
from app.authz.models import InstitutionUser, InstitutionUserRole, Role, User
from app.authz.modules.departments.models import Department
from app.authz.modules.institution_users.status import membership_query, status_clause
from app.authz.rbac import ensure_privilege
from app.authz.utils import is_uuid, is_valid_email, is_valid_phone, normalize_text, parse_int, worktime_from_payload

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.authz.auth import CurrentUser


EXPORT_HEADERS = ["Isikukood", "Nimi", "Meiliaadress", "Telefoninumber", "Üksus", "Roll"]
SORTABLE_COLUMNS = ("name", "created_at")

ROOT_HOLDER_MESSAGE = "Can't remove last user with root role"


# ---------- Lookups ----------

def get_institution_user(s: "Session", institution_id: str, institution_user_id: Any) -> InstitutionUser:
    """
    Finds a member of the institution regardless of status. Soft-deleted memberships
    and users, other tenants' rows and malformed ids all answer 404.
    """
    if not is_uuid(institution_user_id):
        raise NotFound()
    iu = s.scalars(
        select(InstitutionUser)
        .join(User, User.id == InstitutionUser.user_id)
        .where(
            InstitutionUser.id == institution_user_id,
            InstitutionUser.institution_id == institution_id,
            InstitutionUser.deleted_at.is_(None),
            User.deleted_at.is_(None),
        )
    ).one_or_none()
    if iu is None:
        raise NotFound()
    return iu


def load_roles(s: "Session", institution_id: str, role_ids: Any, field: str = "roles") -> list[Role]:
    """Resolves role ids of the same institution; unknown ids are validation errors."""
    errors = ErrorBag()
    if not isinstance(role_ids, list) or not role_ids:
        raise field_error(field, f"The {field} field must be a non-empty array.")
    for i, rid in enumerate(role_ids):
        if not is_uuid(rid):
            errors.add(f"{field}.{i}", f"The {field}.{i} must be a valid UUID.")
    errors.raise_if_any()

    wanted = list(dict.fromkeys(role_ids))
    roles = {
        r.id: r
        for r in s.scalars(
            select(Role).where(
                Role.id.in_(wanted),
                Role.institution_id == institution_id,
                Role.deleted_at.is_(None),
            )
        )
    }
    for i, rid in enumerate(role_ids):
        if rid not in roles:
            errors.add(f"{field}.{i}", f"The selected {field}.{i} is invalid.")
    errors.raise_if_any()
    return [roles[rid] for rid in wanted]


def is_only_user_with_root_role(s: "Session", iu: InstitutionUser) -> bool:
    for role in iu.roles:
        if not role.is_root:
            continue
        holders = s.scalar(
            select(func.count())
            .select_from(InstitutionUserRole)
            .join(InstitutionUser, InstitutionUser.id == InstitutionUserRole.institution_user_id)
            .where(InstitutionUserRole.role_id == role.id, InstitutionUser.deleted_at.is_(None))
        )
        if holders == 1:
            return True
    return False


def _role_ids(iu: InstitutionUser) -> list[str]:
    return sorted(r.id for r in iu.roles)


def sync_roles(s: "Session", iu: InstitutionUser, roles: list[Role]) -> None:
    """Replaces the role set; the sole holder of the root role keeps it."""
    new_ids = {r.id for r in roles}
    dropped_root = [r for r in iu.roles if r.is_root and r.id not in new_ids]
    if dropped_root and is_only_user_with_root_role(s, iu):
        raise field_error("roles", ROOT_HOLDER_MESSAGE)
    iu.roles = list(roles)


def _lifecycle_snapshot(iu: InstitutionUser) -> dict[str, Any]:
    return {
        "deactivation_date": iu.deactivation_date.isoformat() if iu.deactivation_date else None,
        "archived_at": iu.archived_at.isoformat() if iu.archived_at else None,
        "roles": _role_ids(iu),
    }


# ---------- Lifecycle ----------

def parse_deactivation_date(payload: dict[str, Any]) -> date | None:
    if "deactivation_date" not in payload:
        raise field_error("deactivation_date", "The deactivation_date field must be present.")
    raw = payload["deactivation_date"]
    if raw is None:
        return None
    d = parse_iso_date(raw)
    if d is None:
        raise field_error("deactivation_date", "The deactivation_date does not match the format Y-m-d.")
    today = today_in_estonia()
    if d < today:
        raise field_error("deactivation_date", "The deactivation_date must be a date after or equal to today.")
    if d > add_years(today, 1):
        raise field_error("deactivation_date", "The deactivation_date must be a date before or equal to a year from today.")
    return d


def deactivate(s: "Session", actor: "CurrentUser", iu: InstitutionUser, deactivation_date: date | None) -> InstitutionUser:
    """
    Schedules (future date), performs (today) or cancels (None) deactivation.
    Roles are detached only once the date has arrived.
    """
    if iu.status != InstitutionUserStatus.ACTIVE:
        raise field_error("institution_user_id", "Only active institution users can be deactivated.")
    if deactivation_date is not None and is_only_user_with_root_role(s, iu):
        raise field_error("institution_user_id", "The only user with the root role can't be deactivated.")

    pre = _lifecycle_snapshot(iu)
    iu.deactivation_date = deactivation_date
    if deactivation_date is not None and deactivation_date <= today_in_estonia():
        iu.roles = []
    s.flush()

    record_modify(s, actor, AuditObjectType.INSTITUTION_USER, iu.identity_subset(), pre, _lifecycle_snapshot(iu))
    events.institution_user_saved(s, [iu.id])
    return iu


def activate(s: "Session", actor: "CurrentUser", iu: InstitutionUser, roles: list[Role], *, notify_user: bool) -> InstitutionUser:
    if iu.status != InstitutionUserStatus.DEACTIVATED:
        raise field_error("institution_user_id", "Only deactivated institution users can be activated.")

    pre = _lifecycle_snapshot(iu)
    iu.deactivation_date = None
    iu.roles = list(roles)
    s.flush()

    record_modify(s, actor, AuditObjectType.INSTITUTION_USER, iu.identity_subset(), pre, _lifecycle_snapshot(iu))
    events.institution_user_saved(s, [iu.id])
    if notify_user:
        events.institution_user_activated(s, iu, notify_user=True)
    return iu


def archive(s: "Session", actor: "CurrentUser", iu: InstitutionUser) -> InstitutionUser:
    if iu.status == InstitutionUserStatus.ARCHIVED:
        raise field_error("institution_user_id", "The institution user is already archived.")
    if is_only_user_with_root_role(s, iu):
        raise field_error("institution_user_id", "The only user with the root role can't be archived.")

    pre = _lifecycle_snapshot(iu)
    iu.archived_at = now_utc()
    iu.roles = []
    s.flush()

    record_modify(s, actor, AuditObjectType.INSTITUTION_USER, iu.identity_subset(), pre, _lifecycle_snapshot(iu))
    events.institution_user_saved(s, [iu.id])
    return iu


def detach_roles_from_deactivated_users(s: "Session", today: date | None = None) -> list[str]:
    """
    Scheduled counterpart of deactivate(): users whose deactivation date has arrived since
    the request lose their roles. Returns the affected institution user ids.
    """
    today = today or today_in_estonia()
    ids = list(
        s.scalars(
            select(InstitutionUser.id).where(
                status_clause(InstitutionUserStatus.DEACTIVATED, today),
                InstitutionUser.deleted_at.is_(None),
                exists().where(InstitutionUserRole.institution_user_id == InstitutionUser.id),
            )
        )
    )
    if ids:
        s.execute(delete(InstitutionUserRole).where(InstitutionUserRole.institution_user_id.in_(ids)))
        events.institution_user_saved(s, ids)
    return ids


# ---------- Updates ----------

def _snapshot(iu: InstitutionUser) -> dict[str, Any]:
    out: dict[str, Any] = {
        "email": iu.email,
        "phone": iu.phone,
        "department_id": iu.department_id,
        "roles": _role_ids(iu),
        "user": {"forename": iu.user.forename, "surname": iu.user.surname},
    }
    for f in WORKTIME_FIELDS:
        v = getattr(iu, f)
        out[f] = v.isoformat() if hasattr(v, "isoformat") else v
    return out


def _apply_contact_fields(iu: InstitutionUser, payload: dict[str, Any], errors: ErrorBag) -> None:
    if "email" in payload:
        email = payload["email"]
        if email is not None and not is_valid_email(email):
            errors.add("email", "The email must be a valid email address.")
        else:
            iu.email = email
    if "phone" in payload:
        phone = payload["phone"]
        if phone is not None and not is_valid_phone(phone):
            errors.add("phone", "The phone format is invalid.")
        else:
            iu.phone = phone
    if "user" in payload:
        user_payload = payload["user"]
        if not isinstance(user_payload, dict):
            errors.add("user", "The user must be an object.")
            return
        for key in ("forename", "surname"):
            if key not in user_payload:
                continue
            value = normalize_text(user_payload[key])
            if not value:
                errors.add(f"user.{key}", f"The user.{key} field is required.")
            elif len(value) > 255:
                errors.add(f"user.{key}", f"The user.{key} may not be greater than 255 characters.")
            else:
                setattr(iu.user, key, value)


def update_institution_user(s: "Session", actor: "CurrentUser", iu: InstitutionUser, payload: dict[str, Any]) -> InstitutionUser:
    """
    EDIT_USER covers contact/name/roles/department, EDIT_USER_WORKTIME covers worktime.
    """
    touches_worktime = any(f in payload for f in WORKTIME_FIELDS)
    touches_other = any(k in payload for k in ("email", "phone", "user", "roles", "department_id"))
    if touches_other or not touches_worktime:
        ensure_privilege(actor, PrivilegeKey.EDIT_USER)
    if touches_worktime:
        ensure_privilege(actor, PrivilegeKey.EDIT_USER_WORKTIME)

    pre = _snapshot(iu)
    errors = ErrorBag()
    _apply_contact_fields(iu, payload, errors)

    if "department_id" in payload:
        dep_id = payload["department_id"]
        if dep_id is None:
            iu.department = None
        else:
            dep = s.get(Department, dep_id) if is_uuid(dep_id) else None
            if dep is None or dep.deleted_at is not None or dep.institution_id != iu.institution_id:
                errors.add("department_id", "The selected department_id is invalid.")
            else:
                iu.department = dep

    worktime = worktime_from_payload(payload, errors)
    errors.raise_if_any()
    if worktime is not None:
        for k, v in worktime.items():
            setattr(iu, k, v)

    if "roles" in payload:
        if iu.status != InstitutionUserStatus.ACTIVE:
            raise field_error("roles", "Roles can only be changed for active institution users.")
        sync_roles(s, iu, load_roles(s, iu.institution_id, payload["roles"]))

    iu.updated_at = now_utc()
    s.flush()
    record_modify(s, actor, AuditObjectType.INSTITUTION_USER, iu.identity_subset(), pre, _snapshot(iu))
    events.institution_user_saved(s, [iu.id])
    return iu


def update_current_institution_user(s: "Session", actor: "CurrentUser", iu: InstitutionUser, payload: dict[str, Any]) -> InstitutionUser:
    allowed = {k: payload[k] for k in ("email", "phone", "user") if k in payload}
    pre = _snapshot(iu)
    errors = ErrorBag()
    _apply_contact_fields(iu, allowed, errors)
    errors.raise_if_any()

    iu.updated_at = now_utc()
    s.flush()
    record_modify(s, actor, AuditObjectType.INSTITUTION_USER, iu.identity_subset(), pre, _snapshot(iu))
    events.institution_user_saved(s, [iu.id])
    return iu


# ---------- Listing / export ----------

def _getlist(args: Any, name: str) -> list[str]:
    return [v for v in (args.getlist(f"{name}[]") or args.getlist(name)) if v]


def parse_list_filters(args: Any) -> dict[str, Any]:
    """Query-string filters of the institution user list. Raises ValidationFailed."""
    errors = ErrorBag()
    per_page = parse_int(args.get("per_page")) or ALLOWED_PER_PAGE[0]
    if per_page not in ALLOWED_PER_PAGE:
        errors.add("per_page", f"The per_page must be one of: {', '.join(map(str, ALLOWED_PER_PAGE))}.")
    page = parse_int(args.get("page")) or 1
    if page < 1:
        errors.add("page", "The page must be at least 1.")

    statuses: list[InstitutionUserStatus] = []
    for raw in _getlist(args, "statuses"):
        try:
            statuses.append(InstitutionUserStatus(raw))
        except ValueError:
            errors.add("statuses", f"The selected status {raw} is invalid.")

    roles = _getlist(args, "roles")
    departments = _getlist(args, "departments")
    for name, values in (("roles", roles), ("departments", departments)):
        if any(not is_uuid(v) for v in values):
            errors.add(name, f"The {name} must contain valid UUIDs.")

    sort_by = args.get("sort_by") or None
    if sort_by is not None and sort_by not in SORTABLE_COLUMNS:
        errors.add("sort_by", "The selected sort_by is invalid.")
    sort_order = (args.get("sort_order") or "asc").lower()
    if sort_order not in ("asc", "desc"):
        errors.add("sort_order", "The selected sort_order is invalid.")

    errors.raise_if_any()
    return {
        "per_page": per_page,
        "page": page,
        "statuses": statuses or None,
        "roles": roles,
        "departments": departments,
        "fullname": normalize_text(args.get("fullname")),
        "sort_by": sort_by,
        "sort_order": sort_order,
    }


def list_institution_users(s: "Session", institution_id: str, filters: dict[str, Any]) -> tuple[list[InstitutionUser], int]:
    q = membership_query(institution_id, filters["statuses"])

    if filters["roles"]:
        q = q.where(
            exists().where(
                InstitutionUserRole.institution_user_id == InstitutionUser.id,
                InstitutionUserRole.role_id.in_(filters["roles"]),
            )
        )
    if filters["departments"]:
        q = q.where(InstitutionUser.department_id.in_(filters["departments"]))
    if filters["fullname"]:
        q = q.where((User.forename + " " + User.surname).ilike(f"%{filters['fullname']}%"))

    total = s.scalar(select(func.count()).select_from(q.subquery())) or 0

    desc = filters["sort_order"] == "desc"
    if filters["sort_by"] == "name":
        cols = [User.forename, User.surname]
    else:
        cols = [InstitutionUser.created_at]
    order = [c.desc() if desc else c.asc() for c in cols] + [InstitutionUser.id.asc()]

    per_page, page = filters["per_page"], filters["page"]
    items = list(s.scalars(q.order_by(*order).limit(per_page).offset((page - 1) * per_page)))
    return items, total


def export_csv(s: "Session", institution_id: str) -> bytes:
    members = s.scalars(
        membership_query(institution_id).order_by(User.forename.asc(), User.surname.asc())
    ).all()
    out = io.StringIO()
    w = csv.writer(out, delimiter=";", lineterminator="\n")
    w.writerow(EXPORT_HEADERS)
    for iu in members:
        w.writerow(
            [
                iu.user.personal_identification_code,
                iu.user.full_name,
                iu.email or "",
                iu.phone or "",
                iu.department.name if iu.department else "",
                ", ".join(r.name for r in sorted(iu.roles, key=lambda r: r.name)),
            ]
        )
    return out.getvalue().encode("utf-8")


def ensure_can_view(actor: "CurrentUser", iu: InstitutionUser) -> None:
    if actor.institution_user_id == iu.id:
        return
    if PrivilegeKey.VIEW_USER.value not in actor.privileges:
        raise Forbidden()

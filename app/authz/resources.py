"""
JSON shapes returned by the API.
"""
from __future__ import annotations

from datetime import date, datetime, time
from typing import TYPE_CHECKING, Any

from app.authz.constants import WORKTIME_FIELDS

if TYPE_CHECKING:
    from app.authz.models import Institution, InstitutionUser, Privilege, Role, User
    from app.authz.modules.departments.models import Department
    from app.authz.modules.vacations.models import InstitutionUserVacation, InstitutionVacation


def _iso(v: datetime | date | time | None) -> str | None:
    if v is None:
        return None
    if isinstance(v, datetime):
        return v.isoformat(timespec="microseconds") + "Z"
    return v.isoformat()


def _timestamps(obj: Any) -> dict[str, Any]:
    return {"created_at": _iso(obj.created_at), "updated_at": _iso(obj.updated_at)}


def _worktime(obj: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for f in WORKTIME_FIELDS:
        v = getattr(obj, f)
        out[f] = v.strftime("%H:%M:%S") if isinstance(v, time) else v
    return out


def user_resource(u: "User") -> dict[str, Any]:
    return {
        "id": u.id,
        "personal_identification_code": u.personal_identification_code,
        "forename": u.forename,
        "surname": u.surname,
        **_timestamps(u),
    }


def institution_resource(inst: "Institution") -> dict[str, Any]:
    return {
        "id": inst.id,
        "name": inst.name,
        "short_name": inst.short_name,
        "email": inst.email,
        "phone": inst.phone,
        "logo_url": inst.logo_url,
        **_worktime(inst),
        **_timestamps(inst),
    }


def department_resource(d: "Department | None") -> dict[str, Any] | None:
    if d is None:
        return None
    return {"id": d.id, "institution_id": d.institution_id, "name": d.name, **_timestamps(d)}


def privilege_resource(p: "Privilege") -> dict[str, Any]:
    return {"key": p.key}


def role_resource(r: "Role") -> dict[str, Any]:
    return {
        "id": r.id,
        "name": r.name,
        "institution_id": r.institution_id,
        "is_root": r.is_root,
        "privileges": [{"key": k} for k in r.privilege_keys],
        **_timestamps(r),
    }


def institution_user_resource(iu: "InstitutionUser") -> dict[str, Any]:
    return {
        "id": iu.id,
        "email": iu.email,
        "phone": iu.phone,
        "status": iu.status.value,
        "archived_at": _iso(iu.archived_at),
        "deactivation_date": _iso(iu.deactivation_date),
        "user": user_resource(iu.user),
        "institution": institution_resource(iu.institution),
        "department": department_resource(iu.department),
        "roles": [role_resource(r) for r in sorted(iu.roles, key=lambda r: r.name)],
        **_worktime(iu),
        **_timestamps(iu),
    }


def institution_vacation_resource(v: "InstitutionVacation") -> dict[str, Any]:
    return {
        "id": v.id,
        "institution_id": v.institution_id,
        "start_date": _iso(v.start_date),
        "end_date": _iso(v.end_date),
        **_timestamps(v),
    }


def institution_user_vacation_resource(v: "InstitutionUserVacation") -> dict[str, Any]:
    return {
        "id": v.id,
        "institution_user_id": v.institution_user_id,
        "start_date": _iso(v.start_date),
        "end_date": _iso(v.end_date),
        **_timestamps(v),
    }


def paginated(items: list[dict[str, Any]], *, page: int, per_page: int, total: int, path: str) -> dict[str, Any]:
    last_page = max(1, -(-total // per_page))
    return {
        "data": items,
        "meta": {
            "current_page": page,
            "per_page": per_page,
            "total": total,
            "last_page": last_page,
        },
        "links": {
            "first": f"{path}?page=1",
            "last": f"{path}?page={last_page}",
            "prev": f"{path}?page={page - 1}" if page > 1 else None,
            "next": f"{path}?page={page + 1}" if page < last_page else None,
        },
    }

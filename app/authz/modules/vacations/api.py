from __future__ import annotations

from typing import Any

from flask import Blueprint, g, jsonify, request

from app.authz.audit import audit_failures
from app.authz.auth import current_user, require_auth
from app.authz.constants import AuditEventType, AuditObjectType, PrivilegeKey
from app.authz.db import db_session, transaction
from app.authz.errors import Forbidden, field_error
from app.authz.models import Institution, InstitutionUser
from app.authz.modules.institution_users.service import get_institution_user
from app.authz.modules.institutions.service import get_institution
from app.authz.modules.vacations import service
from app.authz.rbac import require_privilege, selected_institution_id, user_has_privilege
from app.authz.resources import institution_user_vacation_resource, institution_vacation_resource
from app.authz.utils import json_body

bp = Blueprint("vacations", __name__)


def _selected_institution_identity(s, view_args: dict[str, Any]) -> dict[str, Any] | None:
    u = getattr(g, "current_user", None)
    inst = s.get(Institution, u.institution_id) if u and u.institution_id else None
    return inst.identity_subset() if inst else None


def _institution_user_identity(s, view_args: dict[str, Any]) -> dict[str, Any] | None:
    body = request.get_json(silent=True)
    iu_id = body.get("institution_user_id") if isinstance(body, dict) else None
    iu = s.get(InstitutionUser, iu_id) if isinstance(iu_id, str) else None
    return iu.identity_subset() if iu else None


def _ensure_can_manage(user, iu: InstitutionUser) -> None:
    if iu.id == user.institution_user_id:
        return
    if not user_has_privilege(user, PrivilegeKey.EDIT_USER_VACATION):
        raise Forbidden()


@bp.get("/institution-vacations")
@require_auth
def institution_vacations_list():
    s = db_session()
    institution_id = selected_institution_id(current_user())
    vacations = service.active_institution_vacations(s, institution_id)
    return jsonify({"data": [institution_vacation_resource(v) for v in vacations]})


@bp.post("/institution-vacations/sync")
@audit_failures(AuditEventType.MODIFY_OBJECT, AuditObjectType.INSTITUTION, identity=_selected_institution_identity)
@require_privilege(PrivilegeKey.EDIT_INSTITUTION_WORKTIME)
def institution_vacations_sync():
    s = db_session()
    user = current_user()
    payload = json_body()
    with transaction(s):
        inst = get_institution(s, selected_institution_id(user))
        vacations = service.sync_institution_vacations(s, user, inst, payload)
    return jsonify({"data": [institution_vacation_resource(v) for v in vacations]})


@bp.get("/institution-user-vacations/<institution_user_id>")
@require_auth
def institution_user_vacations_detail(institution_user_id: str):
    s = db_session()
    user = current_user()
    iu = get_institution_user(s, selected_institution_id(user), institution_user_id)
    _ensure_can_manage(user, iu)

    excluded = service.excluded_vacation_ids(s, iu.id)
    institution_vacations = [
        {**institution_vacation_resource(v), "is_excluded": v.id in excluded}
        for v in service.active_institution_vacations(s, iu.institution_id)
    ]
    return jsonify(
        {
            "data": {
                "institution_user_vacations": [
                    institution_user_vacation_resource(v)
                    for v in service.active_institution_user_vacations(s, iu.id)
                ],
                "institution_vacations": institution_vacations,
            }
        }
    )


@bp.post("/institution-user-vacations/sync")
@audit_failures(AuditEventType.MODIFY_OBJECT, AuditObjectType.INSTITUTION_USER, identity=_institution_user_identity)
@require_auth
def institution_user_vacations_sync():
    s = db_session()
    user = current_user()
    payload = json_body()
    iu_id = payload.get("institution_user_id")
    if iu_id is None:
        raise field_error("institution_user_id", "The institution_user_id field is required.")
    with transaction(s):
        iu = get_institution_user(s, selected_institution_id(user), iu_id)
        _ensure_can_manage(user, iu)
        vacations = service.sync_institution_user_vacations(s, user, iu, payload)
    return jsonify({"data": [institution_user_vacation_resource(v) for v in vacations]})

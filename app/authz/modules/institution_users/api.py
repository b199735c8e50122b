from __future__ import annotations

import io
from typing import Any

from flask import Blueprint, g, jsonify, request, send_file

from app.authz.audit import audit_failures, record_event
from app.authz.auth import current_user, require_auth
from app.authz.constants import AuditEventType, AuditObjectType, PrivilegeKey
from app.authz.db import db_session, transaction
from app.authz.errors import NotFound, field_error
from app.authz.models import InstitutionUser
from app.authz.modules.institution_users import service
from app.authz.rbac import require_privilege, selected_institution_id
from app.authz.resources import institution_user_resource, paginated
from app.authz.utils import json_body

bp = Blueprint("institution_users", __name__)


def _identity_from_view_arg(s, view_args: dict[str, Any]) -> dict[str, Any] | None:
    iu = s.get(InstitutionUser, view_args.get("institution_user_id") or "")
    return iu.identity_subset() if iu else None


def _identity_from_payload(s, view_args: dict[str, Any]) -> dict[str, Any] | None:
    body = request.get_json(silent=True)
    iu_id = body.get("institution_user_id") if isinstance(body, dict) else None
    iu = s.get(InstitutionUser, iu_id) if isinstance(iu_id, str) else None
    return iu.identity_subset() if iu else None


def _identity_of_current_user(s, view_args: dict[str, Any]) -> dict[str, Any] | None:
    u = getattr(g, "current_user", None)
    iu = s.get(InstitutionUser, u.institution_user_id) if u and u.institution_user_id else None
    return iu.identity_subset() if iu else None


def _target_from_payload(s, payload: dict[str, Any]) -> InstitutionUser:
    user = current_user()
    iu_id = payload.get("institution_user_id")
    if iu_id is None:
        raise field_error("institution_user_id", "The institution_user_id field is required.")
    return service.get_institution_user(s, selected_institution_id(user), iu_id)


# ---------- List / export ----------
@bp.get("/institution-users")
@require_privilege(PrivilegeKey.VIEW_USER)
def institution_users_list():
    s = db_session()
    user = current_user()
    filters = service.parse_list_filters(request.args)
    items, total = service.list_institution_users(s, selected_institution_id(user), filters)
    return jsonify(
        paginated(
            [institution_user_resource(iu) for iu in items],
            page=filters["page"],
            per_page=filters["per_page"],
            total=total,
            path=request.base_url,
        )
    )


@bp.get("/institution-users/export-csv")
@audit_failures(AuditEventType.EXPORT_INSTITUTION_USERS)
@require_privilege(PrivilegeKey.EXPORT_USER)
def institution_users_export():
    s = db_session()
    user = current_user()
    with transaction(s):
        data = service.export_csv(s, selected_institution_id(user))
        record_event(s, actor=user, event_type=AuditEventType.EXPORT_INSTITUTION_USERS)
    return send_file(
        io.BytesIO(data),
        mimetype="text/csv",
        as_attachment=True,
        download_name="exported_users.csv",
        max_age=0,
    )


# ---------- Detail / update ----------
@bp.get("/institution-users/<institution_user_id>")
@require_auth
def institution_user_detail(institution_user_id: str):
    s = db_session()
    user = current_user()
    iu = service.get_institution_user(s, selected_institution_id(user), institution_user_id)
    service.ensure_can_view(user, iu)
    return jsonify({"data": institution_user_resource(iu)})


@bp.put("/institution-users/<institution_user_id>")
@audit_failures(AuditEventType.MODIFY_OBJECT, AuditObjectType.INSTITUTION_USER, identity=_identity_from_view_arg)
@require_auth
def institution_user_update(institution_user_id: str):
    s = db_session()
    user = current_user()
    payload = json_body()
    with transaction(s):
        iu = service.get_institution_user(s, selected_institution_id(user), institution_user_id)
        service.update_institution_user(s, user, iu, payload)
    return jsonify({"data": institution_user_resource(iu)})


@bp.put("/institution-users")
@audit_failures(AuditEventType.MODIFY_OBJECT, AuditObjectType.INSTITUTION_USER, identity=_identity_of_current_user)
@require_auth
def current_institution_user_update():
    s = db_session()
    user = current_user()
    payload = json_body()
    if not user.institution_user_id:
        raise NotFound()
    with transaction(s):
        iu = service.get_institution_user(s, selected_institution_id(user), user.institution_user_id)
        service.update_current_institution_user(s, user, iu, payload)
    return jsonify({"data": institution_user_resource(iu)})


# ---------- Lifecycle ----------
@bp.post("/institution-users/deactivate")
@audit_failures(AuditEventType.MODIFY_OBJECT, AuditObjectType.INSTITUTION_USER, identity=_identity_from_payload)
@require_privilege(PrivilegeKey.DEACTIVATE_USER)
def institution_user_deactivate():
    s = db_session()
    payload = json_body()
    deactivation_date = service.parse_deactivation_date(payload)
    with transaction(s):
        iu = _target_from_payload(s, payload)
        service.deactivate(s, current_user(), iu, deactivation_date)
    return jsonify({"data": institution_user_resource(iu)})


@bp.post("/institution-users/activate")
@audit_failures(AuditEventType.MODIFY_OBJECT, AuditObjectType.INSTITUTION_USER, identity=_identity_from_payload)
@require_privilege(PrivilegeKey.ACTIVATE_USER)
def institution_user_activate():
    s = db_session()
    payload = json_body()
    notify_user = payload.get("notify_user")
    if not isinstance(notify_user, bool):
        raise field_error("notify_user", "The notify_user field must be true or false.")
    with transaction(s):
        iu = _target_from_payload(s, payload)
        roles = service.load_roles(s, iu.institution_id, payload.get("roles"))
        service.activate(s, current_user(), iu, roles, notify_user=notify_user)
    return jsonify({"data": institution_user_resource(iu)})


@bp.post("/institution-users/archive")
@audit_failures(AuditEventType.MODIFY_OBJECT, AuditObjectType.INSTITUTION_USER, identity=_identity_from_payload)
@require_privilege(PrivilegeKey.ARCHIVE_USER)
def institution_user_archive():
    s = db_session()
    payload = json_body()
    with transaction(s):
        iu = _target_from_payload(s, payload)
        service.archive(s, current_user(), iu)
    return jsonify({"data": institution_user_resource(iu)})

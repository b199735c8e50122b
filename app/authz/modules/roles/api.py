from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify, request

from app.authz.audit import audit_failures
from app.authz.auth import current_user, require_auth
from app.authz.constants import AuditEventType, AuditObjectType, PrivilegeKey
from app.authz.db import db_session, transaction
from app.authz.errors import Forbidden, field_error
from app.authz.models import Role
from app.authz.modules.roles import service
from app.authz.rbac import require_privilege, selected_institution_id, user_has_privilege
from app.authz.resources import privilege_resource, role_resource
from app.authz.utils import json_body

bp = Blueprint("roles", __name__)


def _role_identity(s, view_args: dict[str, Any]) -> dict[str, Any] | None:
    role = s.get(Role, view_args.get("role_id") or "")
    return role.identity_subset() if role else None


@bp.get("/roles")
@require_privilege(PrivilegeKey.VIEW_ROLE)
def roles_list():
    s = db_session()
    user = current_user()
    institution_id = (request.args.get("institution_id") or "").strip()
    if not institution_id:
        raise field_error("institution_id", "The institution_id field is required.")
    if institution_id != selected_institution_id(user):
        raise Forbidden()
    return jsonify({"data": [role_resource(r) for r in service.list_roles(s, institution_id)]})


@bp.post("/roles")
@audit_failures(AuditEventType.CREATE_OBJECT, AuditObjectType.ROLE)
@require_privilege(PrivilegeKey.ADD_ROLE)
def roles_create():
    s = db_session()
    payload = json_body()
    with transaction(s):
        role = service.create_role(s, current_user(), payload)
    return jsonify({"data": role_resource(role)}), 201


@bp.get("/roles/<role_id>")
@require_privilege(PrivilegeKey.VIEW_ROLE)
def role_detail(role_id: str):
    s = db_session()
    role = service.get_role(s, selected_institution_id(current_user()), role_id)
    return jsonify({"data": role_resource(role)})


@bp.put("/roles/<role_id>")
@audit_failures(AuditEventType.MODIFY_OBJECT, AuditObjectType.ROLE, identity=_role_identity)
@require_privilege(PrivilegeKey.EDIT_ROLE)
def role_update(role_id: str):
    s = db_session()
    user = current_user()
    payload = json_body()
    with transaction(s):
        role = service.get_role(s, selected_institution_id(user), role_id)
        service.update_role(s, user, role, payload)
    return jsonify({"data": role_resource(role)})


@bp.delete("/roles/<role_id>")
@audit_failures(AuditEventType.REMOVE_OBJECT, AuditObjectType.ROLE, identity=_role_identity, include_input=False)
@require_privilege(PrivilegeKey.DELETE_ROLE)
def role_delete(role_id: str):
    s = db_session()
    user = current_user()
    with transaction(s):
        role = service.get_role(s, selected_institution_id(user), role_id)
        service.delete_role(s, user, role)
    return jsonify({"data": role_resource(role)})


@bp.get("/privileges")
@require_auth
def privileges_list():
    """Catalog of privilege keys; callers who cannot view roles get an empty list."""
    user = current_user()
    if not user_has_privilege(user, PrivilegeKey.VIEW_ROLE):
        return jsonify({"data": []})
    s = db_session()
    return jsonify({"data": [privilege_resource(p) for p in service.list_privileges(s)]})

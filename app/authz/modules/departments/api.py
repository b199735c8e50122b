from __future__ import annotations

from flask import Blueprint, jsonify

from app.authz.auth import current_user, require_auth
from app.authz.constants import PrivilegeKey
from app.authz.db import db_session, transaction
from app.authz.modules.departments import service
from app.authz.rbac import require_privilege, selected_institution_id
from app.authz.resources import department_resource
from app.authz.utils import json_body

bp = Blueprint("departments", __name__)


@bp.get("/departments")
@require_auth
def departments_list():
    s = db_session()
    deps = service.list_departments(s, selected_institution_id(current_user()))
    return jsonify({"data": [department_resource(d) for d in deps]})


@bp.post("/departments")
@require_privilege(PrivilegeKey.ADD_DEPARTMENT)
def departments_create():
    s = db_session()
    user = current_user()
    payload = json_body()
    with transaction(s):
        dep = service.create_department(s, user, selected_institution_id(user), payload)
    return jsonify({"data": department_resource(dep)}), 201


@bp.put("/departments/bulk")
@require_privilege(PrivilegeKey.ADD_DEPARTMENT, PrivilegeKey.EDIT_DEPARTMENT, PrivilegeKey.DELETE_DEPARTMENT)
def departments_bulk_update():
    s = db_session()
    user = current_user()
    payload = json_body()
    with transaction(s):
        deps = service.bulk_update(s, user, selected_institution_id(user), payload)
    return jsonify({"data": [department_resource(d) for d in deps]})


@bp.get("/departments/<department_id>")
@require_auth
def department_detail(department_id: str):
    s = db_session()
    dep = service.get_department(s, selected_institution_id(current_user()), department_id)
    return jsonify({"data": department_resource(dep)})


@bp.put("/departments/<department_id>")
@require_privilege(PrivilegeKey.EDIT_DEPARTMENT)
def department_update(department_id: str):
    s = db_session()
    user = current_user()
    payload = json_body()
    with transaction(s):
        dep = service.get_department(s, selected_institution_id(user), department_id)
        service.rename_department(s, user, dep, payload)
    return jsonify({"data": department_resource(dep)})


@bp.delete("/departments/<department_id>")
@require_privilege(PrivilegeKey.DELETE_DEPARTMENT)
def department_delete(department_id: str):
    s = db_session()
    user = current_user()
    with transaction(s):
        dep = service.get_department(s, selected_institution_id(user), department_id)
        service.delete_department(s, user, dep)
    return jsonify({"data": department_resource(dep)})

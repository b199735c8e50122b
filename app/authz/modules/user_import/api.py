from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.authz.audit import audit_failures
from app.authz.auth import current_user
from app.authz.constants import AuditEventType, AuditObjectType, PrivilegeKey
from app.authz.db import db_session, transaction
from app.authz.errors import ApiError, ValidationFailed, field_error
from app.authz.modules.user_import import service
from app.authz.modules.user_import.parsers import IncorrectFormat
from app.authz.rbac import require_privilege, selected_institution_id
from app.authz.utils import json_body

bp = Blueprint("user_import", __name__)


def _uploaded_bytes() -> bytes:
    f = request.files.get("file")
    if not f or not f.filename:
        raise field_error("file", "The file field is required.")
    return f.read()


@bp.post("/institution-users/validate-import-csv")
@require_privilege(PrivilegeKey.ADD_USER)
def validate_import_csv():
    s = db_session()
    data = _uploaded_bytes()
    try:
        rows_with_errors = service.validate_file(s, selected_institution_id(current_user()), data)
    except IncorrectFormat as e:
        current_app.logger.info("Rejected import file: %s", e)
        raise ApiError(service.INCORRECT_FORMAT_MESSAGE)
    if rows_with_errors:
        return jsonify({"errors": rows_with_errors}), 422
    return jsonify({"errors": []})


@bp.post("/institution-users/validate-import-csv-row")
@require_privilege(PrivilegeKey.ADD_USER)
def validate_import_csv_row():
    s = db_session()
    payload = json_body()
    lookups = service.ImportLookups(s, selected_institution_id(current_user()))
    errors = service.validate_row(lookups, payload)
    if errors:
        raise ValidationFailed(errors)
    return jsonify({"data": service.validated_row_data(payload)})


@bp.post("/institution-users/import-csv")
@audit_failures(AuditEventType.CREATE_OBJECT, AuditObjectType.INSTITUTION_USER)
@require_privilege(PrivilegeKey.ADD_USER)
def import_csv():
    s = db_session()
    user = current_user()
    data = _uploaded_bytes()
    try:
        with transaction(s):
            created = service.import_file(s, user, selected_institution_id(user), data)
    except IncorrectFormat:
        raise ApiError(service.UNRESOLVED_ERRORS_MESSAGE)
    current_app.logger.info("Imported %s institution users (request_id=%s)", len(created), getattr(g, "request_id", None))
    return jsonify({"data": []})

from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify

from app.authz.audit import audit_failures
from app.authz.auth import current_user, require_auth
from app.authz.constants import AuditEventType, AuditObjectType
from app.authz.db import db_session, transaction
from app.authz.errors import Unauthenticated
from app.authz.models import Institution
from app.authz.modules.institutions import service
from app.authz.rbac import ensure_same_institution
from app.authz.resources import institution_resource
from app.authz.utils import json_body

bp = Blueprint("institutions", __name__)


def _institution_identity(s, view_args: dict[str, Any]) -> dict[str, Any] | None:
    inst = s.get(Institution, view_args.get("institution_id") or "")
    return inst.identity_subset() if inst else None


@bp.get("/institutions")
@require_auth
def institutions_list():
    """Institutions the token holder may select, before any institution is selected."""
    user = current_user()
    if not user.personal_identification_code:
        raise Unauthenticated()
    s = db_session()
    institutions = service.list_for_personal_identification_code(s, user.personal_identification_code)
    return jsonify({"data": [institution_resource(i) for i in institutions]})


@bp.get("/institutions/<institution_id>")
@require_auth
def institution_detail(institution_id: str):
    ensure_same_institution(current_user(), institution_id)
    s = db_session()
    return jsonify({"data": institution_resource(service.get_institution(s, institution_id))})


@bp.put("/institutions/<institution_id>")
@audit_failures(AuditEventType.MODIFY_OBJECT, AuditObjectType.INSTITUTION, identity=_institution_identity)
@require_auth
def institution_update(institution_id: str):
    user = current_user()
    ensure_same_institution(user, institution_id)
    s = db_session()
    payload = json_body()
    with transaction(s):
        inst = service.get_institution(s, institution_id)
        service.update_institution(s, user, inst, payload)
    return jsonify({"data": institution_resource(inst)})

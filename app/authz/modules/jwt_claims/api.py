from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.authz.auth import current_user
from app.authz.db import db_session
from app.authz.errors import ErrorBag, Forbidden
from app.authz.modules.jwt_claims import service
from app.authz.utils import is_uuid

bp = Blueprint("jwt_claims", __name__)


@bp.get("/jwt-claims")
def jwt_claims():
    """Service-to-service: only the SSO internal client may ask for claims."""
    user = current_user()
    if not service.is_sso_internal_client(user):
        raise Forbidden()

    errors = ErrorBag()
    pic = (request.args.get("personal_identification_code") or "").strip()
    if not pic:
        errors.add("personal_identification_code", "The personal_identification_code field is required.")
    institution_id = request.args.get("institution_id")
    if institution_id is not None and not is_uuid(institution_id):
        errors.add("institution_id", "The institution_id must be a valid UUID.")
    errors.raise_if_any()

    s = db_session()
    return jsonify(service.claims_for(s, pic, institution_id))

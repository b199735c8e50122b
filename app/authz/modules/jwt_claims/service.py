from __future__ import annotations

from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import select

from app.authz.auth import CurrentUser
from app.authz.errors import Forbidden, NotFound
from app.authz.models import InstitutionUser, User
from app.authz.modules.institution_users.status import membership_query

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def is_sso_internal_client(user: CurrentUser) -> bool:
    expected = current_app.config.get("SSO_INTERNAL_CLIENT_ID")
    return bool(expected) and bool(user.azp) and user.azp == expected


def user_claims(u: User) -> dict[str, Any]:
    return {
        "personalIdentificationCode": u.personal_identification_code,
        "userId": u.id,
        "forename": u.forename,
        "surname": u.surname,
    }


def institution_user_claims(iu: InstitutionUser) -> dict[str, Any]:
    return {
        **user_claims(iu.user),
        "institutionUserId": iu.id,
        "selectedInstitution": {"id": iu.institution_id, "name": iu.institution.name},
        "department": {"id": iu.department.id, "name": iu.department.name} if iu.department else None,
        "privileges": iu.privilege_keys,
    }


def claims_for(s: "Session", personal_identification_code: str, institution_id: str | None) -> dict[str, Any]:
    """
    Custom claims for the identity provider to embed in a user's token. With an institution,
    the person must be an active member there.
    """
    user = s.scalars(
        select(User).where(
            User.personal_identification_code == personal_identification_code,
            User.deleted_at.is_(None),
        )
    ).one_or_none()
    if user is None:
        raise NotFound()
    if institution_id is None:
        return user_claims(user)

    iu = s.scalars(membership_query(institution_id).where(InstitutionUser.user_id == user.id)).first()
    if iu is None:
        raise Forbidden()
    return institution_user_claims(iu)

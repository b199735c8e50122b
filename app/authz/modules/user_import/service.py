from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.authz import events
from app.authz.audit import record_create
from app.authz.constants import AuditObjectType
from app.authz.errors import ApiError
from app.authz.models import InstitutionUser, Role, User
from app.authz.modules.departments.models import Department
from app.authz.modules.user_import.parsers import ATTRIBUTE_NAMES, read_rows
from app.authz.resources import institution_user_resource
from app.authz.utils import (
    is_valid_email,
    is_valid_full_name,
    is_valid_personal_identification_code,
    is_valid_phone,
    split_full_name,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.authz.auth import CurrentUser

UNRESOLVED_ERRORS_MESSAGE = "The file contains unresolved errors"
INCORRECT_FORMAT_MESSAGE = "The file has incorrect format"

_TRUE_VALUES = {"1", "true", "jah", "yes"}
_FALSE_VALUES = {"", "0", "false", "ei", "no"}


class ImportLookups:
    """Role and department names of one institution, loaded once per file."""

    def __init__(self, s: "Session", institution_id: str):
        self.roles: dict[str, Role] = {
            r.name: r
            for r in s.scalars(
                select(Role).where(Role.institution_id == institution_id, Role.deleted_at.is_(None))
            )
        }
        self.departments: dict[str, Department] = {
            d.name: d
            for d in s.scalars(
                select(Department).where(Department.institution_id == institution_id, Department.deleted_at.is_(None))
            )
        }


def role_names(raw: str) -> list[str]:
    return [n.strip() for n in raw.split(",")]


def parse_is_vendor(raw: Any) -> bool | None:
    if isinstance(raw, bool):
        return raw
    value = str(raw if raw is not None else "").strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


def validate_row(lookups: ImportLookups, attrs: dict[str, Any]) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}

    def fail(field: str, message: str) -> None:
        errors.setdefault(field, []).append(message)

    pic = attrs.get("personal_identification_code")
    if not pic:
        fail("personal_identification_code", "The personal_identification_code field is required.")
    elif not is_valid_personal_identification_code(pic):
        fail("personal_identification_code", "The personal identification code is invalid.")

    name = attrs.get("name")
    if not name:
        fail("name", "The name field is required.")
    elif not is_valid_full_name(name):
        fail("name", "The name must contain a forename and a surname.")

    phone = attrs.get("phone")
    if not phone:
        fail("phone", "The phone field is required.")
    elif not is_valid_phone(phone):
        fail("phone", "The phone format is invalid.")

    email = attrs.get("email")
    if not email:
        fail("email", "The email field is required.")
    elif not is_valid_email(email):
        fail("email", "The email must be a valid email address.")

    department = attrs.get("department")
    if department:
        if not isinstance(department, str):
            fail("department", "The department must be a string.")
        elif department not in lookups.departments:
            fail("department", f"The department with the name '{department}' does not exist.")

    role = attrs.get("role")
    if not role:
        fail("role", "The role field is required.")
    elif not isinstance(role, str):
        fail("role", "The role must be a string.")
    else:
        for rn in role_names(role):
            if rn not in lookups.roles:
                fail("role", f"The role with the name '{rn}' does not exist.")

    if parse_is_vendor(attrs.get("is_vendor")) is None:
        fail("is_vendor", "The is_vendor field must be true or false.")

    return errors


def validated_row_data(attrs: dict[str, Any]) -> dict[str, Any]:
    return {k: attrs.get(k) for k in ATTRIBUTE_NAMES if k in attrs}


def validate_file(s: "Session", institution_id: str, file_bytes: bytes) -> list[dict[str, Any]]:
    """Rows with errors as [{"row": n, "errors": {...}}]. Raises IncorrectFormat."""
    lookups = ImportLookups(s, institution_id)
    out: list[dict[str, Any]] = []
    for row in read_rows(file_bytes):
        errors = validate_row(lookups, row.attributes)
        if errors:
            out.append({"row": row.index, "errors": errors})
    return out


def import_file(s: "Session", actor: "CurrentUser", institution_id: str, file_bytes: bytes) -> list[InstitutionUser]:
    """
    Creates missing users and memberships of the institution. Returns the new memberships.
    Any invalid row rejects the whole file before a single write.
    """
    lookups = ImportLookups(s, institution_id)
    rows = list(read_rows(file_bytes))
    if any(validate_row(lookups, row.attributes) for row in rows):
        raise ApiError(UNRESOLVED_ERRORS_MESSAGE)

    created: list[InstitutionUser] = []
    for row in rows:
        attrs = row.attributes
        pic = attrs["personal_identification_code"]
        user = s.scalars(select(User).where(User.personal_identification_code == pic)).one_or_none()
        if user is None:
            forename, surname = split_full_name(attrs["name"])
            user = User(personal_identification_code=pic, forename=forename, surname=surname)
            s.add(user)
            s.flush()

        existing = s.scalars(
            select(InstitutionUser).where(
                InstitutionUser.user_id == user.id,
                InstitutionUser.institution_id == institution_id,
                InstitutionUser.deleted_at.is_(None),
            )
        ).first()
        if existing is not None:
            continue

        department = lookups.departments.get(attrs["department"]) if attrs.get("department") else None
        iu = InstitutionUser(
            institution_id=institution_id,
            user_id=user.id,
            email=attrs["email"],
            phone=attrs["phone"],
            department_id=department.id if department else None,
        )
        iu.roles = list({lookups.roles[rn].id: lookups.roles[rn] for rn in role_names(attrs["role"])}.values())
        s.add(iu)
        s.flush()
        record_create(s, actor, AuditObjectType.INSTITUTION_USER, institution_user_resource(iu))
        created.append(iu)

    events.institution_user_saved(s, [iu.id for iu in created])
    return created

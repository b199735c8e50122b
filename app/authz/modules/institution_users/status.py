"""
Status derivation. The Python function and the SQL clauses must agree:

    ARCHIVED     archived_at set
    DEACTIVATED  not archived, deactivation_date <= today (Estonian calendar)
    ACTIVE       everything else, including a deactivation date still in the future
"""
from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime

from sqlalchemy import ColumnElement, and_, false, or_, select

from app.authz.constants import InstitutionUserStatus
from app.authz.dates import today_in_estonia
from app.authz.models import InstitutionUser, User


def resolve_status(
    archived_at: datetime | None,
    deactivation_date: date | None,
    today: date | None = None,
) -> InstitutionUserStatus:
    if archived_at is not None:
        return InstitutionUserStatus.ARCHIVED
    today = today or today_in_estonia()
    if deactivation_date is not None and deactivation_date <= today:
        return InstitutionUserStatus.DEACTIVATED
    return InstitutionUserStatus.ACTIVE


def status_clause(status: InstitutionUserStatus, today: date | None = None) -> ColumnElement[bool]:
    today = today or today_in_estonia()
    if status == InstitutionUserStatus.ARCHIVED:
        return InstitutionUser.archived_at.is_not(None)
    if status == InstitutionUserStatus.DEACTIVATED:
        return and_(
            InstitutionUser.archived_at.is_(None),
            InstitutionUser.deactivation_date.is_not(None),
            InstitutionUser.deactivation_date <= today,
        )
    return and_(
        InstitutionUser.archived_at.is_(None),
        or_(InstitutionUser.deactivation_date.is_(None), InstitutionUser.deactivation_date > today),
    )


def status_in_clause(statuses: Iterable[InstitutionUserStatus], today: date | None = None) -> ColumnElement[bool]:
    today = today or today_in_estonia()
    clauses = [status_clause(st, today) for st in dict.fromkeys(statuses)]
    if not clauses:
        return false()
    return or_(*clauses)


def membership_query(institution_id: str, statuses: Iterable[InstitutionUserStatus] | None = None):
    """
    Base select for one institution's members: soft-deleted memberships and users are
    always hidden; by default only ACTIVE members are returned.
    """
    q = (
        select(InstitutionUser)
        .join(User, User.id == InstitutionUser.user_id)
        .where(
            InstitutionUser.institution_id == institution_id,
            InstitutionUser.deleted_at.is_(None),
            User.deleted_at.is_(None),
        )
    )
    if statuses is None:
        statuses = [InstitutionUserStatus.ACTIVE]
    return q.where(status_in_clause(statuses))

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import select

from app.authz import events
from app.authz.audit import record_modify
from app.authz.constants import MAX_INSTITUTION_USER_VACATIONS, MAX_INSTITUTION_VACATIONS, AuditObjectType
from app.authz.dates import parse_iso_date, today_in_estonia
from app.authz.errors import ErrorBag, field_error
from app.authz.modules.vacations.models import (
    InstitutionUserVacation,
    InstitutionVacation,
    InstitutionVacationExclusion,
)
from app.authz.utils import is_uuid

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.authz.auth import CurrentUser
    from app.authz.models import Institution, InstitutionUser


V = TypeVar("V", InstitutionVacation, InstitutionUserVacation)

UNKNOWN_ID_MESSAGE = "Vacation with such ID does not exist"
EXISTS_MESSAGE = "The same vacation already exists"
DUPLICATE_MESSAGE = "Trying to create two equal vacations"
REPEATED_ID_MESSAGE = "The same vacation is listed more than once"
RANGE_MESSAGE = "The start date should be less or equal to the end date"
INVALID_EXCLUSIONS_MESSAGE = "Invalid institution vacation exclusions passed"


@dataclass(frozen=True)
class SubmittedVacation:
    index: int
    id: str | None
    start_date: date
    end_date: date

    @property
    def key(self) -> tuple[date, date]:
        return (self.start_date, self.end_date)


@dataclass
class SyncPlan:
    updates: list[SubmittedVacation]
    inserts: list[SubmittedVacation]
    delete_ids: list[str]


def parse_vacations(raw: Any, max_items: int) -> list[SubmittedVacation]:
    """Shape validation of the "vacations" array. Raises ValidationFailed."""
    if not isinstance(raw, list):
        raise field_error("vacations", "The vacations field must be an array.")
    if len(raw) > max_items:
        raise field_error("vacations", f"The vacations may not have more than {max_items} items.")

    errors = ErrorBag()
    out: list[SubmittedVacation] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            errors.add(f"vacations.{i}", f"The vacations.{i} must be an object.")
            continue
        vid = item.get("id")
        if vid is not None and not is_uuid(vid):
            errors.add(f"vacations.{i}.id", f"The vacations.{i}.id must be a valid UUID.")
        start, end = parse_iso_date(item.get("start_date")), parse_iso_date(item.get("end_date"))
        if start is None:
            errors.add(f"vacations.{i}.start_date", f"The vacations.{i}.start_date does not match the format Y-m-d.")
        if end is None:
            errors.add(f"vacations.{i}.end_date", f"The vacations.{i}.end_date does not match the format Y-m-d.")
        if start is not None and end is not None:
            out.append(SubmittedVacation(i, vid, start, end))
    errors.raise_if_any()
    return out


def plan_sync(existing: Sequence[InstitutionVacation | InstitutionUserVacation], submitted: list[SubmittedVacation]) -> SyncPlan:
    """
    Partitions the submission into updates, inserts and deletes. Every rule is checked
    before anything is written; violations raise one ValidationFailed.
    """
    by_id = {v.id: v for v in existing}
    submitted_ids = {v.id for v in submitted if v.id}
    untouched_keys = {(v.start_date, v.end_date) for v in existing if v.id not in submitted_ids}

    errors = ErrorBag()
    seen: set[tuple[date, date]] = set()
    seen_ids: set[str] = set()
    for v in submitted:
        prefix = f"vacations.{v.index}"
        if v.id and v.id not in by_id:
            errors.add(f"{prefix}.id", UNKNOWN_ID_MESSAGE)
        elif v.id in seen_ids:
            errors.add(f"{prefix}.id", REPEATED_ID_MESSAGE)
        if v.id:
            seen_ids.add(v.id)
        if v.start_date > v.end_date:
            errors.add(f"{prefix}.start_date", RANGE_MESSAGE)
        if v.key in seen:
            errors.add(f"{prefix}.start_date", DUPLICATE_MESSAGE)
        elif not v.id and v.key in untouched_keys:
            errors.add(f"{prefix}.start_date", EXISTS_MESSAGE)
        seen.add(v.key)
    errors.raise_if_any()

    return SyncPlan(
        updates=[v for v in submitted if v.id],
        inserts=[v for v in submitted if not v.id],
        delete_ids=[vid for vid in by_id if vid not in submitted_ids],
    )


def apply_sync(
    s: "Session",
    existing: Sequence[V],
    plan: SyncPlan,
    factory: Callable[[SubmittedVacation], V],
) -> list[V]:
    by_id = {v.id: v for v in existing}
    survivors: list[V] = []
    for sv in plan.updates:
        row = by_id[sv.id]
        row.start_date, row.end_date = sv.start_date, sv.end_date
        survivors.append(row)
    for sv in plan.inserts:
        row = factory(sv)
        s.add(row)
        survivors.append(row)
    for vid in plan.delete_ids:
        by_id[vid].soft_delete()
    s.flush()
    return sorted(survivors, key=lambda v: (v.start_date, v.end_date))


def _ranges(rows: Sequence[InstitutionVacation | InstitutionUserVacation]) -> list[list[str]]:
    return sorted([r.start_date.isoformat(), r.end_date.isoformat()] for r in rows)


# ---------- Institution vacations ----------

def active_institution_vacations(s: "Session", institution_id: str) -> list[InstitutionVacation]:
    return list(
        s.scalars(
            select(InstitutionVacation)
            .where(
                InstitutionVacation.institution_id == institution_id,
                InstitutionVacation.deleted_at.is_(None),
                InstitutionVacation.end_date > today_in_estonia(),
            )
            .order_by(InstitutionVacation.start_date.asc(), InstitutionVacation.end_date.asc())
        )
    )


def sync_institution_vacations(s: "Session", actor: "CurrentUser", institution: "Institution", payload: dict[str, Any]) -> list[InstitutionVacation]:
    if "vacations" not in payload:
        raise field_error("vacations", "The vacations field must be present.")
    submitted = parse_vacations(payload["vacations"], MAX_INSTITUTION_VACATIONS)
    existing = active_institution_vacations(s, institution.id)
    plan = plan_sync(existing, submitted)

    pre = {"vacations": _ranges(existing)}
    survivors = apply_sync(
        s,
        existing,
        plan,
        lambda sv: InstitutionVacation(institution_id=institution.id, start_date=sv.start_date, end_date=sv.end_date),
    )
    record_modify(s, actor, AuditObjectType.INSTITUTION, institution.identity_subset(), pre, {"vacations": _ranges(survivors)})
    return survivors


# ---------- Institution user vacations ----------

def active_institution_user_vacations(s: "Session", institution_user_id: str) -> list[InstitutionUserVacation]:
    return list(
        s.scalars(
            select(InstitutionUserVacation)
            .where(
                InstitutionUserVacation.institution_user_id == institution_user_id,
                InstitutionUserVacation.deleted_at.is_(None),
                InstitutionUserVacation.end_date > today_in_estonia(),
            )
            .order_by(InstitutionUserVacation.start_date.asc(), InstitutionUserVacation.end_date.asc())
        )
    )


def active_exclusions(s: "Session", institution_user_id: str) -> list[InstitutionVacationExclusion]:
    return list(
        s.scalars(
            select(InstitutionVacationExclusion).where(
                InstitutionVacationExclusion.institution_user_id == institution_user_id,
                InstitutionVacationExclusion.deleted_at.is_(None),
            )
        )
    )


def excluded_vacation_ids(s: "Session", institution_user_id: str) -> set[str]:
    return {e.institution_vacation_id for e in active_exclusions(s, institution_user_id)}


def sync_exclusions(s: "Session", iu: "InstitutionUser", raw: Any) -> list[InstitutionVacationExclusion]:
    """
    The listed institution vacations become the user's exclusions; each must be an
    active vacation of the user's institution.
    """
    if not isinstance(raw, list):
        raise field_error("institution_vacation_exclusions", "The institution_vacation_exclusions field must be an array.")
    errors = ErrorBag()
    for i, vid in enumerate(raw):
        if not is_uuid(vid):
            errors.add(f"institution_vacation_exclusions.{i}", f"The institution_vacation_exclusions.{i} must be a valid UUID.")
    errors.raise_if_any()

    wanted = list(dict.fromkeys(raw))
    valid_ids = {v.id for v in active_institution_vacations(s, iu.institution_id)}
    if any(vid not in valid_ids for vid in wanted):
        raise field_error("institution_vacation_exclusions", INVALID_EXCLUSIONS_MESSAGE)

    current = {e.institution_vacation_id: e for e in active_exclusions(s, iu.id)}
    kept: list[InstitutionVacationExclusion] = []
    for vid in wanted:
        exclusion = current.get(vid)
        if exclusion is None:
            exclusion = InstitutionVacationExclusion(institution_user_id=iu.id, institution_vacation_id=vid)
            s.add(exclusion)
        kept.append(exclusion)
    for vid, exclusion in current.items():
        if vid not in wanted:
            exclusion.soft_delete()
    s.flush()
    return kept


def sync_institution_user_vacations(s: "Session", actor: "CurrentUser", iu: "InstitutionUser", payload: dict[str, Any]) -> list[InstitutionUserVacation]:
    if "vacations" not in payload:
        raise field_error("vacations", "The vacations field must be present.")
    if "institution_vacation_exclusions" not in payload:
        raise field_error("institution_vacation_exclusions", "The institution_vacation_exclusions field must be present.")
    submitted = parse_vacations(payload["vacations"], MAX_INSTITUTION_USER_VACATIONS)
    existing = active_institution_user_vacations(s, iu.id)
    plan = plan_sync(existing, submitted)

    pre = {"vacations": _ranges(existing), "institution_vacation_exclusions": sorted(excluded_vacation_ids(s, iu.id))}
    exclusions = sync_exclusions(s, iu, payload["institution_vacation_exclusions"])
    survivors = apply_sync(
        s,
        existing,
        plan,
        lambda sv: InstitutionUserVacation(institution_user_id=iu.id, start_date=sv.start_date, end_date=sv.end_date),
    )
    post = {
        "vacations": _ranges(survivors),
        "institution_vacation_exclusions": sorted(e.institution_vacation_id for e in exclusions),
    }
    record_modify(s, actor, AuditObjectType.INSTITUTION_USER, iu.identity_subset(), pre, post)
    events.institution_user_saved(s, [iu.id])
    return survivors

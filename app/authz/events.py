"""
Outbox of institution-user change notifications for downstream services.

Rows are appended in the same transaction as the change that caused them; downstream
consumers poll rows with published_at NULL.
"""
from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from flask import g, has_request_context
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.authz.constants import (
    EVENT_INSTITUTION_USER_ACTIVATED,
    EVENT_INSTITUTION_USER_SAVED,
)
from app.authz.models import InstitutionUser, InstitutionUserRole, SyncEvent


def _trace_id() -> str | None:
    return getattr(g, "request_id", None) if has_request_context() else None


def publish(s: Session, event_name: str, institution_user_id: str, payload: dict[str, Any] | None = None) -> SyncEvent:
    ev = SyncEvent(
        trace_id=_trace_id(),
        event_name=event_name,
        institution_user_id=institution_user_id,
        payload_json=json.dumps(payload, sort_keys=True) if payload else None,
    )
    s.add(ev)
    return ev


def institution_user_saved(s: Session, institution_user_ids: Iterable[str]) -> None:
    for iu_id in sorted(set(institution_user_ids)):
        publish(s, EVENT_INSTITUTION_USER_SAVED, iu_id)


def institution_user_activated(s: Session, iu: InstitutionUser, *, notify_user: bool) -> None:
    publish(s, EVENT_INSTITUTION_USER_ACTIVATED, iu.id, {"notify_user": notify_user, "email": iu.email})


def role_members(s: Session, role_id: str) -> list[str]:
    return list(
        s.scalars(select(InstitutionUserRole.institution_user_id).where(InstitutionUserRole.role_id == role_id))
    )

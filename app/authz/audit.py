from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from flask import Response, current_app, g, request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.authz.auth import CurrentUser
from app.authz.constants import AuditEventType, AuditFailureType, AuditObjectType
from app.authz.db import session_scope
from app.authz.models import AuditEvent, InstitutionUser

_FAILURE_BY_STATUS = {
    400: AuditFailureType.UNPROCESSABLE_ENTITY,
    422: AuditFailureType.UNPROCESSABLE_ENTITY,
    403: AuditFailureType.FORBIDDEN,
}


def _json_default(v: Any) -> str:
    return v.isoformat() if hasattr(v, "isoformat") else str(v)


def record_event(
    s: Session,
    *,
    actor: CurrentUser | None,
    event_type: AuditEventType,
    parameters: dict[str, Any] | None = None,
    failure_type: AuditFailureType | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper. The acting user's department is read from the DB,
    the rest of the actor context comes from the token.
    """
    rid = request_id or getattr(g, "request_id", None)
    department_id = None
    if actor and actor.institution_user_id:
        iu = s.get(InstitutionUser, actor.institution_user_id)
        department_id = iu.department_id if iu else None
    ev = AuditEvent(
        trace_id=rid,
        event_type=event_type.value,
        failure_type=failure_type.value if failure_type else None,
        context_institution_id=actor.institution_id if actor else None,
        context_department_id=department_id,
        acting_institution_user_id=actor.institution_user_id if actor else None,
        acting_user_pic=actor.personal_identification_code if actor else None,
        acting_user_forename=actor.forename if actor else None,
        acting_user_surname=actor.surname if actor else None,
        event_parameters_json=json.dumps(parameters, sort_keys=True, default=_json_default) if parameters else None,
    )
    s.add(ev)
    return ev


def diff_subsets(pre: dict[str, Any], post: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Keep only the keys whose values changed."""
    keys = [k for k in post if pre.get(k) != post.get(k)]
    return {k: pre.get(k) for k in keys}, {k: post[k] for k in keys}


def record_create(s: Session, actor: CurrentUser | None, object_type: AuditObjectType, obj_data: dict[str, Any]) -> AuditEvent:
    return record_event(
        s,
        actor=actor,
        event_type=AuditEventType.CREATE_OBJECT,
        parameters={"object_type": object_type.value, "object_data": obj_data},
    )


def record_modify(
    s: Session,
    actor: CurrentUser | None,
    object_type: AuditObjectType,
    identity_subset: dict[str, Any],
    pre: dict[str, Any],
    post: dict[str, Any],
) -> AuditEvent:
    pre_subset, post_subset = diff_subsets(pre, post)
    return record_event(
        s,
        actor=actor,
        event_type=AuditEventType.MODIFY_OBJECT,
        parameters={
            "object_type": object_type.value,
            "object_identity_subset": identity_subset,
            "pre_modification_subset": pre_subset,
            "post_modification_subset": post_subset,
        },
    )


def record_remove(s: Session, actor: CurrentUser | None, object_type: AuditObjectType, identity_subset: dict[str, Any]) -> AuditEvent:
    return record_event(
        s,
        actor=actor,
        event_type=AuditEventType.REMOVE_OBJECT,
        parameters={"object_type": object_type.value, "object_identity_subset": identity_subset},
    )


# ---------- Failure auditing ----------

IdentityResolver = Callable[[Session, dict[str, Any]], "dict[str, Any] | None"]


@dataclass(frozen=True)
class _FailureContext:
    event_type: AuditEventType
    object_type: AuditObjectType | None
    identity: IdentityResolver | None
    include_input: bool
    view_args: dict[str, Any]


def audit_failures(
    event_type: AuditEventType,
    object_type: AuditObjectType | None = None,
    *,
    identity: IdentityResolver | None = None,
    include_input: bool = True,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Marks a view whose 400/403/422 responses are recorded as failed audit events.
    Must sit above require_privilege so forbidden attempts are covered too.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            g.audit_failure = _FailureContext(event_type, object_type, identity, include_input, dict(kwargs))
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def _request_input() -> Any:
    if request.files:
        contents = {}
        for name, f in request.files.items():
            f.stream.seek(0)
            contents[name] = f.stream.read().decode("utf-8", errors="replace")
        return contents
    return request.get_json(silent=True)


def record_failure_event(response: Response) -> Response:
    """after_request hook."""
    ctx: _FailureContext | None = getattr(g, "audit_failure", None)
    failure_type = _FAILURE_BY_STATUS.get(response.status_code)
    if ctx is None or failure_type is None:
        return response

    request_session: Session | None = getattr(g, "db_session", None)
    if request_session is not None:
        request_session.rollback()

    try:
        with session_scope(current_app) as s:
            params: dict[str, Any] | None = None
            if ctx.object_type is not None:
                params = {"object_type": ctx.object_type.value}
                if ctx.include_input:
                    params["input"] = _request_input()
                if ctx.identity is not None:
                    params["object_identity_subset"] = ctx.identity(s, ctx.view_args)
            record_event(
                s,
                actor=getattr(g, "current_user", None),
                event_type=ctx.event_type,
                parameters=params,
                failure_type=failure_type,
            )
    except SQLAlchemyError:
        current_app.logger.exception("Failed to record failure audit event (request_id=%s)", getattr(g, "request_id", None))
    return response

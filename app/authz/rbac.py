from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.authz.auth import CurrentUser, current_user
from app.authz.constants import PrivilegeKey
from app.authz.errors import Forbidden, NotFound


def user_has_privilege(user: CurrentUser | None, key: PrivilegeKey | str) -> bool:
    if not user:
        return False
    return PrivilegeKey(key).value in user.privileges


def require_privilege(*keys: PrivilegeKey) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    401 without a valid token, 403 unless the token carries every listed privilege.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user = current_user()
            for key in keys:
                if not user_has_privilege(user, key):
                    g.missing_privilege = key.value
                    raise Forbidden()
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def ensure_privilege(user: CurrentUser, key: PrivilegeKey) -> None:
    if not user_has_privilege(user, key):
        g.missing_privilege = key.value
        raise Forbidden()


def selected_institution_id(user: CurrentUser) -> str:
    """The tenant every query is scoped to. Tokens without one cannot act on tenant data."""
    if not user.institution_id:
        raise Forbidden("No institution selected.")
    return user.institution_id


def ensure_same_institution(user: CurrentUser, institution_id: str | None) -> None:
    """Rows of other tenants are reported as missing, not forbidden."""
    if institution_id is None or institution_id != user.institution_id:
        raise NotFound()

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for

from app.backoffice.identity import StaffUser

ALL_PERMISSIONS = frozenset(
    {
        "dashboard.view",
        "courses.view",
        "courses.edit",
        "lessons.view",
        "lessons.edit",
        "classes.view",
        "subscriptions.edit",
        "users.view",
        "users.edit",
        "audit.view",
    }
)

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "admin": ALL_PERMISSIONS,
    "manager": ALL_PERMISSIONS - {"audit.view"},
    "staff": frozenset(
        {
            "dashboard.view",
            "courses.view",
            "lessons.view",
            "classes.view",
            "subscriptions.edit",
            "users.view",
        }
    ),
}


def user_has_permission(user: StaffUser | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    return permission_key in ROLE_PERMISSIONS.get((user.role or "").lower(), frozenset())


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: StaffUser | None = getattr(g, "current_user", None)
            # Unauthenticated → redirect to login.
            if not user or not user.is_active:
                nxt = request.full_path or request.path
                # Avoid trailing '?' from full_path when there is no query string.
                if nxt.endswith("?"):
                    nxt = nxt[:-1]
                return redirect(url_for("auth.login_get", next=nxt))
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator

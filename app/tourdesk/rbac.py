from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, jsonify

from app.tourdesk.models import User


def permission_keys(user: User | None) -> set[str]:
    """Every permission granted through the user's roles, e.g. {"tour_queries.edit", "whatsapp.send"}."""
    if not user or not user.is_active:
        return set()
    return {p.key for role in user.roles for p in role.permissions}


def user_has_permission(user: User | None, permission_key: str) -> bool:
    return permission_key in permission_keys(user)


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Guard an /api route. No session: 401 so the admin UI sends the agent back to login.
    Signed in without the key: 403 naming the missing permission.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                return jsonify({"error": "Unauthenticated"}), 401
            if permission_key not in permission_keys(user):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator

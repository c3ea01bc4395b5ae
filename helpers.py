"""
Shared helpers used across blueprints.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, current_app, request
from flask_login import current_user

from auth import login_manager


def current_user_id() -> int:
    """Return the authenticated user's id. Never taken from the request body."""
    return current_user.id


def admin_required(f: Callable) -> Callable:
    """Decorator that requires an authenticated admin."""
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        if not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)
    return decorated


def self_or_admin(f: Callable) -> Callable:
    """Decorator for /users/<user_id> routes: the owner or an admin only."""
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        if kwargs.get("user_id") != current_user.id and not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)
    return decorated


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def _positive_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer") from None
    if value < 1:
        raise ValueError(f"{name} must be >= 1")
    return value


def paginate_args(default_limit: int | None = None, max_limit: int | None = None) -> tuple[int, int]:
    """Extract page/limit from request.args. Returns (page, limit).

    Malformed or non-positive values raise ValueError; limit is capped at
    ``max_limit``.
    """
    if default_limit is None:
        default_limit = current_app.config.get("LEADERBOARD_PAGE_SIZE", 50)
    if max_limit is None:
        max_limit = current_app.config.get("LEADERBOARD_MAX_PAGE_SIZE", 100)
    page = _positive_arg("page", 1)
    limit = min(max_limit, _positive_arg("limit", default_limit))
    return page, limit


def paginated_response(items: list, total: int, page: int, limit: int) -> dict:
    """Standard pagination envelope."""
    return {
        "items": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": max(1, (total + limit - 1) // limit),
        },
    }

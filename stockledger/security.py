"""Role checks applied to the JSON views."""

from __future__ import annotations

from functools import wraps

from flask_login import current_user

from stockledger.errors import AuthorizationError
from stockledger.extensions import login_manager
from stockledger.permissions import resolve_roles


def require_roles(*role_names: str):
    """Reject the request unless the logged-in user holds one of ``role_names``.

    Runs before the view touches the database, so a caller without the role
    never learns whether the addressed record exists.
    """

    allowed = tuple(dict.fromkeys(name for name in role_names if name))

    def decorator(view_func):
        @wraps(view_func)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return login_manager.unauthorized()
            if allowed and not current_user.has_any_role(allowed):
                raise AuthorizationError()
            return view_func(*args, **kwargs)

        return wrapped

    return decorator


def require_access(module: str, action: str = "view"):
    """Guard a view with the roles configured for ``module``/``action``."""

    return require_roles(*resolve_roles(module, action))


def current_actor() -> str | None:
    """Username recorded in audit notes for the current request."""

    if not current_user.is_authenticated:
        return None
    return current_user.username

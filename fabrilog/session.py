"""The signed-in user, carried explicitly through the Flask session."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, session, url_for

from fabrilog.models import ROLE_ADMIN, ROLE_CLERK

SESSION_KEY = "user"


@dataclass(frozen=True)
class UserSession:
    id: Any
    name: str
    cedula: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def load(cls) -> "UserSession | None":
        """Return the session stored in the signed cookie, if any."""

        payload = session.get(SESSION_KEY)
        if not isinstance(payload, dict):
            return None
        try:
            return cls(
                id=payload["id"],
                name=payload.get("name") or "",
                cedula=payload.get("cedula") or "",
                role=payload["role"],
            )
        except KeyError:
            return None

    def save(self) -> None:
        session.clear()
        session[SESSION_KEY] = asdict(self)
        session.permanent = True

    @staticmethod
    def clear() -> None:
        session.pop(SESSION_KEY, None)
        session.clear()


def current_user() -> UserSession | None:
    """Return the user for the current request, cached on ``g``."""

    if "current_user" not in g:
        g.current_user = UserSession.load()
    return g.current_user


def _wants_json() -> bool:
    return request.path.startswith("/api/") or request.accept_mimetypes.best == "application/json"


def login_required(view):
    @wraps(view)
    def wrapped_view(**kwargs):
        if current_user() is None:
            if _wants_json():
                abort(401, description="Authentication required")
            return redirect(url_for("auth.login"))
        return view(**kwargs)

    return wrapped_view


def _role_required(allowed_roles: set[str]):
    def decorator(view):
        @wraps(view)
        def wrapped_view(**kwargs):
            user = current_user()
            if user is None:
                if _wants_json():
                    abort(401, description="Authentication required")
                return redirect(url_for("auth.login"))
            if user.role not in allowed_roles:
                abort(403)
            return view(**kwargs)

        return wrapped_view

    return decorator


admin_required = _role_required({ROLE_ADMIN})
staff_required = _role_required({ROLE_ADMIN, ROLE_CLERK})

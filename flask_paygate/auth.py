"""Session-based authentication helpers and view guards."""

from __future__ import annotations

import logging
from functools import wraps

from flask import current_app, flash, g, jsonify, redirect, request, session, url_for

logger = logging.getLogger(__name__)

SESSION_KEY = "user_id"
_G_KEY = "_paygate_user"


def _ext():
    return current_app.extensions["paygate"]


def login_user(user) -> None:
    """Start an authenticated session for *user*."""
    session.clear()
    session[SESSION_KEY] = user.id
    g.pop(_G_KEY, None)
    logger.info("User %s logged in", user.id)


def logout_user() -> None:
    user_id = session.get(SESSION_KEY)
    session.clear()
    g.pop(_G_KEY, None)
    if user_id is not None:
        logger.info("User %s logged out", user_id)


def current_user():
    """Return the logged-in :class:`~flask_paygate.models.User` or ``None``.

    The user is loaded once per app context and cached on :data:`flask.g`,
    keyed by the session's user id.
    """
    user_id = session.get(SESSION_KEY)
    if user_id is None:
        return None
    cached = g.get(_G_KEY)
    if cached is not None and cached[0] == user_id:
        return cached[1]
    user = _ext().get_user(user_id)
    setattr(g, _G_KEY, (user_id, user))
    return user


def is_admin(user) -> bool:
    return user is not None and bool(user.is_admin)


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if current_user() is None:
            flash("Please log in first.", "warning")
            return redirect(url_for("auth.login"))
        return fn(*args, **kwargs)

    return wrapper


def deny_admin_access():
    """Response returned to anyone who fails the admin check."""
    if request.is_json or request.accept_mimetypes.best == "application/json":
        return jsonify({"error": "Unauthorized access"}), 403
    flash("Unauthorized access", "error")
    return redirect(url_for("main.welcome"))


def admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = current_user()
        if not is_admin(user):
            logger.warning(
                "Denied admin access to %s for user %s",
                request.path,
                user.id if user is not None else "anonymous",
            )
            return deny_admin_access()
        return fn(*args, **kwargs)

    return wrapper

from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for

from app.backoffice.api_client import ApiError, error_message, get_client
from app.backoffice.audit import record_event
from app.backoffice.db import db_session
from app.backoffice.identity import (
    clear_session,
    current_staff_user,
    ensure_fresh_session,
    login_with_credentials,
    start_session,
)
from app.backoffice.security import safe_next_path
from app.backoffice.utils import clean_text, is_valid_email

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_MIN_PASSWORD_LENGTH = 6


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    for key in list(_login_attempts):
        recent = [t for t in _login_attempts[key] if t > cutoff]
        if recent:
            _login_attempts[key] = recent
        else:
            del _login_attempts[key]
    return len(_login_attempts.get(ip, ())) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def validate_login_payload(email: str, password: str) -> list[str]:
    errors = []
    if not is_valid_email(email):
        errors.append("Enter a valid email.")
    if len(password) < _MIN_PASSWORD_LENGTH:
        errors.append(f"Enter at least {_MIN_PASSWORD_LENGTH} characters.")
    return errors


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie, renewing the access
    token when it is about to expire. Also assigns a per-request request_id.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    user = current_staff_user()
    if not user:
        return

    leeway = int(current_app.config.get("TOKEN_REFRESH_LEEWAY_SECONDS") or 0)
    if not ensure_fresh_session(get_client(), leeway_seconds=leeway):
        current_app.logger.info("Session expired for %s (request_id=%s)", user.email, g.request_id)
        clear_session()
        flash("Your session has expired. Please sign in again.", "warning")
        return
    g.current_user = user


@bp.get("/login")
def login_get():
    if getattr(g, "current_user", None):
        return redirect(url_for("admin.index"))
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt, email="")


@bp.post("/login")
def login_post():
    email = clean_text(request.form.get("email")).lower()
    password = request.form.get("password") or ""
    nxt = clean_text(request.form.get("next"))
    ip = request.remote_addr or "unknown"

    errors = validate_login_payload(email, password)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("auth/login.html", next=nxt, email=email), 400

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)
    s = db_session()
    try:
        data = login_with_credentials(get_client(), email, password)
    except ApiError as e:
        current_app.logger.info("Login rejected (email=%s status=%s request_id=%s)", email, e.status, g.request_id)
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials" if e.status in (400, 401, 403) else f"API error {e.status}",
            metadata={"email": email},
        )
        s.commit()
        message = error_message(e)
        if e.status in (400, 401, 403) and message.startswith("Request failed"):
            message = "Invalid email or password."
        flash(message, "danger")
        return render_template("auth/login.html", next=nxt, email=email), 401

    user = start_session(data, email)
    _login_attempts.pop(ip, None)
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=email)
    s.commit()
    return redirect(safe_next_path(nxt) or url_for("admin.index"))


@bp.get("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=user.email)
        s.commit()
    clear_session()
    return redirect(url_for("auth.login_get"))

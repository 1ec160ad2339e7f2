import logging
from datetime import timedelta

from flask import Flask, flash, g, redirect, render_template, request, session, url_for
from dotenv import load_dotenv
from jinja2 import Undefined
from sqlalchemy import inspect as sa_inspect

from app.backoffice.api_client import ApiAuthError, ApiError, ApiUnavailable, error_message, init_api_client
from app.backoffice.config import load_config
from app.backoffice.db import init_db, teardown_db_session
from app.backoffice.routes import bp as routes_bp
from app.backoffice.auth import bp as auth_bp, load_current_user
from app.backoffice.admin import bp as admin_bp
from app.backoffice.modules.courses.admin import bp as courses_bp
from app.backoffice.modules.lessons.admin import bp as lessons_bp
from app.backoffice.modules.classes.admin import bp as classes_bp
from app.backoffice.modules.users.admin import bp as users_bp

logger = logging.getLogger(__name__)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=int(app.config.get("SESSION_LIFETIME_HOURS") or 8))
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    from app.backoffice.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.backoffice.rbac import user_has_permission

        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        return {"has_perm": has_perm, "current_user": getattr(g, "current_user", None)}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        from app.backoffice.utils import parse_datetime

        if isinstance(value, Undefined) or not value:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        parsed = parse_datetime(value)
        return parsed.strftime(format) if parsed else str(value)

    @app.template_filter("datetimeformat")
    def _datetimeformat_filter(value, format: str = "%Y-%m-%d %H:%M") -> str:
        return _dateformat_filter(value, format)

    @app.template_filter("timeformat")
    def _timeformat_filter(value) -> str:
        from app.backoffice.utils import format_time

        return format_time(value)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Login posts before any session exists.
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not str(app.config.get("API_URL") or "").startswith("https://"):
            raise RuntimeError("API_URL must be an https:// URL in production.")

    init_db(app)
    init_api_client(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(courses_bp, url_prefix="/admin")
    app.register_blueprint(lessons_bp, url_prefix="/admin")
    app.register_blueprint(classes_bp, url_prefix="/admin")
    app.register_blueprint(users_bp, url_prefix="/admin")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    # The audit table is the only local schema; warn (don't block) when it is missing.
    try:
        engine = app.extensions["sqlalchemy_engine"]
        if not sa_inspect(engine).has_table("audit_events"):
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: audit_events (table)")
    except Exception as e:
        app.logger.exception("Schema health check failed: %s", e)

    @app.errorhandler(ApiAuthError)
    def _err_api_auth(e):  # type: ignore[no-redef]
        from app.backoffice.identity import clear_session

        app.logger.info("API rejected session (request_id=%s)", getattr(g, "request_id", None))
        clear_session()
        flash("Your session has expired. Please sign in again.", "warning")
        nxt = request.full_path.rstrip("?") if request.method == "GET" else None
        return redirect(url_for("auth.login_get", next=nxt))

    @app.errorhandler(ApiError)
    def _err_api(e):  # type: ignore[no-redef]
        if e.status == 404 and not isinstance(e, ApiUnavailable):
            return render_template("errors/404.html"), 404
        app.logger.error("API error on %s %s: %s (request_id=%s)", request.method, request.path, e, getattr(g, "request_id", None))
        return render_template("errors/502.html", message=error_message(e)), 502

    @app.errorhandler(400)
    def _err_400(e):  # type: ignore[no-redef]
        return render_template("errors/400.html", message=getattr(e, "description", None)), 400

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        flash("File too large. Maximum size is 50MB.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("admin.index")), 302

    logger.info("create_app() complete; app ready to serve")

    return app

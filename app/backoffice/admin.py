from flask import Blueprint, render_template, request

from app.backoffice.db import db_session
from app.backoffice.identity import api
from app.backoffice.models import AuditEvent
from app.backoffice.modules.dashboard.service import get_summary, group_week_calendar, total_students
from app.backoffice.rbac import require_permission
from app.backoffice.utils import Pagination, clean_text, parse_positive_int

bp = Blueprint("admin", __name__)

AUDIT_PAGE_SIZE = 50


@bp.get("/")
@require_permission("dashboard.view")
def index():
    summary = get_summary(api())
    return render_template(
        "admin/index.html",
        summary=summary,
        week_days=group_week_calendar(summary["week_calendar"]),
        students_total=total_students(summary["students_by_active_class"]),
    )


@bp.get("/audit")
@require_permission("audit.view")
def audit_list():
    s = db_session()
    action = clean_text(request.args.get("action"))
    actor = clean_text(request.args.get("actor")).lower()
    page = parse_positive_int(request.args.get("page"), 1) or 1

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"{action}%"))
    if actor:
        q = q.filter(AuditEvent.actor_email.ilike(f"%{actor}%"))

    count = q.count()
    events = (
        q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
        .offset((page - 1) * AUDIT_PAGE_SIZE)
        .limit(AUDIT_PAGE_SIZE)
        .all()
    )
    pagination = Pagination(page=page, page_size=AUDIT_PAGE_SIZE, count=count)
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor=actor,
        pagination=pagination,
    )

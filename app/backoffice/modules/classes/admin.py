from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.backoffice.api_client import ApiAuthError, ApiError, error_message
from app.backoffice.constants import CLASS_ACTIVE_FILTERS, PAGE_SIZE_OPTIONS, SUBSCRIPTION_STATUSES
from app.backoffice.db import db_session
from app.backoffice.identity import StaffUser, api
from app.backoffice.modules.classes.service import (
    count_by_status,
    create_subscription,
    delete_subscription,
    format_days,
    get_class,
    list_classes,
    list_subscriptions,
    search_student_profiles,
    update_subscription_status,
)
from app.backoffice.rbac import require_permission
from app.backoffice.utils import Pagination, clean_text, parse_page_size, parse_positive_int

bp = Blueprint("classes", __name__)


def _current_user() -> StaffUser:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _back_to_class(class_id: int):
    return redirect(url_for("classes.class_detail", class_id=class_id))


# ---------- List ----------
@bp.get("/classes")
@require_permission("classes.view")
def classes_list():
    search = clean_text(request.args.get("search"))
    is_active = clean_text(request.args.get("is_active"))
    if is_active not in CLASS_ACTIVE_FILTERS:
        is_active = ""
    page_size = parse_page_size(request.args.get("page_size"))
    page = parse_positive_int(request.args.get("page"), 1) or 1

    data = list_classes(api(), search=search, is_active=is_active, page_size=page_size, page=page)
    return render_template(
        "admin/classes/list.html",
        classes=data.get("results") or [],
        pagination=Pagination.from_envelope(data, page=page, page_size=page_size),
        search=search,
        is_active=is_active,
        active_filters=CLASS_ACTIVE_FILTERS,
        page_size=page_size,
        page_size_options=PAGE_SIZE_OPTIONS,
        format_days=format_days,
    )


# ---------- Detail ----------
@bp.get("/classes/<int:class_id>")
@require_permission("classes.view")
def class_detail(class_id: int):
    client = api()
    student_search = clean_text(request.args.get("student_search"))
    lookup = clean_text(request.args.get("lookup"))

    klass = get_class(client, class_id)
    subscriptions = list_subscriptions(client, class_id, search=student_search)
    return render_template(
        "admin/classes/detail.html",
        klass=klass,
        days_label=format_days(klass.get("days_of_week")),
        subscriptions=subscriptions,
        status_counts=count_by_status(subscriptions),
        statuses=SUBSCRIPTION_STATUSES,
        student_search=student_search,
        lookup=lookup,
        lookup_results=search_student_profiles(client, lookup) if lookup else None,
    )


# ---------- Subscriptions ----------
@bp.post("/classes/<int:class_id>/subscriptions")
@require_permission("subscriptions.edit")
def subscription_create(class_id: int):
    student_profile_id = parse_positive_int(request.form.get("student_profile"))
    if not student_profile_id:
        flash("Select a student to enroll.", "danger")
        return _back_to_class(class_id)

    s = db_session()
    try:
        create_subscription(s, api(), class_id, student_profile_id, _current_user())
    except ApiAuthError:
        raise
    except ApiError as e:
        flash(f"Could not enroll student: {error_message(e)}", "danger")
        return _back_to_class(class_id)
    s.commit()

    flash("Student enrolled.", "success")
    return _back_to_class(class_id)


@bp.post("/classes/<int:class_id>/subscriptions/<int:subscription_id>/status")
@require_permission("subscriptions.edit")
def subscription_status(class_id: int, subscription_id: int):
    status = clean_text(request.form.get("status"))
    if status not in SUBSCRIPTION_STATUSES:
        flash(f"Invalid status. Must be one of: {', '.join(SUBSCRIPTION_STATUSES)}", "danger")
        return _back_to_class(class_id)

    s = db_session()
    try:
        update_subscription_status(s, api(), class_id, subscription_id, status, _current_user())
    except ApiAuthError:
        raise
    except ApiError as e:
        flash(f"Could not update status: {error_message(e)}", "danger")
        return _back_to_class(class_id)
    s.commit()

    flash(f"Status changed to {SUBSCRIPTION_STATUSES[status]}.", "success")
    return _back_to_class(class_id)


@bp.get("/classes/<int:class_id>/subscriptions/<int:subscription_id>/delete")
@require_permission("subscriptions.edit")
def subscription_delete_get(class_id: int, subscription_id: int):
    client = api()
    subscriptions = list_subscriptions(client, class_id)
    subscription = next((sub for sub in subscriptions if sub.get("id") == subscription_id), None)
    if subscription is None:
        abort(404)
    return render_template(
        "admin/classes/delete_subscription.html",
        klass=get_class(client, class_id),
        subscription=subscription,
    )


@bp.post("/classes/<int:class_id>/subscriptions/<int:subscription_id>/delete")
@require_permission("subscriptions.edit")
def subscription_delete_post(class_id: int, subscription_id: int):
    s = db_session()
    try:
        delete_subscription(s, api(), class_id, subscription_id, _current_user())
    except ApiAuthError:
        raise
    except ApiError as e:
        flash(f"Could not remove subscription: {error_message(e)}", "danger")
        return _back_to_class(class_id)
    s.commit()

    flash("Subscription removed.", "success")
    return _back_to_class(class_id)

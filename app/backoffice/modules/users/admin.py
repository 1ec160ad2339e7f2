from __future__ import annotations

from typing import Any

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.backoffice.api_client import ApiAuthError, ApiError, error_message
from app.backoffice.constants import PAGE_SIZE_OPTIONS, USER_ROLE_FILTERS
from app.backoffice.db import db_session
from app.backoffice.identity import StaffUser, api
from app.backoffice.modules.courses.service import list_language_levels, list_languages
from app.backoffice.modules.users.service import (
    full_name,
    get_user,
    language_label,
    level_options,
    list_users,
    student_profile_payload,
    teacher_profile_payload,
    update_student_profile,
    update_teacher_profile,
    update_user,
    user_payload_from_form,
    validate_user_payload,
)
from app.backoffice.rbac import require_permission
from app.backoffice.utils import Pagination, clean_text, parse_page_size, parse_positive_int

bp = Blueprint("users", __name__)


def _current_user() -> StaffUser:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


# ---------- List ----------
@bp.get("/users")
@require_permission("users.view")
def users_list():
    search = clean_text(request.args.get("search"))
    role = clean_text(request.args.get("role"))
    if role not in USER_ROLE_FILTERS:
        role = ""
    page_size = parse_page_size(request.args.get("page_size"))
    page = parse_positive_int(request.args.get("page"), 1) or 1

    data = list_users(api(), search=search, role=role, page_size=page_size, page=page)
    return render_template(
        "admin/users/list.html",
        users=data.get("results") or [],
        pagination=Pagination.from_envelope(data, page=page, page_size=page_size),
        search=search,
        role=role,
        roles=USER_ROLE_FILTERS,
        page_size=page_size,
        page_size_options=PAGE_SIZE_OPTIONS,
        full_name=full_name,
        language_label=language_label,
    )


@bp.get("/students")
@require_permission("users.view")
def students_list():
    return redirect(url_for("users.users_list", role="student"))


# ---------- Detail ----------
@bp.get("/users/<int:user_id>")
@require_permission("users.view")
def user_detail(user_id: int):
    user = get_user(api(), user_id)
    return render_template(
        "admin/users/detail.html",
        user=user,
        name=full_name(user),
        language_label=language_label,
    )


# ---------- Edit ----------
def _render_edit(user: dict[str, Any], form: dict[str, Any] | None = None, status: int = 200):
    client = api()
    languages = list_languages(client)
    levels = list_language_levels(client) if user.get("teacher_profile") else []
    return (
        render_template(
            "admin/users/edit.html",
            user=user,
            name=full_name(user),
            form=form or user,
            languages=languages,
            level_options=level_options(levels, languages),
        ),
        status,
    )


@bp.get("/users/<int:user_id>/edit")
@require_permission("users.edit")
def user_edit_get(user_id: int):
    return _render_edit(get_user(api(), user_id))


@bp.post("/users/<int:user_id>/edit")
@require_permission("users.edit")
def user_edit_post(user_id: int):
    client = api()
    payload = user_payload_from_form(request.form)
    errors = validate_user_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_edit(get_user(client, user_id), {**request.form.to_dict()}, 400)

    s = db_session()
    try:
        update_user(s, client, user_id, payload, _current_user())
    except ApiAuthError:
        raise
    except ApiError as e:
        flash(f"Could not update user: {error_message(e)}", "danger")
        return _render_edit(get_user(client, user_id), {**request.form.to_dict()}, 400)
    s.commit()

    flash("User updated.", "success")
    return redirect(url_for("users.user_detail", user_id=user_id))


@bp.post("/users/<int:user_id>/teacher-profile")
@require_permission("users.edit")
def teacher_profile_post(user_id: int):
    client = api()
    user = get_user(client, user_id)
    profile = user.get("teacher_profile")
    if not profile:
        abort(404)

    try:
        payload = teacher_profile_payload(request.form, user_id)
    except ValueError as e:
        flash(str(e), "danger")
        return redirect(url_for("users.user_edit_get", user_id=user_id))

    s = db_session()
    try:
        update_teacher_profile(s, client, profile["id"], payload, _current_user())
    except ApiAuthError:
        raise
    except ApiError as e:
        flash(f"Could not update teacher profile: {error_message(e)}", "danger")
        return redirect(url_for("users.user_edit_get", user_id=user_id))
    s.commit()

    flash("Teacher profile updated.", "success")
    return redirect(url_for("users.user_detail", user_id=user_id))


@bp.post("/users/<int:user_id>/student-profile")
@require_permission("users.edit")
def student_profile_post(user_id: int):
    client = api()
    user = get_user(client, user_id)
    profile = user.get("student_profile")
    if not profile:
        abort(404)

    payload = student_profile_payload(request.form, user_id)
    s = db_session()
    try:
        update_student_profile(s, client, profile["id"], payload, _current_user())
    except ApiAuthError:
        raise
    except ApiError as e:
        flash(f"Could not update student profile: {error_message(e)}", "danger")
        return redirect(url_for("users.user_edit_get", user_id=user_id))
    s.commit()

    flash("Student profile updated.", "success")
    return redirect(url_for("users.user_detail", user_id=user_id))

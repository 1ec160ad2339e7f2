from __future__ import annotations

from typing import Any

from flask import Blueprint, flash, g, redirect, render_template, request, url_for

from app.backoffice.api_client import ApiAuthError, ApiError, error_message
from app.backoffice.constants import PAGE_SIZE_OPTIONS
from app.backoffice.db import db_session
from app.backoffice.identity import StaffUser, api
from app.backoffice.modules.courses.service import (
    course_payload_from_form,
    create_course,
    create_course_module,
    get_course,
    languages_by_id,
    levels_for_language,
    list_courses,
    list_language_levels,
    list_languages,
    list_modules,
    PartialSaveError,
    modules_from_ids,
    move_module,
    remove_module,
    update_course,
    validate_course_payload,
)
from app.backoffice.rbac import require_permission
from app.backoffice.utils import Pagination, clean_text, next_order, parse_int_list, parse_page_size, parse_positive_int

bp = Blueprint("courses", __name__)


def _current_user() -> StaffUser:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


# ---------- List ----------
@bp.get("/courses")
@require_permission("courses.view")
def courses_list():
    client = api()
    search = clean_text(request.args.get("search"))
    language_ids = parse_int_list(request.args.getlist("language"))
    page_size = parse_page_size(request.args.get("page_size"))
    page = parse_positive_int(request.args.get("page"), 1) or 1
    view = "grid" if request.args.get("view") == "grid" else "list"

    data = list_courses(client, search=search, language_ids=language_ids, page=page, page_size=page_size)
    languages = list_languages(client)

    return render_template(
        "admin/courses/list.html",
        courses=data.get("results") or [],
        pagination=Pagination.from_envelope(data, page=page, page_size=page_size),
        languages=languages,
        language_map=languages_by_id(languages),
        selected_language_ids=language_ids,
        search=search,
        page_size=page_size,
        page_size_options=PAGE_SIZE_OPTIONS,
        view=view,
    )


# ---------- New ----------
def _render_new(payload: dict[str, Any], status: int = 200):
    client = api()
    levels = list_language_levels(client)
    return (
        render_template(
            "admin/courses/new.html",
            payload=payload,
            languages=list_languages(client),
            levels=levels_for_language(levels, payload.get("language")),
            modules=list_modules(client),
        ),
        status,
    )


@bp.get("/courses/new")
@require_permission("courses.edit")
def courses_new_get():
    payload = {
        "name": "",
        "language": parse_positive_int(request.args.get("language")),
        "level": None,
        "description": None,
        "modules": [],
    }
    return _render_new(payload)


@bp.post("/courses/new")
@require_permission("courses.edit")
def courses_new_post():
    client = api()
    payload = course_payload_from_form(request.form)

    errors = validate_course_payload(payload, list_language_levels(client))
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_new(payload, 400)

    s = db_session()
    try:
        course = create_course(s, client, payload, _current_user())
    except ApiAuthError:
        raise
    except ApiError as e:
        flash(f"Could not create course: {error_message(e)}", "danger")
        return _render_new(payload, 400)
    s.commit()

    flash("Course created.", "success")
    if course.get("id"):
        return redirect(url_for("courses.course_detail", course_id=course["id"]))
    return redirect(url_for("courses.courses_list"))


# ---------- Detail ----------
@bp.get("/courses/<int:course_id>")
@require_permission("courses.view")
def course_detail(course_id: int):
    client = api()
    course = get_course(client, course_id)
    return render_template(
        "admin/courses/detail.html",
        course=course,
        next_module_order=next_order(course["modules"]),
    )


# ---------- Edit ----------
def _render_edit(course: dict[str, Any], payload: dict[str, Any], modules: list[dict[str, Any]], status: int = 200):
    client = api()
    levels = list_language_levels(client)
    return (
        render_template(
            "admin/courses/edit.html",
            course=course,
            payload=payload,
            modules=modules,
            languages=list_languages(client),
            levels=levels_for_language(levels, payload.get("language")),
        ),
        status,
    )


@bp.get("/courses/<int:course_id>/edit")
@require_permission("courses.edit")
def course_edit_get(course_id: int):
    course = get_course(api(), course_id)
    payload = {
        "name": course.get("name") or "",
        "language": course.get("language"),
        "level": course.get("level"),
        "description": course.get("description"),
    }
    return _render_edit(course, payload, course["modules"])


@bp.post("/courses/<int:course_id>/edit")
@require_permission("courses.edit")
def course_edit_post(course_id: int):
    action = clean_text(request.form.get("action")) or "save"
    if action == "cancel":
        return redirect(url_for("courses.course_detail", course_id=course_id))

    client = api()
    course = get_course(client, course_id)
    payload = course_payload_from_form(request.form)
    modules = modules_from_ids(course["modules"], parse_int_list(request.form.getlist("module_ids")))

    # Reordering and removal only change the form state until "save".
    verb, _, raw_id = action.partition(":")
    module_id = parse_positive_int(raw_id)
    if verb in ("move_up", "move_down", "remove") and module_id:
        if verb == "remove":
            modules = remove_module(modules, module_id)
        else:
            modules = move_module(modules, module_id, -1 if verb == "move_up" else 1)
        return _render_edit(course, payload, modules)

    errors = validate_course_payload(payload, list_language_levels(client))
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_edit(course, payload, modules, 400)

    s = db_session()
    try:
        update_course(s, client, course, payload, modules, _current_user())
    except ApiAuthError:
        s.commit()
        raise
    except PartialSaveError as e:
        s.commit()
        flash(f"{e}: {error_message(e.cause)}", "warning")
        return redirect(url_for("courses.course_detail", course_id=course_id))
    except ApiError as e:
        flash(f"Could not save course: {error_message(e)}", "danger")
        return _render_edit(course, payload, modules, 400)
    s.commit()

    flash("Course updated.", "success")
    return redirect(url_for("courses.course_detail", course_id=course_id))


# ---------- Modules ----------
@bp.post("/courses/<int:course_id>/modules")
@require_permission("courses.edit")
def course_module_create(course_id: int):
    client = api()
    course = get_course(client, course_id)
    name = clean_text(request.form.get("name"))
    raw_order = clean_text(request.form.get("order"))
    order = parse_positive_int(raw_order) if raw_order else next_order(course["modules"])

    if not name:
        flash("Module name is required.", "danger")
        return redirect(url_for("courses.course_detail", course_id=course_id))
    if not order:
        flash("Order must be a positive number.", "danger")
        return redirect(url_for("courses.course_detail", course_id=course_id))

    s = db_session()
    try:
        create_course_module(s, client, course, name, order, _current_user())
    except ApiAuthError:
        s.commit()
        raise
    except PartialSaveError as e:
        s.commit()
        flash(f"{e}: {error_message(e.cause)}", "warning")
        return redirect(url_for("courses.course_detail", course_id=course_id))
    except ApiError as e:
        flash(f"Could not create module: {error_message(e)}", "danger")
        return redirect(url_for("courses.course_detail", course_id=course_id))
    s.commit()

    flash("Module created.", "success")
    return redirect(url_for("courses.course_detail", course_id=course_id))

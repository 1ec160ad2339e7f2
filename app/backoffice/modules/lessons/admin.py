from __future__ import annotations

from typing import Any

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.backoffice.api_client import ApiAuthError, ApiError, error_message
from app.backoffice.constants import EXERCISE_CATEGORIES, EXERCISE_DIFFICULTIES, LESSON_TYPES
from app.backoffice.db import db_session
from app.backoffice.identity import StaffUser, api
from app.backoffice.modules.lessons.service import (
    clear_draft,
    create_lesson,
    draft_has_details,
    get_exercise,
    get_lesson,
    get_module,
    lesson_details_from_form,
    list_exercises,
    list_exercises_simple,
    list_module_lessons,
    load_draft,
    save_draft,
    update_lesson,
    upload_files,
    validate_lesson_details,
)
from app.backoffice.rbac import require_permission, user_has_permission
from app.backoffice.utils import clean_text, next_order, parse_positive_int

bp = Blueprint("lessons", __name__)


def _current_user() -> StaffUser:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _exercise_filters() -> dict[str, str]:
    return {
        "search": clean_text(request.args.get("search")),
        "difficulty_level": clean_text(request.args.get("difficulty_level")),
        "category": clean_text(request.args.get("category")),
    }


# ---------- Module detail ----------
@bp.get("/modules/<int:module_id>")
@require_permission("lessons.view")
def module_detail(module_id: int):
    client = api()
    search = clean_text(request.args.get("search"))
    lesson_type = clean_text(request.args.get("lesson_type"))
    module = get_module(client, module_id)
    lessons = list_module_lessons(client, module_id, search=search, lesson_type=lesson_type)
    return render_template(
        "admin/modules/detail.html",
        module=module,
        lessons=lessons,
        search=search,
        lesson_type=lesson_type if lesson_type in LESSON_TYPES else "",
        lesson_types=LESSON_TYPES,
        draft=load_draft(module_id),
    )


# ---------- Lesson wizard ----------
@bp.get("/modules/<int:module_id>/lessons/new")
@require_permission("lessons.edit")
def lesson_new(module_id: int):
    return redirect(url_for("lessons.lesson_new_details_get", module_id=module_id))


@bp.get("/modules/<int:module_id>/lessons/new/details")
@require_permission("lessons.edit")
def lesson_new_details_get(module_id: int):
    client = api()
    module = get_module(client, module_id)
    draft = load_draft(module_id)
    if not draft.get("order"):
        draft["order"] = next_order(list_module_lessons(client, module_id))
    draft.setdefault("lesson_type", "live")
    return render_template(
        "admin/lessons/new_details.html",
        module=module,
        draft=draft,
        lesson_types=LESSON_TYPES,
        step=1,
    )


@bp.post("/modules/<int:module_id>/lessons/new/details")
@require_permission("lessons.edit")
def lesson_new_details_post(module_id: int):
    details = lesson_details_from_form(request.form)
    errors = validate_lesson_details(details)
    if errors:
        for e in errors:
            flash(e, "danger")
        module = get_module(api(), module_id)
        return (
            render_template(
                "admin/lessons/new_details.html",
                module=module,
                draft=details,
                lesson_types=LESSON_TYPES,
                step=1,
            ),
            400,
        )
    draft = load_draft(module_id)
    draft.update(details)
    save_draft(module_id, draft)
    return redirect(url_for("lessons.lesson_new_exercise_get", module_id=module_id))


@bp.get("/modules/<int:module_id>/lessons/new/exercise")
@require_permission("lessons.edit")
def lesson_new_exercise_get(module_id: int):
    draft = load_draft(module_id)
    if not draft_has_details(draft):
        return redirect(url_for("lessons.lesson_new_details_get", module_id=module_id))

    client = api()
    filters = _exercise_filters()
    preview_id = parse_positive_int(request.args.get("exercise"))
    return render_template(
        "admin/lessons/new_exercise.html",
        module=get_module(client, module_id),
        draft=draft,
        filters=filters,
        exercises=list_exercises(client, **filters),
        preview=get_exercise(client, preview_id) if preview_id else None,
        difficulties=EXERCISE_DIFFICULTIES,
        categories=EXERCISE_CATEGORIES,
        step=2,
    )


@bp.post("/modules/<int:module_id>/lessons/new/exercise")
@require_permission("lessons.edit")
def lesson_new_exercise_post(module_id: int):
    draft = load_draft(module_id)
    if not draft_has_details(draft):
        return redirect(url_for("lessons.lesson_new_details_get", module_id=module_id))

    if request.form.get("action") == "skip":
        draft["exercise_id"] = None
        draft["exercise_name"] = None
    else:
        exercise_id = parse_positive_int(request.form.get("exercise_id"))
        if not exercise_id:
            flash("Select an exercise or continue without one.", "danger")
            return redirect(url_for("lessons.lesson_new_exercise_get", module_id=module_id))
        draft["exercise_id"] = exercise_id
        draft["exercise_name"] = clean_text(request.form.get("exercise_name")) or f"#{exercise_id}"
    save_draft(module_id, draft)
    return redirect(url_for("lessons.lesson_new_confirm_get", module_id=module_id))


@bp.get("/modules/<int:module_id>/lessons/new/confirm")
@require_permission("lessons.edit")
def lesson_new_confirm_get(module_id: int):
    draft = load_draft(module_id)
    if not draft_has_details(draft):
        return redirect(url_for("lessons.lesson_new_details_get", module_id=module_id))
    return render_template(
        "admin/lessons/new_confirm.html",
        module=get_module(api(), module_id),
        draft=draft,
        lesson_types=LESSON_TYPES,
        step=3,
    )


@bp.post("/modules/<int:module_id>/lessons/new/confirm")
@require_permission("lessons.edit")
def lesson_new_confirm_post(module_id: int):
    draft = load_draft(module_id)
    if not draft_has_details(draft):
        flash("Fill in the lesson details first.", "warning")
        return redirect(url_for("lessons.lesson_new_details_get", module_id=module_id))

    s = db_session()
    try:
        lesson = create_lesson(s, api(), module_id, draft, upload_files(request.files), _current_user())
    except ApiAuthError:
        raise
    except ApiError as e:
        flash(f"Could not create lesson: {error_message(e)}", "danger")
        return redirect(url_for("lessons.lesson_new_confirm_get", module_id=module_id))
    s.commit()
    clear_draft(module_id)

    flash("Lesson created.", "success")
    if lesson.get("id"):
        return redirect(url_for("lessons.lesson_detail", module_id=module_id, lesson_id=lesson["id"]))
    return redirect(url_for("lessons.module_detail", module_id=module_id))


@bp.post("/modules/<int:module_id>/lessons/new/cancel")
@require_permission("lessons.edit")
def lesson_new_cancel(module_id: int):
    clear_draft(module_id)
    return redirect(url_for("lessons.module_detail", module_id=module_id))


# ---------- Lesson detail / edit ----------
def _render_lesson(module_id: int, lesson_id: int, *, edit: bool, status: int = 200):
    client = api()
    lesson = get_lesson(client, lesson_id)
    if lesson.get("module") not in (None, module_id):
        abort(404)
    lessons = list_module_lessons(client, module_id)
    exercise: Any = lesson.get("exercise")
    return (
        render_template(
            "admin/lessons/detail.html",
            module=get_module(client, module_id),
            lesson=lesson,
            lessons=lessons,
            exercise=exercise if isinstance(exercise, dict) else None,
            edit=edit,
            exercises=list_exercises_simple(client) if edit else [],
            lesson_types=LESSON_TYPES,
        ),
        status,
    )


@bp.get("/modules/<int:module_id>/lessons/<int:lesson_id>")
@require_permission("lessons.view")
def lesson_detail(module_id: int, lesson_id: int):
    edit = request.args.get("edit") == "1"
    if edit and not _can_edit():
        abort(403)
    return _render_lesson(module_id, lesson_id, edit=edit)


def _can_edit() -> bool:
    return user_has_permission(getattr(g, "current_user", None), "lessons.edit")


@bp.post("/modules/<int:module_id>/lessons/<int:lesson_id>/edit")
@require_permission("lessons.edit")
def lesson_edit_post(module_id: int, lesson_id: int):
    s = db_session()
    try:
        update_lesson(
            s,
            api(),
            lesson_id,
            name=clean_text(request.form.get("name")),
            exercise_id=parse_positive_int(request.form.get("exercise")),
            files=upload_files(request.files, ("content",)),
            user=_current_user(),
        )
    except ApiAuthError:
        raise
    except ApiError as e:
        flash(f"Could not save lesson: {error_message(e)}", "danger")
        return redirect(url_for("lessons.lesson_detail", module_id=module_id, lesson_id=lesson_id, edit=1))
    s.commit()

    flash("Lesson updated.", "success")
    return redirect(url_for("lessons.lesson_detail", module_id=module_id, lesson_id=lesson_id))


# ---------- Exercises ----------
@bp.get("/exercises")
@require_permission("lessons.view")
def exercises_list():
    filters = _exercise_filters()
    return render_template(
        "admin/exercises/list.html",
        exercises=list_exercises(api(), **filters),
        filters=filters,
        difficulties=EXERCISE_DIFFICULTIES,
        categories=EXERCISE_CATEGORIES,
    )


@bp.get("/exercises/<int:exercise_id>")
@require_permission("lessons.view")
def exercise_detail(exercise_id: int):
    return render_template(
        "admin/exercises/detail.html",
        exercise=get_exercise(api(), exercise_id),
        difficulties=EXERCISE_DIFFICULTIES,
        categories=EXERCISE_CATEGORIES,
    )

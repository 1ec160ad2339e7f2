from __future__ import annotations

from typing import TYPE_CHECKING, Any

from flask import session
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from app.backoffice.audit import record_event
from app.backoffice.constants import EXERCISE_CATEGORIES, EXERCISE_DIFFICULTIES, LESSON_TYPES
from app.backoffice.utils import clean_text, parse_positive_int, results_of

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.backoffice.identity import StaffUser, UserApi

LESSON_DRAFTS_KEY = "lesson_drafts"
LESSON_FILE_FIELDS = ("support_material", "content")


# ---------- Modules and lessons ----------
def get_module(client: "UserApi", module_id: int) -> dict[str, Any]:
    return client.get(f"/dashboard/modules/{module_id}/") or {}


def sort_lessons(lessons: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(lessons, key=lambda lesson: (lesson.get("order") or 0, lesson.get("id") or 0))


def list_module_lessons(client: "UserApi", module_id: int, *, search: str = "", lesson_type: str = "") -> list[dict[str, Any]]:
    if lesson_type not in LESSON_TYPES:
        lesson_type = ""
    data = client.get(
        f"/dashboard/modules/{module_id}/lessons/",
        params={"search": search, "lesson_type": lesson_type},
    )
    return sort_lessons(results_of(data))


def get_lesson(client: "UserApi", lesson_id: int) -> dict[str, Any]:
    return client.get(f"/dashboard/lessons/{lesson_id}/") or {}


# ---------- Exercises ----------
def list_exercises(
    client: "UserApi",
    *,
    search: str = "",
    difficulty_level: str = "",
    category: str = "",
) -> list[dict[str, Any]]:
    data = client.get(
        "/dashboard/exercises/",
        params={
            "search": search,
            "difficulty_level": difficulty_level if difficulty_level in EXERCISE_DIFFICULTIES else "",
            "category": category if category in EXERCISE_CATEGORIES else "",
        },
    )
    return results_of(data)


def list_exercises_simple(client: "UserApi") -> list[dict[str, Any]]:
    return results_of(client.get("/dashboard/exercises/simple/"))


def get_exercise(client: "UserApi", exercise_id: int) -> dict[str, Any]:
    return client.get(f"/dashboard/exercises/{exercise_id}/") or {}


# ---------- Creation draft ----------
def load_draft(module_id: int) -> dict[str, Any]:
    drafts = session.get(LESSON_DRAFTS_KEY) or {}
    return dict(drafts.get(str(module_id)) or {})


def save_draft(module_id: int, draft: dict[str, Any]) -> None:
    drafts = dict(session.get(LESSON_DRAFTS_KEY) or {})
    drafts[str(module_id)] = draft
    session[LESSON_DRAFTS_KEY] = drafts


def clear_draft(module_id: int) -> None:
    drafts = dict(session.get(LESSON_DRAFTS_KEY) or {})
    if drafts.pop(str(module_id), None) is not None:
        session[LESSON_DRAFTS_KEY] = drafts


def draft_has_details(draft: dict[str, Any]) -> bool:
    return bool(draft.get("name") and draft.get("order"))


def lesson_details_from_form(form: Any) -> dict[str, Any]:
    return {
        "name": clean_text(form.get("name")),
        "description": clean_text(form.get("description")),
        "order": parse_positive_int(form.get("order")),
        "lesson_type": clean_text(form.get("lesson_type")) or "live",
        "is_weekly": form.get("is_weekly") in ("1", "true", "on"),
    }


def validate_lesson_details(details: dict[str, Any]) -> list[str]:
    """Validate step one of the lesson wizard. Returns list of errors."""
    errors = []
    if not details.get("name"):
        errors.append("Name is required.")
    if not details.get("order"):
        errors.append("Order must be a positive number.")
    if details.get("lesson_type") not in LESSON_TYPES:
        errors.append(f"Invalid modality. Must be one of: {', '.join(LESSON_TYPES)}")
    return errors


def _as_form_bool(value: Any) -> str:
    return "true" if value else "false"


def _exercise_value(exercise_id: Any) -> str:
    # The API reads the literal string "null" as "no exercise".
    return str(exercise_id) if exercise_id else "null"


def lesson_form_data(draft: dict[str, Any], module_id: int) -> dict[str, str]:
    return {
        "name": draft["name"],
        "description": draft.get("description") or "",
        "order": str(draft["order"]),
        "lesson_type": draft.get("lesson_type") or "live",
        "exercise": _exercise_value(draft.get("exercise_id")),
        "is_weekly": _as_form_bool(draft.get("is_weekly")),
        "module": str(module_id),
    }


def upload_files(files: Any, fields: tuple[str, ...] = LESSON_FILE_FIELDS) -> dict[str, tuple[str, Any, str]]:
    """Non-empty uploads from the request as `requests` multipart file tuples."""
    out: dict[str, tuple[str, Any, str]] = {}
    for field in fields:
        f: FileStorage | None = files.get(field) if files else None
        if not f or not f.filename:
            continue
        out[field] = (secure_filename(f.filename) or field, f.stream, f.mimetype or "application/octet-stream")
    return out


def create_lesson(
    s: "Session",
    client: "UserApi",
    module_id: int,
    draft: dict[str, Any],
    files: dict[str, tuple[str, Any, str]],
    user: "StaffUser",
) -> dict[str, Any]:
    lesson = client.post("/dashboard/lessons/", data=lesson_form_data(draft, module_id), files=files or None) or {}
    record_event(
        s,
        actor=user,
        action="lesson.create",
        entity_type="Lesson",
        entity_id=str(lesson.get("id") or ""),
        metadata={
            "module_id": module_id,
            "name": draft["name"],
            "lesson_type": draft.get("lesson_type"),
            "exercise_id": draft.get("exercise_id"),
            "files": sorted(files),
        },
    )
    return lesson


def update_lesson(
    s: "Session",
    client: "UserApi",
    lesson_id: int,
    *,
    name: str,
    exercise_id: int | None,
    files: dict[str, tuple[str, Any, str]],
    user: "StaffUser",
) -> dict[str, Any]:
    data: dict[str, str] = {}
    if name:
        data["name"] = name
    data["exercise"] = _exercise_value(exercise_id)
    lesson = client.patch(f"/dashboard/lessons/{lesson_id}/", data=data, files=files or None) or {}
    record_event(
        s,
        actor=user,
        action="lesson.update",
        entity_type="Lesson",
        entity_id=str(lesson_id),
        metadata={"name": name or None, "exercise_id": exercise_id, "files": sorted(files)},
    )
    return lesson

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from app.backoffice.api_client import ApiAuthError, ApiError
from app.backoffice.audit import record_event
from app.backoffice.utils import clean_text, optional_text, parse_int_list, parse_positive_int, results_of

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.backoffice.identity import StaffUser, UserApi


class PartialSaveError(Exception):
    """The first API write went through, a follow-up write was rejected."""

    def __init__(self, message: str, cause: ApiError):
        super().__init__(message)
        self.cause = cause


# ---------- Reference data ----------
def list_languages(client: "UserApi") -> list[dict[str, Any]]:
    return results_of(client.get("/languages/simple/"))


def list_language_levels(client: "UserApi") -> list[dict[str, Any]]:
    return results_of(client.get("/dashboard/language-levels/"))


def list_modules(client: "UserApi") -> list[dict[str, Any]]:
    return results_of(client.get("/dashboard/modules/"))


def languages_by_id(languages: list[dict[str, Any]]) -> dict[int, dict[str, Any]]:
    return {lang["id"]: lang for lang in languages if isinstance(lang.get("id"), int)}


def levels_for_language(levels: list[dict[str, Any]], language_id: int | None) -> list[dict[str, Any]]:
    if not language_id:
        return levels
    return [level for level in levels if level.get("language") == language_id]


# ---------- Courses ----------
def list_courses(
    client: "UserApi",
    *,
    search: str = "",
    language_ids: list[int] | None = None,
    page: int = 1,
    page_size: int = 20,
) -> dict[str, Any]:
    data = client.get(
        "/dashboard/courses/",
        params={
            "search": search,
            "language": language_ids or [],
            "page_size": page_size,
            "page": page,
        },
    )
    return data if isinstance(data, dict) else {"count": 0, "next": None, "previous": None, "results": results_of(data)}


def get_course(client: "UserApi", course_id: int) -> dict[str, Any]:
    course = client.get(f"/dashboard/courses/{course_id}/") or {}
    course["modules"] = sort_modules(course.get("modules") or [])
    return course


def sort_modules(modules: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(modules, key=lambda m: (m.get("order") or 0, m.get("id") or 0))


def course_payload_from_form(form: Any) -> dict[str, Any]:
    """Normalize the create/edit form into the API payload shape (not yet validated)."""
    return {
        "name": clean_text(form.get("name")),
        "language": parse_positive_int(form.get("language")),
        "level": parse_positive_int(form.get("level")),
        "description": optional_text(form.get("description")),
        "modules": parse_int_list(form.getlist("modules")) if hasattr(form, "getlist") else [],
    }


def validate_course_payload(payload: dict[str, Any], levels: list[dict[str, Any]]) -> list[str]:
    """Validate course creation/update payload. Returns list of errors."""
    errors = []
    if not payload.get("name"):
        errors.append("Name is required.")
    language = payload.get("language")
    level = payload.get("level")
    if not language:
        errors.append("Language is required.")
    if not level:
        errors.append("Level is required.")
    if language and level and levels:
        allowed = {lvl.get("id") for lvl in levels_for_language(levels, language)}
        if level not in allowed:
            errors.append("Level does not belong to the selected language.")
    return errors


def create_course(s: "Session", client: "UserApi", payload: dict[str, Any], user: "StaffUser") -> dict[str, Any]:
    body = {
        "name": payload["name"],
        "language": payload["language"],
        "level": payload["level"],
        "description": payload.get("description"),
        "is_active": True,
        "modules": list(payload.get("modules") or []),
    }
    course = client.post("/dashboard/courses/", json=body) or {}
    record_event(
        s,
        actor=user,
        action="course.create",
        entity_type="Course",
        entity_id=str(course.get("id") or ""),
        metadata={"name": body["name"], "language": body["language"], "level": body["level"]},
    )
    return course


# ---------- Module list editing ----------
def renumber(modules: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [{**m, "order": index + 1} for index, m in enumerate(modules)]


def move_module(modules: list[dict[str, Any]], module_id: int, offset: int) -> list[dict[str, Any]]:
    """Move one module up (offset -1) or down (+1); orders are renumbered 1..n."""
    ids = [m.get("id") for m in modules]
    if module_id not in ids:
        return modules
    index = ids.index(module_id)
    target = index + offset
    if target < 0 or target >= len(modules):
        return renumber(modules)
    updated = list(modules)
    moved = updated.pop(index)
    updated.insert(target, moved)
    return renumber(updated)


def remove_module(modules: list[dict[str, Any]], module_id: int) -> list[dict[str, Any]]:
    return renumber([m for m in modules if m.get("id") != module_id])


def modules_from_ids(original: list[dict[str, Any]], ids: list[int]) -> list[dict[str, Any]]:
    """Rebuild the edited module list from the ids the form posted back, in that order."""
    by_id = {m.get("id"): m for m in original}
    return renumber([by_id[i] for i in ids if i in by_id])


def changed_orders(original: list[dict[str, Any]], edited: list[dict[str, Any]]) -> list[tuple[int, int]]:
    before = {m.get("id"): m.get("order") for m in original}
    return [(m["id"], m["order"]) for m in edited if before.get(m["id"]) != m["order"]]


def update_course(
    s: "Session",
    client: "UserApi",
    course: dict[str, Any],
    payload: dict[str, Any],
    modules: list[dict[str, Any]],
    user: "StaffUser",
) -> dict[str, Any]:
    """
    PATCH the course with its ordered module ids, then push changed module orders.

    Each write is audited as soon as the API accepts it. When the course was saved
    but a module order was rejected, PartialSaveError is raised so the caller can
    keep the events already recorded.
    """
    course_id = course["id"]
    body = {
        "name": payload["name"],
        "language": payload["language"],
        "level": payload["level"],
        "description": payload.get("description"),
        "is_active": course.get("is_active", True),
        "modules": [m["id"] for m in modules],
    }
    updated = client.patch(f"/dashboard/courses/{course_id}/", json=body) or {}

    reordered = changed_orders(course.get("modules") or [], modules)
    removed = sorted({m.get("id") for m in course.get("modules") or []} - set(body["modules"]))
    record_event(
        s,
        actor=user,
        action="course.update",
        entity_type="Course",
        entity_id=str(course_id),
        metadata={
            "name": body["name"],
            "modules": body["modules"],
            "reordered": [module_id for module_id, _ in reordered],
            "removed": removed,
        },
    )

    for module_id, order in reordered:
        try:
            client.patch(f"/dashboard/modules/{module_id}/", json={"order": order})
        except ApiAuthError:
            raise
        except ApiError as e:
            raise PartialSaveError("Course saved, but the module order could not be updated", e) from e
        record_event(
            s,
            actor=user,
            action="module.update",
            entity_type="Module",
            entity_id=str(module_id),
            metadata={"order": order, "course_id": course_id},
        )
    return updated


def create_course_module(
    s: "Session",
    client: "UserApi",
    course: dict[str, Any],
    name: str,
    order: int,
    user: "StaffUser",
) -> dict[str, Any]:
    """Create a module and attach it to the course's module list."""
    module = client.post("/dashboard/modules/", json={"name": name, "order": order}) or {}
    module_id = module.get("id")
    record_event(
        s,
        actor=user,
        action="module.create",
        entity_type="Module",
        entity_id=str(module_id or ""),
        metadata={"name": name, "order": order, "course_id": course["id"]},
    )
    if not module_id:
        return module

    module_ids = [m["id"] for m in course.get("modules") or []] + [module_id]
    try:
        client.patch(
            f"/dashboard/courses/{course['id']}/",
            json={
                "name": course.get("name"),
                "language": course.get("language"),
                "level": course.get("level"),
                "description": course.get("description"),
                "is_active": course.get("is_active", True),
                "modules": module_ids,
            },
        )
    except ApiAuthError:
        raise
    except ApiError as e:
        raise PartialSaveError("Module created, but it could not be attached to the course", e) from e
    record_event(
        s,
        actor=user,
        action="course.update",
        entity_type="Course",
        entity_id=str(course["id"]),
        metadata={"modules": module_ids, "attached": module_id},
    )
    return module

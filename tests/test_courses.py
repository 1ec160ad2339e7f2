import json

import pytest

from app.backoffice.db import session_scope
from app.backoffice.models import AuditEvent
from app.backoffice.modules.courses.service import changed_orders, move_module, remove_module

LANGUAGES = [{"id": 1, "name": "English", "lang_icon": None}, {"id": 2, "name": "Spanish", "lang_icon": None}]
LEVELS = {
    "count": 2,
    "next": None,
    "previous": None,
    "results": [{"id": 5, "language": 1, "level": "A1"}, {"id": 6, "language": 2, "level": "B1"}],
}
MODULES = {
    "count": 2,
    "next": None,
    "previous": None,
    "results": [{"id": 3, "name": "Mod C", "order": 3}, {"id": 4, "name": "Mod D", "order": 1}],
}
COURSE = {
    "id": 10,
    "name": "English A1",
    "language": 1,
    "language_name": "English",
    "language_icon": None,
    "level": 5,
    "level_name": "A1",
    "student_classes_total": 2,
    "subscriptions_total": 9,
    "description": None,
    "is_active": False,
    "modules": [
        {"id": 2, "name": "Mod B", "order": 2, "lessons_total": 0},
        {"id": 1, "name": "Mod A", "order": 1, "lessons_total": 3},
        {"id": 3, "name": "Mod C", "order": 3, "lessons_total": 1},
    ],
}


@pytest.fixture()
def courses_api(api):
    api.add("GET", "/languages/simple/", LANGUAGES)
    api.add("GET", "/dashboard/language-levels/", LEVELS)
    api.add("GET", "/dashboard/modules/", MODULES)
    api.add("GET", "/dashboard/courses/10/", COURSE)
    return api


def _audit(app, action):
    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == action).one()
        return json.loads(ev.metadata_json or "{}"), ev


def test_courses_list_requires_auth(client):
    r = client.get("/admin/courses")
    assert r.status_code in (302, 403)


def test_courses_list_filters_and_language_names(client, courses_api, login):
    courses_api.add(
        "GET",
        "/dashboard/courses/",
        {
            "count": 1,
            "next": None,
            "previous": None,
            "results": [
                {"id": 10, "name": "English A1", "language": 1, "is_active": True, "modules": [1, 2], "updated_at": "2024-05-01T10:00:00Z"}
            ],
        },
    )
    login()
    r = client.get("/admin/courses?search=eng&language=1&page_size=25")
    assert r.status_code == 200
    assert b"English A1" in r.data
    assert b"2024-05-01" in r.data

    call = courses_api.calls_to("GET", "/dashboard/courses/")[0]
    # Unsupported page sizes fall back to the default
    assert call.params == {"search": "eng", "language": ["1"], "page_size": 20, "page": 1}

    r = client.get("/admin/courses?view=grid")
    assert b"course-card" in r.data


def test_create_course_rejects_level_from_other_language(client, courses_api, post, login):
    login()
    r = post("/admin/courses/new", {"name": "English A1", "language": "1", "level": "6"})
    assert r.status_code == 400
    assert b"Level does not belong to the selected language." in r.data
    assert courses_api.calls_to("POST", "/dashboard/courses/") == []


def test_create_course_requires_fields(client, courses_api, post, login):
    login()
    r = post("/admin/courses/new", {"name": "   "})
    assert r.status_code == 400
    assert b"Name is required." in r.data
    assert b"Language is required." in r.data
    assert b"Level is required." in r.data


def test_create_course_posts_payload_and_audits(client, app, courses_api, post, login):
    courses_api.add("POST", "/dashboard/courses/", {"id": 11, "name": "Spanish B1"}, status=201)
    login()
    r = post(
        "/admin/courses/new",
        {"name": "  Spanish B1 ", "language": "2", "level": "6", "description": "  ", "modules": ["4", "3"]},
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/admin/courses/11")

    call = courses_api.calls_to("POST", "/dashboard/courses/")[0]
    assert call.json == {
        "name": "Spanish B1",
        "language": 2,
        "level": 6,
        "description": None,
        "is_active": True,
        "modules": [4, 3],
    }
    meta, ev = _audit(app, "course.create")
    assert ev.entity_id == "11"
    assert meta["name"] == "Spanish B1"


def test_course_detail_sorts_modules(client, courses_api, login):
    login()
    r = client.get("/admin/courses/10")
    assert r.status_code == 200
    html = r.data.decode()
    assert html.index("Mod A") < html.index("Mod B") < html.index("Mod C")
    # Next module order suggestion
    assert 'value="4"' in html


def _edit_form(module_ids, action):
    return {
        "name": "English A1",
        "language": "1",
        "level": "5",
        "description": "",
        "module_ids": module_ids,
        "action": action,
    }


def test_edit_move_rerenders_without_api_writes(client, courses_api, post, login):
    login()
    r = post("/admin/courses/10/edit", _edit_form(["1", "2", "3"], "move_down:1"))
    assert r.status_code == 200
    html = r.data.decode()
    assert html.index("Mod B") < html.index("Mod A")
    assert not [c for c in courses_api.calls if c.method == "PATCH"]


def test_edit_remove_rerenders_without_module(client, courses_api, post, login):
    login()
    r = post("/admin/courses/10/edit", _edit_form(["1", "2", "3"], "remove:2"))
    assert r.status_code == 200
    assert b"Mod B" not in r.data
    assert not [c for c in courses_api.calls if c.method == "PATCH"]


def test_edit_save_patches_course_and_changed_module_orders(client, app, courses_api, post, login):
    courses_api.add("PATCH", "/dashboard/courses/10/", COURSE)
    courses_api.add("PATCH", "/dashboard/modules/1/", {"id": 1, "order": 2})
    courses_api.add("PATCH", "/dashboard/modules/2/", {"id": 2, "order": 1})
    login()

    r = post("/admin/courses/10/edit", _edit_form(["2", "1"], "save"))
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/admin/courses/10")

    course_call = courses_api.calls_to("PATCH", "/dashboard/courses/10/")[0]
    assert course_call.json == {
        "name": "English A1",
        "language": 1,
        "level": 5,
        "description": None,
        "is_active": False,
        "modules": [2, 1],
    }
    assert courses_api.calls_to("PATCH", "/dashboard/modules/2/")[0].json == {"order": 1}
    assert courses_api.calls_to("PATCH", "/dashboard/modules/1/")[0].json == {"order": 2}
    assert courses_api.calls_to("PATCH", "/dashboard/modules/3/") == []

    meta, _ = _audit(app, "course.update")
    assert meta["removed"] == [3]
    assert meta["modules"] == [2, 1]


def test_edit_save_keeps_audit_when_module_order_rejected(client, app, courses_api, post, login):
    courses_api.add("PATCH", "/dashboard/courses/10/", COURSE)
    courses_api.add("PATCH", "/dashboard/modules/2/", {"detail": "Invalid order."}, status=400)
    login()

    r = post("/admin/courses/10/edit", _edit_form(["2", "1"], "save"), follow_redirects=True)
    assert r.status_code == 200
    assert b"Course saved, but the module order could not be updated: Invalid order." in r.data

    assert len(courses_api.calls_to("PATCH", "/dashboard/courses/10/")) == 1
    assert courses_api.calls_to("PATCH", "/dashboard/modules/1/") == []
    meta, _ = _audit(app, "course.update")
    assert meta["modules"] == [2, 1]
    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "module.update").count() == 0


def test_edit_cancel_discards(client, courses_api, post, login):
    login()
    r = post("/admin/courses/10/edit", _edit_form(["2"], "cancel"))
    assert r.status_code == 302
    assert not [c for c in courses_api.calls if c.method == "PATCH"]


def test_add_module_attaches_to_course(client, app, courses_api, post, login):
    courses_api.add("POST", "/dashboard/modules/", {"id": 99, "name": "Mod E", "order": 4}, status=201)
    courses_api.add("PATCH", "/dashboard/courses/10/", COURSE)
    login()

    r = post("/admin/courses/10/modules", {"name": "Mod E", "order": ""})
    assert r.status_code == 302

    assert courses_api.calls_to("POST", "/dashboard/modules/")[0].json == {"name": "Mod E", "order": 4}
    assert courses_api.calls_to("PATCH", "/dashboard/courses/10/")[0].json["modules"] == [1, 2, 3, 99]
    meta, ev = _audit(app, "module.create")
    assert ev.entity_id == "99"
    assert meta["course_id"] == 10


def test_add_module_keeps_audit_when_attach_rejected(client, app, courses_api, post, login):
    courses_api.add("POST", "/dashboard/modules/", {"id": 99, "name": "Mod E", "order": 4}, status=201)
    courses_api.add("PATCH", "/dashboard/courses/10/", {"detail": "Course is locked."}, status=400)
    login()

    r = post("/admin/courses/10/modules", {"name": "Mod E", "order": ""}, follow_redirects=True)
    assert b"Module created, but it could not be attached to the course: Course is locked." in r.data

    meta, ev = _audit(app, "module.create")
    assert ev.entity_id == "99"
    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "course.update").count() == 0


def test_add_module_requires_name(client, courses_api, post, login):
    login()
    r = post("/admin/courses/10/modules", {"name": "", "order": "2"}, follow_redirects=True)
    assert b"Module name is required." in r.data
    assert courses_api.calls_to("POST", "/dashboard/modules/") == []


def test_staff_cannot_edit_courses(client, courses_api, login):
    login(role="staff")
    assert client.get("/admin/courses/10").status_code == 200
    assert client.get("/admin/courses/new").status_code == 403
    assert client.get("/admin/courses/10/edit").status_code == 403


def test_module_list_helpers():
    modules = [{"id": 1, "order": 1}, {"id": 2, "order": 2}, {"id": 3, "order": 3}]
    moved = move_module(modules, 3, -1)
    assert [(m["id"], m["order"]) for m in moved] == [(1, 1), (3, 2), (2, 3)]
    # Moving past either end keeps the order
    assert [m["id"] for m in move_module(modules, 1, -1)] == [1, 2, 3]
    assert [(m["id"], m["order"]) for m in remove_module(modules, 1)] == [(2, 1), (3, 2)]
    assert changed_orders(modules, moved) == [(3, 2), (2, 3)]

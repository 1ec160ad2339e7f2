import pytest

from app.backoffice.db import session_scope
from app.backoffice.models import AuditEvent
from app.backoffice.modules.users.service import full_name, language_label, parse_hourly_rate

TEACHER = {
    "id": 3,
    "username": "grace",
    "email": "grace@example.com",
    "first_name": "Grace",
    "last_name": "Hopper",
    "cpf": None,
    "date_of_birth": "1906-12-09",
    "gender": None,
    "role": "teatcher",
    "profile_pic": None,
    "languages": [{"id": 1, "name": "English", "lang_icon": None}],
    "student_profile": None,
    "teacher_profile": {
        "id": 30,
        "hourly_rate": "80.00",
        "lang_levels": [{"id": 5, "level": "A1", "language": {"id": 1, "name": "English"}}],
        "bio": "Navy",
        "cnpj": None,
    },
}
STUDENT = {
    "id": 4,
    "username": "ana",
    "email": "ana@example.com",
    "first_name": "Ana",
    "last_name": "Souza",
    "role": "student",
    "profile_pic": None,
    "languages": ["Spanish"],
    "student_profile": {"id": 40, "bio": None, "languages": [{"id": 2, "name": "Spanish"}]},
    "teacher_profile": None,
}


@pytest.fixture()
def users_api(api):
    api.add("GET", "/dashboard/users/3/", TEACHER)
    api.add("GET", "/dashboard/users/4/", STUDENT)
    api.add("GET", "/languages/simple/", [{"id": 1, "name": "English"}, {"id": 2, "name": "Spanish"}])
    api.add(
        "GET",
        "/dashboard/language-levels/",
        {"count": 2, "next": None, "previous": None, "results": [{"id": 5, "language": 1, "level": "A1"}, {"id": 6, "language": 2, "level": "B1"}]},
    )
    return api


def _event(app, action):
    with session_scope(app) as s:
        return s.query(AuditEvent).filter(AuditEvent.action == action).one()


def test_users_list_filters(client, users_api, login):
    users_api.add("GET", "/dashboard/users/", {"count": 2, "next": None, "previous": None, "results": [TEACHER, STUDENT]})
    login()
    r = client.get("/admin/users?role=teatcher&search=gr&page=1")
    assert r.status_code == 200
    assert b"Grace Hopper" in r.data
    assert b"Spanish" in r.data
    assert users_api.calls_to("GET", "/dashboard/users/")[0].params == {"search": "gr", "role": "teatcher", "page_size": 20, "page": 1}

    client.get("/admin/users?role=admin")
    assert "role" not in (users_api.calls_to("GET", "/dashboard/users/")[1].params or {})


def test_students_shortcut(client, users_api, login):
    login()
    r = client.get("/admin/students", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/admin/users?role=student")


def test_user_detail_shows_profiles(client, users_api, login):
    login()
    r = client.get("/admin/users/3")
    assert r.status_code == 200
    assert b"Teacher profile" in r.data
    assert b"80.00" in r.data
    assert b"English - A1" in r.data
    assert b"Student profile" not in r.data


def test_edit_account_sends_only_filled_fields(client, app, users_api, post, login):
    users_api.add("PATCH", "/dashboard/users/4/", STUDENT)
    login()
    r = post(
        "/admin/users/4/edit",
        {"username": "", "email": " Ana.Souza@Example.com ", "first_name": "Ana", "last_name": "", "date_of_birth": "2001-02-03"},
    )
    assert r.status_code == 302
    assert users_api.calls_to("PATCH", "/dashboard/users/4/")[0].json == {
        "email": "ana.souza@example.com",
        "first_name": "Ana",
        "date_of_birth": "2001-02-03",
    }
    assert _event(app, "user.update").entity_id == "4"


def test_edit_account_validation(client, users_api, post, login):
    login()
    r = post("/admin/users/4/edit", {"email": "nope", "date_of_birth": "03/02/2001"})
    assert r.status_code == 400
    assert b"Enter a valid email." in r.data
    assert b"Date of birth must be YYYY-MM-DD." in r.data
    assert users_api.calls_to("PATCH", "/dashboard/users/4/") == []

    r = post("/admin/users/4/edit", {})
    assert r.status_code == 400
    assert b"Nothing to update." in r.data


def test_edit_teacher_profile(client, app, users_api, post, login):
    users_api.add("PATCH", "/dashboard/teacher-profiles/30/", TEACHER["teacher_profile"])
    login()

    r = client.get("/admin/users/3/edit")
    assert r.status_code == 200
    assert b"English - A1" in r.data
    assert b"Spanish - B1" in r.data

    r = post(
        "/admin/users/3/teacher-profile",
        {"hourly_rate": "95,5", "lang_levels": ["5", "6"], "bio": "  ", "cnpj": "12.345.678/0001-90"},
    )
    assert r.status_code == 302
    assert users_api.calls_to("PATCH", "/dashboard/teacher-profiles/30/")[0].json == {
        "user_id": 3,
        "hourly_rate": "95.50",
        "lang_levels": [5, 6],
        "bio": None,
        "cnpj": "12.345.678/0001-90",
    }
    assert _event(app, "teacher_profile.update").entity_id == "30"


def test_edit_teacher_profile_rejects_bad_rate(client, users_api, post, login):
    login()
    r = post("/admin/users/3/teacher-profile", {"hourly_rate": "lots"}, follow_redirects=True)
    assert b"Hourly rate must be a number." in r.data
    assert users_api.calls_to("PATCH", "/dashboard/teacher-profiles/30/") == []


def test_edit_student_profile(client, app, users_api, post, login):
    users_api.add("PATCH", "/dashboard/student-profiles/40/", STUDENT["student_profile"])
    login()
    r = post("/admin/users/4/student-profile", {"bio": "Loves music", "languages": ["2", "1", "2"]})
    assert r.status_code == 302
    assert users_api.calls_to("PATCH", "/dashboard/student-profiles/40/")[0].json == {
        "user_id": 4,
        "bio": "Loves music",
        "languages": [2, 1],
    }
    assert _event(app, "student_profile.update").entity_id == "40"


def test_profile_update_for_missing_profile_is_404(client, users_api, post, login):
    login()
    assert post("/admin/users/4/teacher-profile", {"hourly_rate": "10"}).status_code == 404
    assert post("/admin/users/3/student-profile", {"bio": "x"}).status_code == 404


def test_staff_cannot_edit_users(client, users_api, post, login):
    login(role="staff")
    assert client.get("/admin/users/3").status_code == 200
    assert client.get("/admin/users/3/edit").status_code == 403
    assert post("/admin/users/3/edit", {"first_name": "G"}).status_code == 403


def test_user_helpers():
    assert full_name(TEACHER) == "Grace Hopper"
    assert full_name({"username": "ghost", "first_name": "", "last_name": ""}) == "ghost"
    assert language_label("Portuguese") == "Portuguese"
    assert language_label({"code": "fr"}) == "fr"
    assert language_label(None) == "-"
    assert parse_hourly_rate("") is None
    assert parse_hourly_rate("12") == "12.00"
    with pytest.raises(ValueError):
        parse_hourly_rate("-1")
    with pytest.raises(ValueError):
        parse_hourly_rate("NaN")

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from app.backoffice.audit import record_event
from app.backoffice.constants import USER_ROLE_FILTERS
from app.backoffice.utils import clean_text, is_valid_email, optional_text, parse_date, parse_int_list, results_of

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.backoffice.identity import StaffUser, UserApi

ACCOUNT_FIELDS = ("username", "email", "first_name", "last_name", "cpf", "date_of_birth", "gender")


def list_users(client: "UserApi", *, search: str = "", role: str = "", page_size: int = 20, page: int = 1) -> dict[str, Any]:
    data = client.get(
        "/dashboard/users/",
        params={
            "search": search,
            "role": role if role in USER_ROLE_FILTERS else "",
            "page_size": page_size,
            "page": page,
        },
    )
    return data if isinstance(data, dict) else {"count": 0, "next": None, "previous": None, "results": results_of(data)}


def get_user(client: "UserApi", user_id: int) -> dict[str, Any]:
    return client.get(f"/dashboard/users/{user_id}/") or {}


def full_name(user: dict[str, Any]) -> str:
    name = " ".join(p for p in (clean_text(user.get("first_name")), clean_text(user.get("last_name"))) if p)
    return name or clean_text(user.get("username")) or clean_text(user.get("email"))


def language_label(language: Any) -> str:
    """Languages come back either as objects or as plain strings."""
    if isinstance(language, str):
        return language
    if isinstance(language, dict):
        return clean_text(language.get("name")) or clean_text(language.get("code")) or "-"
    return "-"


def level_options(levels: list[dict[str, Any]], languages: list[dict[str, Any]]) -> list[tuple[int, str]]:
    names = {lang.get("id"): lang.get("name") for lang in languages}
    options = []
    for level in levels:
        lang = names.get(level.get("language")) or f"Language {level.get('language')}"
        options.append((level["id"], f"{lang} - {level.get('level')}"))
    return sorted(options, key=lambda o: o[1])


# ---------- Account ----------
def user_payload_from_form(form: Any) -> dict[str, str]:
    payload = {}
    for field in ACCOUNT_FIELDS:
        value = clean_text(form.get(field))
        if value:
            payload[field] = value.lower() if field == "email" else value
    return payload


def validate_user_payload(payload: dict[str, str]) -> list[str]:
    """Validate account update payload. Returns list of errors."""
    errors = []
    if not payload:
        errors.append("Nothing to update.")
    if "email" in payload and not is_valid_email(payload["email"]):
        errors.append("Enter a valid email.")
    if "date_of_birth" in payload:
        try:
            parse_date(payload["date_of_birth"])
        except ValueError:
            errors.append("Date of birth must be YYYY-MM-DD.")
    return errors


def update_user(s: "Session", client: "UserApi", user_id: int, payload: dict[str, str], actor: "StaffUser") -> dict[str, Any]:
    user = client.patch(f"/dashboard/users/{user_id}/", json=payload) or {}
    record_event(
        s,
        actor=actor,
        action="user.update",
        entity_type="User",
        entity_id=str(user_id),
        metadata={"fields": sorted(payload)},
    )
    return user


# ---------- Profiles ----------
def parse_hourly_rate(raw: Any) -> str | None:
    """Decimal string with two places, None when blank. Raises ValueError on junk."""
    text = clean_text(raw).replace(",", ".")
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation as e:
        raise ValueError("Hourly rate must be a number.") from e
    if not value.is_finite() or value < 0:
        raise ValueError("Hourly rate must be a positive number.")
    return str(value.quantize(Decimal("0.01")))


def teacher_profile_payload(form: Any, user_id: int) -> dict[str, Any]:
    return {
        "user_id": user_id,
        "hourly_rate": parse_hourly_rate(form.get("hourly_rate")),
        "lang_levels": parse_int_list(form.getlist("lang_levels")),
        "bio": optional_text(form.get("bio")),
        "cnpj": optional_text(form.get("cnpj")),
    }


def student_profile_payload(form: Any, user_id: int) -> dict[str, Any]:
    return {
        "user_id": user_id,
        "bio": optional_text(form.get("bio")),
        "languages": parse_int_list(form.getlist("languages")),
    }


def update_teacher_profile(s: "Session", client: "UserApi", profile_id: int, payload: dict[str, Any], actor: "StaffUser") -> dict[str, Any]:
    profile = client.patch(f"/dashboard/teacher-profiles/{profile_id}/", json=payload) or {}
    record_event(
        s,
        actor=actor,
        action="teacher_profile.update",
        entity_type="TeacherProfile",
        entity_id=str(profile_id),
        metadata={"user_id": payload["user_id"], "lang_levels": payload["lang_levels"]},
    )
    return profile


def update_student_profile(s: "Session", client: "UserApi", profile_id: int, payload: dict[str, Any], actor: "StaffUser") -> dict[str, Any]:
    profile = client.patch(f"/dashboard/student-profiles/{profile_id}/", json=payload) or {}
    record_event(
        s,
        actor=actor,
        action="student_profile.update",
        entity_type="StudentProfile",
        entity_id=str(profile_id),
        metadata={"user_id": payload["user_id"], "languages": payload["languages"]},
    )
    return profile

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from app.backoffice.audit import record_event
from app.backoffice.constants import CLASS_ACTIVE_FILTERS, DAYS_OF_WEEK, NOT_INFORMED, SUBSCRIPTION_STATUSES
from app.backoffice.utils import results_of

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.backoffice.identity import StaffUser, UserApi


def list_classes(client: "UserApi", *, search: str = "", is_active: str = "", page_size: int = 20, page: int = 1) -> dict[str, Any]:
    data = client.get(
        "/dashboard/student-classes/",
        params={
            "search": search,
            "is_active": is_active if is_active in CLASS_ACTIVE_FILTERS else "",
            "page_size": page_size,
            "page": page,
        },
    )
    return data if isinstance(data, dict) else {"count": 0, "next": None, "previous": None, "results": results_of(data)}


def get_class(client: "UserApi", class_id: int) -> dict[str, Any]:
    return client.get(f"/dashboard/student-classes/{class_id}/") or {}


def format_days(days: list[str] | None) -> str:
    if not days:
        return NOT_INFORMED
    return ", ".join(DAYS_OF_WEEK.get(day, day)[:3] for day in days)


def list_subscriptions(client: "UserApi", class_id: int, *, search: str = "") -> list[dict[str, Any]]:
    return results_of(client.get(f"/dashboard/subscriptions/by_class/{class_id}/", params={"search": search}))


def count_by_status(subscriptions: list[dict[str, Any]]) -> dict[str, int]:
    counts = {status: 0 for status in SUBSCRIPTION_STATUSES}
    for sub in subscriptions:
        status = sub.get("status")
        if status in counts:
            counts[status] += 1
    return counts


def search_student_profiles(client: "UserApi", term: str) -> list[dict[str, Any]]:
    term = (term or "").strip()
    if not term:
        return []
    return results_of(client.get("/dashboard/student-profiles/", params={"search": term}))


def create_subscription(s: "Session", client: "UserApi", class_id: int, student_profile_id: int, user: "StaffUser") -> dict[str, Any]:
    sub = client.post(
        "/dashboard/subscriptions/",
        json={"student_profile": student_profile_id, "student_class": class_id},
    ) or {}
    record_event(
        s,
        actor=user,
        action="subscription.create",
        entity_type="Subscription",
        entity_id=str(sub.get("id") or ""),
        metadata={"student_class": class_id, "student_profile": student_profile_id},
    )
    return sub


def update_subscription_status(
    s: "Session",
    client: "UserApi",
    class_id: int,
    subscription_id: int,
    status: str,
    user: "StaffUser",
) -> dict[str, Any]:
    if status not in SUBSCRIPTION_STATUSES:
        raise ValueError(f"Invalid status. Must be one of: {', '.join(SUBSCRIPTION_STATUSES)}")
    sub = client.patch(f"/dashboard/subscriptions/{subscription_id}/", json={"status": status}) or {}
    record_event(
        s,
        actor=user,
        action="subscription.status",
        entity_type="Subscription",
        entity_id=str(subscription_id),
        metadata={"student_class": class_id, "status": status},
    )
    return sub


def delete_subscription(s: "Session", client: "UserApi", class_id: int, subscription_id: int, user: "StaffUser") -> None:
    client.delete(f"/dashboard/subscriptions/{subscription_id}/")
    record_event(
        s,
        actor=user,
        action="subscription.delete",
        entity_type="Subscription",
        entity_id=str(subscription_id),
        metadata={"student_class": class_id},
    )

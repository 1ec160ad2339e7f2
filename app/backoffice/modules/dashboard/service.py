from __future__ import annotations

from collections import OrderedDict
from datetime import date
from typing import TYPE_CHECKING, Any

from app.backoffice.utils import parse_datetime

if TYPE_CHECKING:
    from app.backoffice.identity import UserApi

SUMMARY_PATH = "/dashboard/student-classes/summary/"


def get_summary(client: "UserApi") -> dict[str, Any]:
    data = client.get(SUMMARY_PATH)
    data = data if isinstance(data, dict) else {}
    return {
        "total_active_students": data.get("total_active_students") or 0,
        "total_active_classes": data.get("total_active_classes") or 0,
        "next_class": data.get("next_class"),
        "week_calendar": data.get("week_calendar") or [],
        "students_by_active_class": data.get("students_by_active_class") or [],
    }


def group_week_calendar(items: list[dict[str, Any]]) -> list[tuple[date | None, list[dict[str, Any]]]]:
    """Scheduled classes grouped by day, days and classes in chronological order."""
    dated = []
    undated = []
    for item in items:
        when = parse_datetime(item.get("scheduled_datetime"))
        if when is None:
            undated.append(item)
        else:
            dated.append((when, item))
    dated.sort(key=lambda pair: pair[0].replace(tzinfo=None))

    groups: "OrderedDict[date, list[dict[str, Any]]]" = OrderedDict()
    for when, item in dated:
        groups.setdefault(when.date(), []).append(item)
    out: list[tuple[date | None, list[dict[str, Any]]]] = list(groups.items())
    if undated:
        out.append((None, undated))
    return out


def total_students(rows: list[dict[str, Any]]) -> int:
    return sum(int(row.get("students_count") or 0) for row in rows)

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable
from urllib.parse import parse_qs, urlparse

from app.backoffice.constants import DEFAULT_PAGE_SIZE, NOT_INFORMED, PAGE_SIZE_OPTIONS

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def clean_text(raw: Any) -> str:
    return str(raw or "").strip()


def optional_text(raw: Any) -> str | None:
    """Trimmed text, or None when empty (the API expects null for blank optional fields)."""
    value = clean_text(raw)
    return value or None


def is_valid_email(raw: str | None) -> bool:
    return bool(EMAIL_RE.match(clean_text(raw)))


def parse_positive_int(raw: Any, default: int | None = None) -> int | None:
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def parse_int_list(values: Iterable[Any]) -> list[int]:
    """Positive ints from repeated form/query values, de-duplicated, order kept."""
    out: list[int] = []
    for raw in values:
        value = parse_positive_int(raw)
        if value is not None and value not in out:
            out.append(value)
    return out


def parse_page_size(raw: Any) -> int:
    value = parse_positive_int(raw, DEFAULT_PAGE_SIZE)
    return value if value in PAGE_SIZE_OPTIONS else DEFAULT_PAGE_SIZE


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD date string."""
    s = clean_text(s)
    if not s:
        return None
    return date.fromisoformat(s)


def parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    text = clean_text(value)
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def format_time(value: Any) -> str:
    """`HH:MM` from an API time string such as `19:30:00`."""
    text = clean_text(value)
    if not text:
        return NOT_INFORMED
    return text[:5] if len(text) >= 5 else text


def results_of(payload: Any) -> list[dict[str, Any]]:
    """Rows from either a bare list or a paginated `{count, next, previous, results}` envelope."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        rows = payload.get("results")
        return rows if isinstance(rows, list) else []
    return []


def next_order(items: Iterable[dict[str, Any]]) -> int:
    """One past the highest `order` among items (1 for an empty list)."""
    orders = [item.get("order") for item in items]
    numeric = [o for o in orders if isinstance(o, int) and not isinstance(o, bool)]
    return (max(numeric) if numeric else 0) + 1


def parse_page_from_url(url: str | None) -> int | None:
    if not url:
        return None
    try:
        values = parse_qs(urlparse(url).query).get("page")
    except ValueError:
        return None
    if not values:
        return None
    return parse_positive_int(values[0])


@dataclass(frozen=True)
class Pagination:
    page: int
    page_size: int
    count: int
    next_from_api: int | None = None
    previous_from_api: int | None = None

    @classmethod
    def from_envelope(cls, envelope: Any, *, page: int, page_size: int) -> "Pagination":
        envelope = envelope if isinstance(envelope, dict) else {}
        count = envelope.get("count")
        if not isinstance(count, int):
            count = len(results_of(envelope))
        return cls(
            page=page,
            page_size=page_size,
            count=count,
            next_from_api=parse_page_from_url(envelope.get("next")),
            previous_from_api=parse_page_from_url(envelope.get("previous")),
        )

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.count / self.page_size)) if self.page_size else 1

    @property
    def has_previous(self) -> bool:
        return self.previous_from_api is not None or self.page > 1

    @property
    def has_next(self) -> bool:
        return self.next_from_api is not None or self.page < self.total_pages

    @property
    def previous_page(self) -> int:
        return max(1, self.previous_from_api if self.previous_from_api is not None else self.page - 1)

    @property
    def next_page(self) -> int:
        return min(self.total_pages, self.next_from_api if self.next_from_api is not None else self.page + 1)

    @property
    def first_item(self) -> int:
        if self.count == 0:
            return 0
        return (self.page - 1) * self.page_size + 1

    @property
    def last_item(self) -> int:
        return min(self.count, self.page * self.page_size)

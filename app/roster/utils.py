from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timezone
from typing import Any

from werkzeug.datastructures import MultiDict

_BRACKET_KEY = re.compile(r"\[([^\]]*)\]")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def months_ago(months: int, now: datetime | None = None) -> datetime:
    """Same day-of-month `months` months back, clamped to the month's last day."""
    now = now or utcnow()
    total = now.year * 12 + (now.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def parse_date(s: str | None) -> date | None:
    """Parse a YYYY-MM-DD (HTML date input) or DD.MM.YYYY string; None when blank or invalid."""
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        pass
    try:
        return datetime.strptime(s, "%d.%m.%Y").date()
    except ValueError:
        return None


def nested_params(form: MultiDict, root: str) -> dict[str, Any]:
    """
    Collect Rails-style nested form fields below `root`.

    `role[type]=x&role[new_person][email]=y` -> {"type": "x", "new_person": {"email": "y"}}
    """
    out: dict[str, Any] = {}
    prefix = f"{root}["
    for key in form.keys():
        if not key.startswith(prefix):
            continue
        path = _BRACKET_KEY.findall(key[len(root):])
        if not path:
            continue
        node = out
        for part in path[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[path[-1]] = form.get(key)
    return out


def blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def safe_return_path(value: str | None) -> str | None:
    """Only allow local paths to avoid open redirects."""
    value = (value or "").strip()
    if value.startswith("/") and not value.startswith("//"):
        return value
    return None

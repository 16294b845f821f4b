from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from .errors import ValidationError

GROUP_KEY_SEPARATOR = ","

COPY_MARKERS = ("Copy", "_v2", "(Updated)")


def normalize_text(s: str) -> str:
    return " ".join(s.strip().lower().split())


def normalize_title(title: str) -> str:
    return normalize_text(title)


def has_copy_marker(title: str) -> bool:
    return any(marker in title for marker in COPY_MARKERS)


def is_empty(value: Any) -> bool:
    """True for None, blank strings and empty collections."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def compute_group_key(member_ids: Iterable[str]) -> str:
    """
    Stable identity for a duplicate group.

    The member set is sorted and joined, so the key ignores input order,
    repeated ids and whatever transient id the report assigned.
    """
    ids = set()
    for lesson_id in member_ids:
        if not isinstance(lesson_id, str) or not lesson_id.strip():
            raise ValidationError(f"Invalid lesson id in group: {lesson_id!r}")
        ids.add(lesson_id)
    if not ids:
        raise ValidationError("Cannot derive a group key from an empty member list")
    return GROUP_KEY_SEPARATOR.join(sorted(ids))


def split_group_key(group_key: str) -> list[str]:
    return [part for part in group_key.split(GROUP_KEY_SEPARATOR) if part]


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(ts: Any) -> Optional[datetime]:
    """Parse an ISO timestamp, returning None for missing or malformed values."""
    if ts is None:
        return None
    if isinstance(ts, datetime):
        return to_naive_utc(ts)
    if not isinstance(ts, str) or not ts.strip():
        return None
    text = ts.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return to_naive_utc(datetime.fromisoformat(text))
    except ValueError:
        return None

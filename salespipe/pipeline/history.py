from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | str | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    # SQLite hands timestamps back without tzinfo
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def build_entry(record: Any, to_status: str, changed_by: str, now: datetime | None = None) -> dict[str, Any]:
    """Stage-history entry for moving ``record`` from its current status to ``to_status``.

    ``duration_in_stage`` is milliseconds since the previous entry, or since the
    record was created when there is none, floored at zero.
    """
    now = now or utcnow()
    history = record.stage_history or []
    if history:
        since = _as_utc(history[-1].get("changed_at"))
    else:
        since = _as_utc(record.created_at) or _as_utc(record.updated_at)
    since = since or now
    duration = int((now - since).total_seconds() * 1000)
    return {
        "from_status": record.status,
        "to_status": to_status,
        "changed_by": changed_by,
        "changed_at": now.isoformat(),
        "duration_in_stage": max(duration, 0),
    }


def append_entry(record: Any, to_status: str, changed_by: str, now: datetime | None = None) -> dict[str, Any]:
    entry = build_entry(record, to_status, changed_by, now)
    # a new list so the JSON column registers the change
    record.stage_history = [*(record.stage_history or []), entry]
    return entry


def change_status(record: Any, to_status: str, changed_by: str, now: datetime | None = None) -> bool:
    """Set ``record.status`` and append history; a no-op when the status is unchanged."""
    if record.status == to_status:
        return False
    append_entry(record, to_status, changed_by, now)
    record.status = to_status
    return True

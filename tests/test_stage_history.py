from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from salespipe.pipeline.history import append_entry, build_entry, change_status


CREATED = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)


def _record(status: str = "new", **fields: object) -> SimpleNamespace:
    base: dict[str, object] = {"status": status, "stage_history": [], "created_at": CREATED, "updated_at": CREATED}
    base.update(fields)
    return SimpleNamespace(**base)


def test_first_entry_measures_from_creation() -> None:
    record = _record()

    entry = build_entry(record, "contacted", "Sales Rep", now=CREATED + timedelta(minutes=5))

    assert entry["from_status"] == "new"
    assert entry["to_status"] == "contacted"
    assert entry["changed_by"] == "Sales Rep"
    assert entry["duration_in_stage"] == 5 * 60 * 1000
    assert datetime.fromisoformat(entry["changed_at"]) == CREATED + timedelta(minutes=5)


def test_later_entries_measure_from_previous_change() -> None:
    record = _record()
    change_status(record, "contacted", "rep", now=CREATED + timedelta(hours=1))

    change_status(record, "qualified", "rep", now=CREATED + timedelta(hours=1, seconds=30))

    assert [entry["to_status"] for entry in record.stage_history] == ["contacted", "qualified"]
    assert record.stage_history[-1]["from_status"] == "contacted"
    assert record.stage_history[-1]["duration_in_stage"] == 30_000
    assert record.status == "qualified"


def test_clock_skew_floors_duration_at_zero() -> None:
    record = _record()

    entry = build_entry(record, "contacted", "rep", now=CREATED - timedelta(seconds=10))

    assert entry["duration_in_stage"] == 0


def test_naive_timestamps_are_read_as_utc() -> None:
    record = _record(created_at=CREATED.replace(tzinfo=None))

    entry = build_entry(record, "contacted", "rep", now=CREATED + timedelta(seconds=2))

    assert entry["duration_in_stage"] == 2000


def test_append_builds_a_new_list_and_keeps_old_entries() -> None:
    record = _record()
    change_status(record, "contacted", "rep", now=CREATED + timedelta(minutes=1))
    before = record.stage_history
    first = dict(before[0])

    append_entry(record, "qualified", "rep", now=CREATED + timedelta(minutes=2))

    assert record.stage_history is not before
    assert len(before) == 1
    assert record.stage_history[0] == first
    assert len(record.stage_history) == 2


def test_unchanged_status_writes_nothing() -> None:
    record = _record(status="qualified")

    assert change_status(record, "qualified", "rep") is False
    assert record.stage_history == []


def test_missing_history_is_treated_as_empty() -> None:
    record = _record(stage_history=None)

    assert change_status(record, "lost", "rep", now=CREATED + timedelta(seconds=1)) is True
    assert len(record.stage_history) == 1

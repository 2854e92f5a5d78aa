"""Tests for the attendance recorder."""
from __future__ import annotations

from datetime import datetime

import pytest

from client.attendance_recorder import AttendanceRecorder
from conftest import FixedClock, make_employee
from shared.db_helpers import LocalStore
from shared.errors import AlreadyClosed, EmployeeNotFound
from shared.models import RecordAction


@pytest.fixture
def recorder(store: LocalStore, clock: FixedClock) -> AttendanceRecorder:
    store.insert_employee(make_employee("E1", "Alice", is_synced=True))
    return AttendanceRecorder(store, "device-A", clock=clock)


def test_first_scan_logs_in(recorder: AttendanceRecorder, store: LocalStore):
    result = recorder.record_attendance("E1")

    assert result.action is RecordAction.LOGIN
    assert result.employee.name == "Alice"
    entry = store.get_attendance_by_key("E1", "2024-03-04")
    assert entry.login_time == "2024-03-04T09:00:00.000000"
    assert entry.logout_time is None
    assert entry.working_minutes is None
    assert entry.device_id == "device-A"
    assert entry.is_synced is False


def test_second_scan_logs_out_with_working_minutes(recorder, store, clock):
    recorder.record_attendance("E1")
    clock.set(datetime(2024, 3, 4, 17, 30, 0))

    result = recorder.record_attendance("E1")

    assert result.action is RecordAction.LOGOUT
    assert result.entry.working_minutes == 510
    entry = store.get_attendance_by_key("E1", "2024-03-04")
    assert entry.logout_time == "2024-03-04T17:30:00.000000"
    assert entry.working_minutes == 510
    assert entry.is_synced is False


def test_working_minutes_round_down(recorder, clock):
    recorder.record_attendance("E1")
    clock.advance(minutes=1, seconds=59)
    assert recorder.record_attendance("E1").entry.working_minutes == 1


def test_third_scan_rejected_without_mutation(recorder, store, clock):
    assert recorder.record_attendance("E1").action is RecordAction.LOGIN
    clock.set(datetime(2024, 3, 4, 17, 30, 0))
    assert recorder.record_attendance("E1").action is RecordAction.LOGOUT
    before = store.get_attendance_by_key("E1", "2024-03-04")

    clock.set(datetime(2024, 3, 4, 18, 0, 0))
    with pytest.raises(AlreadyClosed):
        recorder.record_attendance("E1")

    assert store.get_attendance_by_key("E1", "2024-03-04") == before


def test_unknown_employee(recorder, store):
    with pytest.raises(EmployeeNotFound):
        recorder.record_attendance("NOPE")
    with pytest.raises(EmployeeNotFound):
        recorder.record_attendance("   ")
    assert store.fetch_all_attendance() == []


def test_scanned_id_whitespace_is_ignored(recorder, store):
    assert recorder.record_attendance("E1\n").action is RecordAction.LOGIN
    assert store.get_attendance_by_key("E1", "2024-03-04") is not None


def test_at_most_one_entry_per_day(recorder, store, clock):
    for _ in range(2):
        recorder.record_attendance("E1")
        clock.advance(hours=4)
    for _ in range(3):
        with pytest.raises(AlreadyClosed):
            recorder.record_attendance("E1")

    clock.set(datetime(2024, 3, 5, 9, 0, 0))
    assert recorder.record_attendance("E1").action is RecordAction.LOGIN

    dates = [e.attendance_date for e in store.get_attendance_for_emp_id("E1")]
    assert sorted(dates) == ["2024-03-04", "2024-03-05"]


def test_logout_clears_synced_flag(recorder, store, clock):
    entry = recorder.record_attendance("E1").entry
    store.mark_attendance_synced(entry.id, "r-1", entry.updated_at)
    assert store.get_attendance(entry.id).is_synced is True

    clock.advance(hours=8)
    recorder.record_attendance("E1")

    stored = store.get_attendance(entry.id)
    assert stored.is_synced is False
    assert stored.remote_id == "r-1"


def test_active_session(recorder, clock):
    assert recorder.get_active_session("E1") is None
    recorder.record_attendance("E1")
    assert recorder.get_active_session("E1").emp_id == "E1"
    clock.advance(hours=1)
    recorder.record_attendance("E1")
    assert recorder.get_active_session("E1") is None


def test_device_id_required(store):
    with pytest.raises(ValueError):
        AttendanceRecorder(store, "")

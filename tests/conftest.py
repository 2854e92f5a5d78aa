"""Shared pytest fixtures."""
from __future__ import annotations

import itertools
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

# Keep data files (server DB, logs) out of the real user data directory
os.environ.setdefault("SCANCLOCK_DATA_DIR", tempfile.mkdtemp(prefix="scanclock-tests-"))

import pytest
from PyQt6.QtCore import QCoreApplication

from client.connectivity import ConnectivityMonitor
from client.sync_service import RemoteSyncService
from shared.db_helpers import LocalStore
from shared.errors import RemoteStoreError
from shared.models import NATURAL_KEYS, AttendanceEntry, ClientConfig, Employee


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    """A Qt core application must exist before QObjects with timers are created."""
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime):
        self.now = now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeRemoteStore:
    """In-memory remote store keyed by natural key, with failure injection."""

    def __init__(self):
        self.tables = {table: {} for table in NATURAL_KEYS}
        self._ids = itertools.count(1)
        self.upsert_calls = []
        self.fail_keys = set()       # {(table, natural_key_tuple)}
        self.list_failures = set()   # {table}
        self.on_upsert = None        # callback(table, record) run before storing
        self.online = True

    def upsert(self, table, natural_key_columns, record):
        assert tuple(natural_key_columns) == NATURAL_KEYS[table]
        key = tuple(record[column] for column in natural_key_columns)
        self.upsert_calls.append((table, key))

        if self.on_upsert is not None:
            self.on_upsert(table, record)
        if (table, key) in self.fail_keys:
            raise RemoteStoreError(f"upsert {table} {key} rejected", status_code=500)

        row = self.tables[table].get(key)
        if row is None:
            row = {"id": next(self._ids)}
            self.tables[table][key] = row
        row.update(record)
        return dict(row)

    def list_all(self, table):
        if table in self.list_failures:
            raise RemoteStoreError(f"list {table} failed", status_code=503)
        return [dict(row) for row in self.tables[table].values()]

    def ping(self):
        return self.online

    def update_config(self, config):
        pass

    def seed(self, table, record):
        """Put a row on the remote side directly, as another device would."""
        key = tuple(record[column] for column in NATURAL_KEYS[table])
        row = {"id": next(self._ids), **record}
        self.tables[table][key] = row
        return row


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 3, 4, 9, 0, 0))


@pytest.fixture
def store(tmp_path: Path) -> LocalStore:
    local_store = LocalStore(tmp_path / "scanclock-test.db")
    local_store.init_database()
    return local_store


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        server_url="http://remote.test",
        api_key="test-api-key",
        device_id="device-A",
    )


@pytest.fixture
def monitor() -> ConnectivityMonitor:
    return ConnectivityMonitor(initial_state=True)


@pytest.fixture
def sync_service(store, remote, monitor, config) -> RemoteSyncService:
    return RemoteSyncService(store, remote, monitor, config)


def make_employee(emp_id: str, name: str = None, **kwargs) -> Employee:
    return Employee(
        emp_id=emp_id,
        name=name or f"Employee {emp_id}",
        department=kwargs.pop("department", "Operations"),
        created_at=kwargs.pop("created_at", "2024-03-01T08:00:00.000000"),
        updated_at=kwargs.pop("updated_at", "2024-03-01T08:00:00.000000"),
        **kwargs,
    )


def make_attendance(emp_id: str, attendance_date: str = "2024-03-04", **kwargs) -> AttendanceEntry:
    login_time = kwargs.pop("login_time", f"{attendance_date}T09:00:00.000000")
    return AttendanceEntry(
        emp_id=emp_id,
        attendance_date=attendance_date,
        login_time=login_time,
        device_id=kwargs.pop("device_id", "device-A"),
        updated_at=kwargs.pop("updated_at", login_time),
        **kwargs,
    )

"""Two devices syncing through the real Flask server."""
from __future__ import annotations

from datetime import datetime
from urllib.parse import urlsplit

import pytest

from client.attendance_recorder import AttendanceRecorder
from client.connectivity import ConnectivityMonitor
from client.remote_store import RemoteStore
from client.sync_service import RemoteSyncService
from conftest import FixedClock, make_employee
from server.server import app, init_server_db
from shared.db_helpers import LocalStore
from shared.models import ClientConfig


class FlaskTestResponse:
    """Just enough of requests.Response for RemoteStore"""

    def __init__(self, response):
        self.status_code = response.status_code
        self.reason = response.status
        self._body = response.get_json(silent=True)

    def json(self):
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body


class FlaskTestSession:
    """Routes RemoteStore's requests.Session calls to a Flask test client"""

    def __init__(self, test_client):
        self.test_client = test_client
        self.headers = {}

    def get(self, url, timeout=None):
        return FlaskTestResponse(self.test_client.get(urlsplit(url).path, headers=dict(self.headers)))

    def post(self, url, json=None, timeout=None):
        return FlaskTestResponse(
            self.test_client.post(urlsplit(url).path, json=json, headers=dict(self.headers)))


class Device:
    def __init__(self, tmp_path, test_client, device_id, clock):
        config = ClientConfig(server_url="http://server.test", api_key="default-api-key",
                              device_id=device_id)
        self.store = LocalStore(tmp_path / f"{device_id}.db")
        self.store.init_database()
        self.recorder = AttendanceRecorder(self.store, device_id, clock=clock)
        self.monitor = ConnectivityMonitor(initial_state=True)
        self.sync_service = RemoteSyncService(
            self.store, RemoteStore(config, session=FlaskTestSession(test_client)),
            self.monitor, config)


@pytest.fixture
def test_client(tmp_path):
    app.config["TESTING"] = True
    app.config["SERVER_DB"] = str(tmp_path / "server.db")
    init_server_db()
    return app.test_client()


def test_two_devices_converge(tmp_path, test_client, clock):
    device_a = Device(tmp_path, test_client, "device-A", clock)
    device_b = Device(tmp_path, test_client, "device-B", clock)

    device_a.store.insert_employee(make_employee("E1", "Alice"))
    device_a.recorder.record_attendance("E1")
    result = device_a.sync_service.sync_now()
    assert result.employees_pushed == 1
    assert result.attendance_pushed == 1

    result = device_b.sync_service.sync_now()
    assert result.employees_pulled == 1
    assert result.attendance_pulled == 1
    pulled = device_b.store.get_attendance_by_key("E1", "2024-03-04")
    assert pulled.device_id == "device-A"
    assert pulled.is_synced is True

    # Device B records the logout for the session opened on device A
    clock.set(datetime(2024, 3, 4, 17, 30, 0))
    device_b.recorder.record_attendance("E1")
    assert device_b.sync_service.sync_now().attendance_pushed == 1

    # A's synced copy is never overwritten by a pull
    device_a.sync_service.sync_now()
    assert device_a.store.get_attendance_by_key("E1", "2024-03-04").logout_time is None

    # The server holds B's later push
    records = test_client.get("/api/v1/attendance",
                              headers={"Authorization": "Bearer default-api-key"}).get_json()
    [row] = records["data"]["records"]
    assert row["working_minutes"] == 510
    assert row["device_id"] == "device-A"


def test_resync_after_outage(tmp_path, test_client):
    clock = FixedClock(datetime(2024, 3, 4, 8, 0, 0))
    device = Device(tmp_path, test_client, "device-A", clock)
    device.store.insert_employee(make_employee("E1"))
    device.monitor.set_online(False)

    device.recorder.record_attendance("E1")
    assert device.sync_service.sync_now() is None
    assert device.sync_service.update_pending_count() == 2

    device.monitor.set_online(True)
    device.sync_service.wait_for_sync(timeout=10)

    assert device.store.count_pending() == 0
    assert device.sync_service.last_sync is not None

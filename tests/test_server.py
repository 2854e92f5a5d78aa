"""Tests for the Flask remote store server."""
from __future__ import annotations

import pytest

from server.server import app, init_server_db

AUTH = {"Authorization": "Bearer default-api-key"}


@pytest.fixture
def client(tmp_path):
    app.config["TESTING"] = True
    app.config["SERVER_DB"] = str(tmp_path / "server.db")
    init_server_db()
    with app.test_client() as test_client:
        yield test_client


def _upsert(client, table, on_conflict, record, headers=AUTH):
    return client.post(f"/api/v1/{table}/upsert", json={"on_conflict": on_conflict, "record": record},
                       headers=headers)


def test_health_and_info(client):
    assert client.get("/health").get_json()["data"]["status"] == "healthy"
    info = client.get("/api/v1/info").get_json()["data"]
    assert info["api_version"] == "v1"
    assert info["tables"]["attendance"] == ["emp_id", "attendance_date"]


def test_requires_api_key(client):
    assert client.get("/api/v1/employees").status_code == 401
    response = client.get("/api/v1/employees", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401
    assert response.get_json()["success"] is False


def test_upsert_overwrites_on_natural_key(client):
    first = _upsert(client, "employees", ["emp_id"], {"emp_id": "E1", "name": "Alice"})
    assert first.status_code == 200
    row = first.get_json()["data"]
    assert row["id"] is not None
    assert row["department"] == ""

    second = _upsert(client, "employees", ["emp_id"],
                     {"emp_id": "E1", "name": "Alice B", "department": "Finance"})
    assert second.get_json()["data"]["id"] == row["id"]

    records = client.get("/api/v1/employees", headers=AUTH).get_json()["data"]["records"]
    assert len(records) == 1
    assert records[0]["name"] == "Alice B"
    assert records[0]["synced_at"] is not None


def test_attendance_composite_key(client):
    base = {"emp_id": "E1", "login_time": "2024-03-04T09:00:00.000000", "device_id": "device-A"}
    _upsert(client, "attendance", ["emp_id", "attendance_date"], {**base, "attendance_date": "2024-03-04"})
    _upsert(client, "attendance", ["emp_id", "attendance_date"], {**base, "attendance_date": "2024-03-05"})
    _upsert(client, "attendance", ["emp_id", "attendance_date"],
            {**base, "attendance_date": "2024-03-04", "logout_time": "2024-03-04T17:00:00.000000",
             "working_minutes": 480})

    records = client.get("/api/v1/attendance", headers=AUTH).get_json()["data"]["records"]
    assert [(r["attendance_date"], r["working_minutes"]) for r in records] == [
        ("2024-03-04", 480),
        ("2024-03-05", None),
    ]


@pytest.mark.parametrize("table, on_conflict, record", [
    ("employees", ["emp_id"], {"emp_id": "E1"}),
    ("employees", ["name"], {"emp_id": "E1", "name": "Alice"}),
    ("attendance", ["emp_id", "attendance_date"],
     {"emp_id": "E1", "attendance_date": "04/03/2024", "login_time": "2024-03-04T09:00:00"}),
    ("attendance", ["emp_id", "attendance_date"],
     {"emp_id": "E1", "attendance_date": "2024-03-04", "login_time": "2024-03-04T09:00:00",
      "working_minutes": "lots"}),
])
def test_upsert_rejects_bad_requests(client, table, on_conflict, record):
    response = _upsert(client, table, on_conflict, record)
    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_unknown_table(client):
    assert client.get("/api/v1/payroll", headers=AUTH).status_code == 404
    assert _upsert(client, "payroll", ["id"], {"id": 1}).status_code == 404


def test_onboard_device_issues_working_key(client):
    response = client.post("/api/v1/devices/onboard", json={"device_id": "device-B"})
    assert response.status_code == 201
    api_key = response.get_json()["data"]["api_key"]

    listed = client.get("/api/v1/employees", headers={"Authorization": f"Bearer {api_key}"})
    assert listed.status_code == 200
    assert client.post("/api/v1/devices/onboard", json={}).status_code == 400

"""
Client application layer for ScanClock.
Wires the local store, recorder, connectivity monitor and sync service
together and is the single surface the UI talks to.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from PyQt6.QtCore import QObject

from client.attendance_recorder import AttendanceRecorder
from client.connectivity import ConnectivityMonitor
from client.remote_store import RemoteStore
from client.stats_poller import StatsPoller
from client.sync_service import RemoteSyncService
from shared.db_helpers import LocalStore
from shared.errors import EmployeeNotFound, PermissionDenied
from shared.logging_config import get_client_logger
from shared.models import (EMPLOYEES_TABLE, AdminSession, AttendanceEntry, ClientConfig,
                           Employee, RecordResult, SyncLogEntry, SyncResult,
                           SyncStatus)
from shared.utils import (format_date, format_datetime, generate_device_id,
                          normalize_emp_id, to_int_optional)

logger = get_client_logger()

CONFIG_KEYS = ('server_url', 'api_key', 'sync_interval', 'timeout')


def load_config(store: LocalStore) -> ClientConfig:
    """Load client configuration from settings, creating the device id on first run"""
    device_id = store.get_setting('device_id', '')
    if not device_id:
        device_id = generate_device_id()
        store.set_setting('device_id', device_id)
        logger.info(f"Generated new device ID: {device_id}")

    return ClientConfig(
        server_url=store.get_setting('server_url', '') or '',
        device_id=device_id,
        api_key=store.get_setting('api_key', '') or '',
        sync_interval=to_int_optional(store.get_setting('sync_interval')) or 30,
        timeout=to_int_optional(store.get_setting('timeout')) or 10,
    )


def save_config(store: LocalStore, config: ClientConfig):
    """Persist client configuration; the device id is fixed once created"""
    for key in CONFIG_KEYS:
        store.set_setting(key, str(getattr(config, key)))


def require_privileged(session: Optional[AdminSession]):
    if session is None or not session.privileged:
        raise PermissionDenied("This operation requires an admin session")


class ScanClockClient(QObject):
    """
    Client abstraction layer that handles:
    - Attendance scans against the local store
    - Admin employee management
    - Sync coordination and status
    """

    def __init__(self, db_path: Union[str, Path, None] = None,
                 config: Optional[ClientConfig] = None,
                 remote: Optional[RemoteStore] = None,
                 monitor: Optional[ConnectivityMonitor] = None,
                 clock: Callable[[], datetime] = datetime.now,
                 parent=None):
        super().__init__(parent)

        self.store = LocalStore(db_path)
        self.store.init_database()

        self.config = config or load_config(self.store)
        self._clock = clock

        self.remote = remote or RemoteStore(self.config)
        probe = self.remote.ping if self.config.server_url else None
        self.monitor = monitor or ConnectivityMonitor(probe=probe, parent=self)

        self.recorder = AttendanceRecorder(self.store, self.config.device_id, clock=clock)
        self.sync_service = RemoteSyncService(
            self.store, self.remote, self.monitor, self.config, parent=self)
        self.stats_poller = StatsPoller(self.store, clock=clock, parent=self)

    def start(self):
        """Start connectivity probing, periodic sync and dashboard polling"""
        self.monitor.start()
        self.sync_service.start()
        self.stats_poller.start()

    def stop(self):
        self.stats_poller.stop()
        self.sync_service.stop()
        self.monitor.stop()

    def update_config(self, config: ClientConfig):
        """Apply new server settings; the device id cannot change"""
        if config.device_id != self.config.device_id:
            raise ValueError("device_id is fixed at first start-up and cannot be changed")
        save_config(self.store, config)
        self.config = config
        self.sync_service.update_config(config)
        # Going online here proposes a sync with the new settings
        self.monitor.set_probe(self.remote.ping if config.server_url else None)

    def _local_data_changed(self):
        """Refresh the pending count and propose an outbound sync"""
        self.sync_service.update_pending_count()
        self.sync_service.sync()

    # Attendance
    def record_attendance(self, emp_id: str) -> RecordResult:
        """Record a scan; raises EmployeeNotFound or AlreadyClosed"""
        result = self.recorder.record_attendance(emp_id)
        self._local_data_changed()
        return result

    def get_active_session(self, emp_id: str) -> Optional[AttendanceEntry]:
        return self.recorder.get_active_session(emp_id)

    def search_records(self, query: str = "", attendance_date: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.store.search_attendance(query, attendance_date)

    def get_dashboard_stats(self) -> Dict[str, int]:
        return self.store.get_dashboard_stats(format_date(self._clock()))

    # Employees
    def get_employee(self, emp_id: str) -> Optional[Employee]:
        return self.store.get_employee_by_emp_id(normalize_emp_id(emp_id))

    def get_all_employees(self) -> List[Employee]:
        return self.store.fetch_all_employees()

    def add_employee(self, session: AdminSession, emp_id: str, name: str,
                     department: str = "", designation: Optional[str] = None) -> Employee:
        """Create an employee locally; it is pushed on the next sync"""
        require_privileged(session)

        now = format_datetime(self._clock())
        employee = Employee(
            emp_id=normalize_emp_id(emp_id),
            name=name,
            department=department,
            designation=designation or None,
            created_at=now,
            updated_at=now,
            is_synced=False,
        )
        employee.id = self.store.insert_employee(employee)
        logger.info(f"Added employee {employee.emp_id}")
        self._local_data_changed()
        return self.store.get_employee(employee.id)

    def update_employee(self, session: AdminSession, emp_id: str, updates: Dict[str, Any]) -> Employee:
        """Edit name/department/designation; always clears the synced flag"""
        require_privileged(session)

        employee = self.get_employee(emp_id)
        if not employee:
            raise EmployeeNotFound(emp_id)

        patch = {k: v for k, v in updates.items() if k in ('name', 'department', 'designation')}
        patch['updated_at'] = format_datetime(self._clock())
        patch['is_synced'] = False

        with self.store.record_lock(EMPLOYEES_TABLE, employee.emp_id):
            self.store.update_employee(employee.id, patch)
        logger.info(f"Updated employee {employee.emp_id}")
        self._local_data_changed()
        return self.store.get_employee(employee.id)

    def delete_employee(self, session: AdminSession, emp_id: str) -> bool:
        """Delete an employee and all of their attendance entries"""
        require_privileged(session)

        employee = self.get_employee(emp_id)
        if not employee:
            raise EmployeeNotFound(emp_id)

        deleted = self.store.delete_employee(employee.id)
        if deleted:
            logger.info(f"Deleted employee {employee.emp_id} and their attendance")
            self.sync_service.update_pending_count()
        return deleted

    # Sync
    def sync(self) -> bool:
        return self.sync_service.sync()

    def sync_now(self) -> Optional[SyncResult]:
        return self.sync_service.sync_now()

    @property
    def pending_count(self) -> int:
        return self.sync_service.update_pending_count()

    def get_sync_status(self) -> SyncStatus:
        return self.sync_service.get_sync_status()

    def get_sync_logs(self, limit: int = 50) -> List[SyncLogEntry]:
        return self.store.get_sync_logs(limit)


# Global client instance
_client = None


def get_client() -> ScanClockClient:
    """Get the singleton client instance"""
    global _client
    if _client is None:
        _client = ScanClockClient()
    return _client

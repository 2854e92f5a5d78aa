"""
Remote sync service for ScanClock client.
Reconciles the local store with the remote store in an offline-first manner.

A sync cycle runs four strictly ordered phases: push employees, push
attendance, pull employees, pull attendance. Pushes are upserts on the
natural key, so the pushed copy wins remotely; pulls only insert rows whose
natural key is missing locally and never overwrite local data. A failure of
one record leaves it unsynced for the next cycle; any other error aborts the
cycle without advancing the last-sync time.
"""

import sqlite3
import threading
from datetime import datetime, timedelta
from typing import Optional

import requests
from PyQt6.QtCore import QObject, QTimer, pyqtSignal

from client.connectivity import ConnectivityMonitor
from client.remote_store import RemoteStore
from shared.db_helpers import DatabaseException, LocalStore
from shared.errors import RemoteStoreError, SyncCycleError
from shared.logging_config import get_sync_logger
from shared.models import (ATTENDANCE_TABLE, EMPLOYEES_TABLE, NATURAL_KEYS,
                           AttendanceEntry, ClientConfig, Employee,
                           SyncLogEntry, SyncLogStatus, SyncResult,
                           SyncStatus, SyncType)
from shared.utils import (compute_working_minutes, format_datetime,
                          normalize_emp_id, parse_datetime)

logger = get_sync_logger()

LAST_SYNC_SETTING = 'last_sync'
MAX_BACKOFF_SECONDS: int = 60

# Errors confined to a single pushed record
PUSH_RECORD_ERRORS = (RemoteStoreError, requests.RequestException)


class RemoteSyncService(QObject):
    """
    Background sync service that handles:
    - Pushing unsynced local employees and attendance to the remote store
    - Pulling remote records that are missing locally
    - Pending-count and last-sync bookkeeping
    - Reacting to connectivity transitions and a periodic timer
    """

    sync_status_changed = pyqtSignal(dict)  # Emits SyncStatus.to_dict()
    sync_completed = pyqtSignal(dict)       # Emits SyncResult.to_dict()
    sync_failed = pyqtSignal(str)           # Emits the cycle error message

    def __init__(self, store: LocalStore, remote: RemoteStore,
                 monitor: ConnectivityMonitor, config: ClientConfig, parent=None):
        super().__init__(parent)

        self.store = store
        self.remote = remote
        self.monitor = monitor
        self.config = config

        self.is_running = False
        self.is_syncing = False
        self.last_error: Optional[str] = None
        self.last_sync: Optional[str] = store.get_setting(LAST_SYNC_SETTING)
        self.pending_count = 0

        # At most one sync in flight
        self._sync_lock = threading.Lock()
        self._sync_thread: Optional[threading.Thread] = None

        # Backoff state for proposed (automatic) syncs
        self._consecutive_failures = 0
        self._next_earliest_sync: Optional[datetime] = None

        self.sync_timer = QTimer(self)
        self.sync_timer.timeout.connect(self.propose_sync)

        self.monitor.online_changed.connect(self._on_online_changed)

    @property
    def is_online(self) -> bool:
        return self.monitor.is_online

    def start(self):
        """Start periodic syncing and propose an initial sync"""
        self.is_running = True
        self.update_pending_count()
        self.sync_timer.start(self.config.sync_interval * 1000)
        logger.info(f"Remote sync service started (interval {self.config.sync_interval}s)")
        self.propose_sync()

    def stop(self):
        """Stop periodic syncing; an in-flight sync is allowed to finish"""
        self.is_running = False
        self.sync_timer.stop()
        logger.info("Remote sync service stopped")

    def update_config(self, config: ClientConfig):
        self.config = config
        self.remote.update_config(config)
        if self.is_running:
            self.sync_timer.start(config.sync_interval * 1000)
        logger.info(f"Sync configuration updated: {config.server_url}")

    def _on_online_changed(self, online: bool):
        if online:
            logger.info("Connection restored, proposing sync")
            self.propose_sync()
        self._emit_status()

    def propose_sync(self) -> bool:
        """Sync unless a recent failure put us in backoff"""
        if self._next_earliest_sync and datetime.now() < self._next_earliest_sync:
            wait_ms = int((self._next_earliest_sync - datetime.now()).total_seconds() * 1000)
            logger.debug(f"propose_sync: backoff active, wait {wait_ms}ms")
            return False
        return self.sync()

    def sync(self) -> bool:
        """Fire-and-forget sync in a background thread.

        Silently does nothing when offline or when a sync is already running.
        Returns whether a sync thread was started.
        """
        if not self.is_online or self.is_syncing:
            return False

        def background_sync():
            try:
                self.sync_now()
            except SyncCycleError:
                pass  # Already logged and reported by sync_now

        self._sync_thread = threading.Thread(target=background_sync, daemon=True)
        self._sync_thread.start()
        return True

    def wait_for_sync(self, timeout: Optional[float] = None):
        """Block until the background sync started by ``sync()`` finishes"""
        thread = self._sync_thread
        if thread is not None:
            thread.join(timeout)

    def sync_now(self) -> Optional[SyncResult]:
        """Run one full sync cycle on the calling thread.

        Returns the cycle's SyncResult, or None when skipped (offline or
        another sync in flight).

        Raises:
            SyncCycleError: the cycle was aborted; safe to retry
        """
        if not self.is_online:
            logger.debug("sync_now: offline, skipping")
            return None

        if not self._sync_lock.acquire(blocking=False):
            logger.debug("sync_now: already syncing")
            return None

        try:
            self.is_syncing = True
            self._emit_status()
            logger.info("Sync started")

            result = SyncResult()
            self.push_employees(result)
            self.push_attendance(result)
            self.pull_employees(result)
            self.pull_attendance(result)

            pending = self.update_pending_count()
            synced_at = format_datetime(datetime.now())

            message = f"Sync completed: {result.records_synced} records, {pending} pending"
            if result.failed_records:
                message += f", {len(result.failed_records)} failed"
            self.store.add_sync_log(SyncLogEntry(
                sync_type=SyncType.FULL.value,
                status=SyncLogStatus.SUCCESS.value,
                message=message,
                synced_at=synced_at,
                records_synced=result.records_synced,
            ))

            self.store.set_setting(LAST_SYNC_SETTING, synced_at)
            self.last_sync = synced_at
            self.last_error = None
            self._reset_backoff()
            logger.info(message)

            self.sync_completed.emit(result.to_dict())
            return result

        except Exception as e:
            self.last_error = str(e)
            self._apply_backoff()
            logger.error(f"Sync failed: {e}")
            self._record_failure(str(e))
            self.sync_failed.emit(str(e))
            raise SyncCycleError(str(e)) from e

        finally:
            self.is_syncing = False
            self._sync_lock.release()
            self._emit_status()

    def _record_failure(self, error: str):
        """Best-effort failed SyncLog row; the store itself may be the failure"""
        try:
            self.store.add_sync_log(SyncLogEntry(
                sync_type=SyncType.FULL.value,
                status=SyncLogStatus.FAILED.value,
                message=f"Sync failed: {error}",
                synced_at=format_datetime(datetime.now()),
                records_synced=0,
            ))
            self.update_pending_count()
        except Exception as e:
            logger.warning(f"Could not record sync failure: {e}")

    def _apply_backoff(self):
        # Backoff schedule: 2,4,8,16,32,60 seconds (capped)
        self._consecutive_failures = min(self._consecutive_failures + 1, 6)
        delay_seconds = min(2 ** self._consecutive_failures, MAX_BACKOFF_SECONDS)
        self._next_earliest_sync = datetime.now() + timedelta(seconds=delay_seconds)

    def _reset_backoff(self):
        self._consecutive_failures = 0
        self._next_earliest_sync = None

    # Phases
    def push_employees(self, result: SyncResult) -> int:
        """Upsert every unsynced employee on emp_id; returns how many were marked synced"""
        employees = self.store.get_unsynced_employees()
        logger.debug(f"Pushing {len(employees)} unsynced employees")

        pushed = 0
        for employee in employees:
            try:
                stored = self.remote.upsert(
                    EMPLOYEES_TABLE, NATURAL_KEYS[EMPLOYEES_TABLE], employee.to_remote_dict())
            except PUSH_RECORD_ERRORS as e:
                logger.warning(f"Failed to push employee {employee.emp_id}: {e}")
                result.failed_records.append(f"{EMPLOYEES_TABLE}:{employee.emp_id}")
                continue

            if self.store.mark_employee_synced(employee.id, stored.get('id'), employee.updated_at):
                pushed += 1
            else:
                logger.debug(f"Employee {employee.emp_id} changed during push, will push again")

        result.employees_pushed += pushed
        return pushed

    def push_attendance(self, result: SyncResult) -> int:
        """Upsert every unsynced attendance entry on (emp_id, attendance_date)"""
        entries = self.store.get_unsynced_attendance()
        logger.debug(f"Pushing {len(entries)} unsynced attendance entries")

        pushed = 0
        for entry in entries:
            label = f"{entry.emp_id}@{entry.attendance_date}"
            try:
                stored = self.remote.upsert(
                    ATTENDANCE_TABLE, NATURAL_KEYS[ATTENDANCE_TABLE], entry.to_remote_dict())
            except PUSH_RECORD_ERRORS as e:
                logger.warning(f"Failed to push attendance {label}: {e}")
                result.failed_records.append(f"{ATTENDANCE_TABLE}:{label}")
                continue

            if self.store.mark_attendance_synced(entry.id, stored.get('id'), entry.updated_at):
                pushed += 1
            else:
                logger.debug(f"Attendance {label} changed during push, will push again")

        result.attendance_pushed += pushed
        return pushed

    def pull_employees(self, result: SyncResult) -> int:
        """Insert remote employees whose emp_id is missing locally"""
        rows = self.remote.list_all(EMPLOYEES_TABLE)
        logger.debug(f"Pulled {len(rows)} remote employees")

        inserted = 0
        for row in rows:
            employee = Employee.from_remote_dict(row)
            try:
                with self.store.record_lock(EMPLOYEES_TABLE, normalize_emp_id(employee.emp_id)):
                    if self.store.insert_employee_if_absent(employee):
                        inserted += 1
            except DatabaseException as e:
                logger.warning(f"Skipping remote employee {row.get('emp_id')!r}: {e}")
                result.failed_records.append(f"{EMPLOYEES_TABLE}:{row.get('emp_id')}")

        result.employees_pulled += inserted
        return inserted

    def pull_attendance(self, result: SyncResult) -> int:
        """Insert remote attendance whose (emp_id, attendance_date) is missing locally"""
        rows = self.remote.list_all(ATTENDANCE_TABLE)
        logger.debug(f"Pulled {len(rows)} remote attendance entries")

        inserted = 0
        for row in rows:
            label = f"{row.get('emp_id')}@{row.get('attendance_date')}"
            try:
                entry = AttendanceEntry.from_remote_dict(row)
                self._fill_working_minutes(entry)
                # Same lock as the recorder, so a pull never lands inside a scan
                key = (normalize_emp_id(entry.emp_id), entry.attendance_date)
                with self.store.record_lock(ATTENDANCE_TABLE, key):
                    if self.store.insert_attendance_if_absent(entry):
                        inserted += 1
            except DatabaseException as e:
                logger.warning(f"Skipping remote attendance {label}: {e}")
                result.failed_records.append(f"{ATTENDANCE_TABLE}:{label}")

        result.attendance_pulled += inserted
        return inserted

    @staticmethod
    def _fill_working_minutes(entry: AttendanceEntry):
        """Derive working_minutes for a closed remote entry that lacks it"""
        if entry.logout_time and entry.working_minutes is None:
            login = parse_datetime(entry.login_time)
            logout = parse_datetime(entry.logout_time)
            if login and logout:
                entry.working_minutes = compute_working_minutes(login, logout)

    # Status
    def update_pending_count(self) -> int:
        self.pending_count = self.store.count_pending()
        return self.pending_count

    def get_sync_status(self) -> SyncStatus:
        pending_employees = self.store.count_unsynced_employees()
        pending_attendance = self.store.count_unsynced_attendance()
        return SyncStatus(
            is_online=self.is_online,
            is_syncing=self.is_syncing,
            last_sync=self.last_sync,
            last_error=self.last_error,
            pending_count=pending_employees + pending_attendance,
            pending_employees=pending_employees,
            pending_attendance=pending_attendance,
            server_url=self.config.server_url or None,
        )

    def _emit_status(self):
        try:
            status = self.get_sync_status()
        except (DatabaseException, sqlite3.Error) as e:
            logger.debug(f"Could not read sync status: {e}")
            return
        self.sync_status_changed.emit(status.to_dict())

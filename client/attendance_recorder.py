"""
Attendance recorder: turns a scanned or typed employee id into a login or
logout against the local store. Purely local; the sync service propagates
the result later.
"""

from datetime import datetime
from typing import Callable, Optional

from shared.db_helpers import LocalStore
from shared.errors import AlreadyClosed, EmployeeNotFound
from shared.logging_config import get_client_logger
from shared.models import (ATTENDANCE_TABLE, AttendanceEntry, RecordAction,
                           RecordResult)
from shared.utils import (compute_working_minutes, format_date,
                          format_datetime, format_duration, normalize_emp_id,
                          parse_datetime)

logger = get_client_logger()


class AttendanceRecorder:
    """Login on the first scan of the day, logout on the second, reject the third"""

    def __init__(self, store: LocalStore, device_id: str,
                 clock: Callable[[], datetime] = datetime.now):
        if not device_id:
            raise ValueError("device_id is required")
        self.store = store
        self.device_id = device_id
        self._clock = clock

    def today(self) -> str:
        return format_date(self._clock())

    def record_attendance(self, emp_id: str) -> RecordResult:
        """Record a scan for ``emp_id``.

        Raises:
            EmployeeNotFound: no employee has this id
            AlreadyClosed: the employee already logged out today
        """
        emp_id = normalize_emp_id(emp_id)
        employee = self.store.get_employee_by_emp_id(emp_id) if emp_id else None
        if not employee:
            logger.warning(f"Scan for unknown employee id '{emp_id}'")
            raise EmployeeNotFound(emp_id)

        now = self._clock()
        today = format_date(now)

        with self.store.record_lock(ATTENDANCE_TABLE, (emp_id, today)):
            existing = self.store.get_attendance_by_key(emp_id, today)

            if existing is None:
                timestamp = format_datetime(now)
                entry = AttendanceEntry(
                    emp_id=emp_id,
                    attendance_date=today,
                    login_time=timestamp,
                    device_id=self.device_id,
                    is_synced=False,
                    updated_at=timestamp,
                )
                entry.id = self.store.insert_attendance(entry)
                logger.info(f"{employee.name} ({emp_id}) logged in")
                return RecordResult(RecordAction.LOGIN, employee, entry)

            if existing.logout_time:
                raise AlreadyClosed(emp_id, today)

            timestamp = format_datetime(now)
            working_minutes = compute_working_minutes(parse_datetime(existing.login_time), now)
            self.store.update_attendance(existing.id, {
                'logout_time': timestamp,
                'working_minutes': working_minutes,
                'updated_at': timestamp,
                'is_synced': False,
            })

        existing.logout_time = timestamp
        existing.working_minutes = working_minutes
        existing.updated_at = timestamp
        existing.is_synced = False
        logger.info(f"{employee.name} ({emp_id}) logged out, worked {format_duration(working_minutes)}")
        return RecordResult(RecordAction.LOGOUT, employee, existing)

    def get_active_session(self, emp_id: str) -> Optional[AttendanceEntry]:
        """Today's entry for ``emp_id`` if it is still open"""
        entry = self.store.get_attendance_by_key(normalize_emp_id(emp_id), self.today())
        if entry and entry.is_open:
            return entry
        return None

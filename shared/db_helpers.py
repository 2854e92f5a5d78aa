"""
Local SQLite store for ScanClock.

Owns the employees, attendance, sync_logs and settings tables. Every
operation opens its own connection and is atomic for a single record;
writes are serialized through a store-wide lock, and read-modify-write
sequences take a per-record lock from ``record_lock``.
"""

import re
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Hashable, List, Optional, Union

from shared.models import AttendanceEntry, Employee, SyncLogEntry
from shared.utils import (days_before, format_datetime, get_data_path,
                          parse_date, parse_datetime)
from shared.errors import ScanClockError


class DatabaseException(ScanClockError):
    """Raised for local store validation and integrity failures"""
    pass


DB_BUSY_TIMEOUT_MS: int = 5000

EMPLOYEE_UPDATE_FIELDS = {
    'name', 'department', 'designation', 'updated_at', 'is_synced', 'remote_id'
}
ATTENDANCE_UPDATE_FIELDS = {
    'login_time', 'logout_time', 'working_minutes', 'device_id',
    'updated_at', 'is_synced', 'remote_id'
}

# Set once when an entry is closed
CLOSING_FIELDS = {'logout_time', 'working_minutes'}


def validate_emp_id(emp_id: str) -> str:
    """Validate and sanitize an employee id"""
    if not emp_id or not isinstance(emp_id, str):
        raise DatabaseException("Employee id must be a non-empty string")

    emp_id = emp_id.strip()
    if not emp_id:
        raise DatabaseException("Employee id cannot be empty or whitespace")

    if not re.match(r'^[a-zA-Z0-9_.-]+$', emp_id):
        raise DatabaseException("Employee id can only contain letters, numbers, dots, dashes, and underscores")

    if len(emp_id) > 50:
        raise DatabaseException("Employee id must be 50 characters or less")

    return emp_id


def validate_datetime_string(dt_str: str, field_name: str) -> str:
    """Validate datetime string format"""
    if not dt_str or not isinstance(dt_str, str):
        raise DatabaseException(f"{field_name} must be a non-empty string")

    if parse_datetime(dt_str) is None:
        raise DatabaseException(f"{field_name} must be a valid datetime string")

    return dt_str


def validate_date_string(date_str: str, field_name: str = "attendance_date") -> str:
    """Validate a YYYY-MM-DD date string"""
    if not date_str or not isinstance(date_str, str) or parse_date(date_str) is None:
        raise DatabaseException(f"{field_name} must be a YYYY-MM-DD date")
    return date_str


def _validate_employee(employee: Employee) -> str:
    if not employee.name or not employee.name.strip():
        raise DatabaseException("Employee name cannot be empty")

    if len(employee.name) > 100:
        raise DatabaseException("Employee name must be 100 characters or less")

    return validate_emp_id(employee.emp_id)


def _validate_attendance(entry: AttendanceEntry) -> str:
    emp_id = validate_emp_id(entry.emp_id)
    validate_date_string(entry.attendance_date)
    validate_datetime_string(entry.login_time, "login_time")
    if entry.logout_time:
        validate_datetime_string(entry.logout_time, "logout_time")
    return emp_id


def _row_to_employee(row: sqlite3.Row) -> Employee:
    return Employee(
        id=row['id'],
        emp_id=row['emp_id'],
        name=row['name'],
        department=row['department'] or '',
        designation=row['designation'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
        is_synced=bool(row['is_synced']),
        remote_id=row['remote_id'],
    )


def _row_to_attendance(row: sqlite3.Row) -> AttendanceEntry:
    return AttendanceEntry(
        id=row['id'],
        emp_id=row['emp_id'],
        attendance_date=row['attendance_date'],
        login_time=row['login_time'],
        logout_time=row['logout_time'],
        working_minutes=row['working_minutes'],
        device_id=row['device_id'] or '',
        is_synced=bool(row['is_synced']),
        remote_id=row['remote_id'],
        updated_at=row['updated_at'],
    )


def get_db_path() -> Path:
    """Default database file path under the per-user data directory"""
    return get_data_path('scanclock.db')


class LocalStore:
    """Durable, indexed local storage for employees, attendance and sync logs"""

    def __init__(self, db_path: Union[str, Path, None] = None):
        self.db_path = Path(db_path) if db_path else get_db_path()
        self._write_lock = threading.RLock()
        self._record_locks: Dict[Hashable, threading.Lock] = {}
        self._record_locks_guard = threading.Lock()

    def init_database(self):
        """Create tables and indexes if they do not exist"""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        try:
            conn.execute(f"PRAGMA busy_timeout = {DB_BUSY_TIMEOUT_MS}")
            conn.execute("PRAGMA journal_mode = WAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS employees (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    emp_id TEXT UNIQUE NOT NULL,
                    name TEXT NOT NULL,
                    department TEXT NOT NULL DEFAULT '',
                    designation TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    is_synced INTEGER NOT NULL DEFAULT 0,
                    remote_id TEXT
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS attendance (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    emp_id TEXT NOT NULL,
                    attendance_date TEXT NOT NULL,
                    login_time TEXT NOT NULL,
                    logout_time TEXT,
                    working_minutes INTEGER,
                    device_id TEXT NOT NULL,
                    is_synced INTEGER NOT NULL DEFAULT 0,
                    remote_id TEXT,
                    updated_at TEXT,
                    UNIQUE(emp_id, attendance_date)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    sync_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    message TEXT,
                    synced_at TEXT NOT NULL,
                    records_synced INTEGER NOT NULL DEFAULT 0
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

            conn.execute("CREATE INDEX IF NOT EXISTS idx_employees_is_synced ON employees (is_synced)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_attendance_emp_id ON attendance (emp_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_attendance_date ON attendance (attendance_date)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_attendance_is_synced ON attendance (is_synced)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_sync_logs_synced_at ON sync_logs (synced_at)")

            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise DatabaseException(f"Failed to initialize database: {e}")
        finally:
            conn.close()

    def get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory"""
        conn = sqlite3.connect(str(self.db_path))
        conn.execute(f"PRAGMA busy_timeout = {DB_BUSY_TIMEOUT_MS}")
        conn.row_factory = sqlite3.Row
        return conn

    def record_lock(self, kind: str, key: Hashable) -> threading.Lock:
        """Mutex serializing read-modify-write sequences on one record"""
        with self._record_locks_guard:
            lock = self._record_locks.get((kind, key))
            if lock is None:
                lock = threading.Lock()
                self._record_locks[(kind, key)] = lock
            return lock

    def _execute_write(self, sql: str, params=()) -> sqlite3.Cursor:
        """Run a single write statement in its own transaction"""
        with self._write_lock:
            conn = self.get_connection()
            try:
                cursor = conn.execute(sql, params)
                conn.commit()
                return cursor
            except sqlite3.Error:
                conn.rollback()
                raise
            finally:
                conn.close()

    def _fetch_one(self, sql: str, params=()) -> Optional[sqlite3.Row]:
        conn = self.get_connection()
        try:
            return conn.execute(sql, params).fetchone()
        finally:
            conn.close()

    def _fetch_all(self, sql: str, params=()) -> List[sqlite3.Row]:
        conn = self.get_connection()
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    # Settings
    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        row = self._fetch_one("SELECT value FROM settings WHERE key = ?", (key,))
        return row['value'] if row else default

    def set_setting(self, key: str, value: str):
        self._execute_write(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
            (key, value)
        )

    # Employees
    def insert_employee(self, employee: Employee) -> int:
        """Insert a new employee and return its local id"""
        emp_id = _validate_employee(employee)
        now = format_datetime(datetime.now())

        try:
            cursor = self._execute_write("""
                INSERT INTO employees (
                    emp_id, name, department, designation,
                    created_at, updated_at, is_synced, remote_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                emp_id,
                employee.name.strip(),
                employee.department or '',
                employee.designation,
                employee.created_at or now,
                employee.updated_at or now,
                int(employee.is_synced),
                employee.remote_id,
            ))
            return cursor.lastrowid
        except sqlite3.IntegrityError as e:
            if "UNIQUE constraint failed: employees.emp_id" in str(e):
                raise DatabaseException(f"Employee with id '{emp_id}' already exists")
            raise DatabaseException(f"Employee insert failed due to constraint violation: {e}")
        except sqlite3.Error as e:
            raise DatabaseException(f"Failed to insert employee: {e}")

    def insert_employee_if_absent(self, employee: Employee) -> bool:
        """Insert unless an employee with the same emp_id exists; never overwrites"""
        emp_id = _validate_employee(employee)

        with self._write_lock:
            if self.get_employee_by_emp_id(emp_id) is not None:
                return False
            try:
                cursor = self._execute_write("""
                    INSERT OR IGNORE INTO employees (
                        emp_id, name, department, designation,
                        created_at, updated_at, is_synced, remote_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    emp_id,
                    employee.name.strip(),
                    employee.department or '',
                    employee.designation,
                    employee.created_at,
                    employee.updated_at,
                    int(employee.is_synced),
                    employee.remote_id,
                ))
            except sqlite3.Error as e:
                raise DatabaseException(f"Failed to insert employee: {e}")
            return cursor.rowcount > 0

    def get_employee(self, employee_id: int) -> Optional[Employee]:
        row = self._fetch_one("SELECT * FROM employees WHERE id = ?", (employee_id,))
        return _row_to_employee(row) if row else None

    def get_employee_by_emp_id(self, emp_id: str) -> Optional[Employee]:
        """Get employee by natural key"""
        row = self._fetch_one("SELECT * FROM employees WHERE emp_id = ?", ((emp_id or '').strip(),))
        return _row_to_employee(row) if row else None

    def fetch_all_employees(self) -> List[Employee]:
        rows = self._fetch_all("SELECT * FROM employees ORDER BY name")
        return [_row_to_employee(row) for row in rows]

    def get_unsynced_employees(self) -> List[Employee]:
        rows = self._fetch_all("SELECT * FROM employees WHERE is_synced = 0 ORDER BY id")
        return [_row_to_employee(row) for row in rows]

    def update_employee(self, employee_id: int, updates: Dict[str, Any]) -> bool:
        """Patch the given fields of an employee; emp_id is immutable"""
        if not updates:
            return False

        safe_updates = {k: v for k, v in updates.items() if k in EMPLOYEE_UPDATE_FIELDS}
        if not safe_updates:
            raise DatabaseException(f"No valid fields to update. Allowed fields: {sorted(EMPLOYEE_UPDATE_FIELDS)}")

        if 'name' in safe_updates:
            name = (safe_updates['name'] or '').strip()
            if not name or len(name) > 100:
                raise DatabaseException("Employee name must be 1 to 100 characters")
            safe_updates['name'] = name
        if 'is_synced' in safe_updates:
            safe_updates['is_synced'] = int(bool(safe_updates['is_synced']))

        set_clause = ', '.join([f"{key} = ?" for key in safe_updates.keys()])
        values = list(safe_updates.values()) + [employee_id]

        try:
            cursor = self._execute_write(f"UPDATE employees SET {set_clause} WHERE id = ?", values)
        except sqlite3.Error as e:
            raise DatabaseException(f"Failed to update employee: {e}")
        return cursor.rowcount > 0

    def delete_employee(self, employee_id: int) -> bool:
        """Delete an employee together with all of its attendance entries"""
        with self._write_lock:
            conn = self.get_connection()
            try:
                conn.execute("BEGIN TRANSACTION")
                row = conn.execute("SELECT emp_id FROM employees WHERE id = ?", (employee_id,)).fetchone()
                if not row:
                    conn.rollback()
                    return False

                conn.execute("DELETE FROM attendance WHERE emp_id = ?", (row['emp_id'],))
                conn.execute("DELETE FROM employees WHERE id = ?", (employee_id,))
                conn.commit()
                return True
            except sqlite3.Error as e:
                conn.rollback()
                raise DatabaseException(f"Failed to delete employee: {e}")
            finally:
                conn.close()

    def mark_employee_synced(self, employee_id: int, remote_id: Optional[str],
                             expected_updated_at: Optional[str]) -> bool:
        """Mark an employee synced if it was not modified since it was pushed.

        When the row changed in the meantime only the remote id is stored and
        the row stays unsynced. Returns whether the row was marked synced.
        """
        remote_id = str(remote_id) if remote_id is not None else None
        with self._write_lock:
            cursor = self._execute_write("""
                UPDATE employees SET is_synced = 1, remote_id = COALESCE(?, remote_id)
                WHERE id = ? AND updated_at IS ?
            """, (remote_id, employee_id, expected_updated_at))
            if cursor.rowcount > 0:
                return True

            self._execute_write(
                "UPDATE employees SET remote_id = COALESCE(?, remote_id) WHERE id = ?",
                (remote_id, employee_id)
            )
            return False

    # Attendance
    def insert_attendance(self, entry: AttendanceEntry) -> int:
        """Insert a new attendance entry and return its local id"""
        emp_id = _validate_attendance(entry)

        try:
            cursor = self._execute_write("""
                INSERT INTO attendance (
                    emp_id, attendance_date, login_time, logout_time, working_minutes,
                    device_id, is_synced, remote_id, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                emp_id,
                entry.attendance_date,
                entry.login_time,
                entry.logout_time,
                entry.working_minutes,
                entry.device_id,
                int(entry.is_synced),
                entry.remote_id,
                entry.updated_at or format_datetime(datetime.now()),
            ))
            return cursor.lastrowid
        except sqlite3.IntegrityError as e:
            if "UNIQUE constraint failed" in str(e):
                raise DatabaseException(
                    f"Attendance for '{emp_id}' on {entry.attendance_date} already exists")
            raise DatabaseException(f"Attendance insert failed due to constraint violation: {e}")
        except sqlite3.Error as e:
            raise DatabaseException(f"Failed to insert attendance: {e}")

    def insert_attendance_if_absent(self, entry: AttendanceEntry) -> bool:
        """Insert unless an entry with the same (emp_id, attendance_date) exists"""
        emp_id = _validate_attendance(entry)

        with self._write_lock:
            if self.get_attendance_by_key(emp_id, entry.attendance_date) is not None:
                return False
            try:
                cursor = self._execute_write("""
                    INSERT OR IGNORE INTO attendance (
                        emp_id, attendance_date, login_time, logout_time, working_minutes,
                        device_id, is_synced, remote_id, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    emp_id,
                    entry.attendance_date,
                    entry.login_time,
                    entry.logout_time,
                    entry.working_minutes,
                    entry.device_id,
                    int(entry.is_synced),
                    entry.remote_id,
                    entry.updated_at,
                ))
            except sqlite3.Error as e:
                raise DatabaseException(f"Failed to insert attendance: {e}")
            return cursor.rowcount > 0

    def get_attendance(self, entry_id: int) -> Optional[AttendanceEntry]:
        row = self._fetch_one("SELECT * FROM attendance WHERE id = ?", (entry_id,))
        return _row_to_attendance(row) if row else None

    def get_attendance_by_key(self, emp_id: str, attendance_date: str) -> Optional[AttendanceEntry]:
        """Get attendance by its composite natural key"""
        row = self._fetch_one(
            "SELECT * FROM attendance WHERE emp_id = ? AND attendance_date = ?",
            ((emp_id or '').strip(), attendance_date)
        )
        return _row_to_attendance(row) if row else None

    def fetch_all_attendance(self) -> List[AttendanceEntry]:
        rows = self._fetch_all("SELECT * FROM attendance ORDER BY attendance_date DESC, login_time DESC")
        return [_row_to_attendance(row) for row in rows]

    def get_attendance_for_emp_id(self, emp_id: str) -> List[AttendanceEntry]:
        rows = self._fetch_all(
            "SELECT * FROM attendance WHERE emp_id = ? ORDER BY attendance_date DESC", (emp_id,))
        return [_row_to_attendance(row) for row in rows]

    def get_unsynced_attendance(self) -> List[AttendanceEntry]:
        rows = self._fetch_all("SELECT * FROM attendance WHERE is_synced = 0 ORDER BY id")
        return [_row_to_attendance(row) for row in rows]

    def update_attendance(self, entry_id: int, updates: Dict[str, Any]) -> bool:
        """Patch the given fields of an attendance entry; the natural key is immutable"""
        if not updates:
            return False

        safe_updates = {k: v for k, v in updates.items() if k in ATTENDANCE_UPDATE_FIELDS}
        if not safe_updates:
            raise DatabaseException(f"No valid fields to update. Allowed fields: {sorted(ATTENDANCE_UPDATE_FIELDS)}")

        for field in ('login_time', 'logout_time'):
            if safe_updates.get(field):
                validate_datetime_string(safe_updates[field], field)
        if 'is_synced' in safe_updates:
            safe_updates['is_synced'] = int(bool(safe_updates['is_synced']))

        set_clause = ', '.join([f"{key} = ?" for key in safe_updates.keys()])
        values = list(safe_updates.values()) + [entry_id]

        # A closed entry keeps its logout_time and working_minutes
        closes_entry = bool(CLOSING_FIELDS & safe_updates.keys())
        where = "id = ? AND logout_time IS NULL" if closes_entry else "id = ?"

        with self._write_lock:
            try:
                cursor = self._execute_write(f"UPDATE attendance SET {set_clause} WHERE {where}", values)
            except sqlite3.Error as e:
                raise DatabaseException(f"Failed to update attendance: {e}")

            if cursor.rowcount == 0 and closes_entry and self.get_attendance(entry_id) is not None:
                raise DatabaseException(f"Attendance entry {entry_id} is already closed")
        return cursor.rowcount > 0

    def delete_attendance(self, entry_id: int) -> bool:
        cursor = self._execute_write("DELETE FROM attendance WHERE id = ?", (entry_id,))
        return cursor.rowcount > 0

    def delete_attendance_by_emp_id(self, emp_id: str) -> int:
        """Delete every attendance entry of an employee; returns the number removed"""
        cursor = self._execute_write("DELETE FROM attendance WHERE emp_id = ?", (emp_id,))
        return cursor.rowcount

    def mark_attendance_synced(self, entry_id: int, remote_id: Optional[str],
                               expected_updated_at: Optional[str]) -> bool:
        """Attendance counterpart of ``mark_employee_synced``"""
        remote_id = str(remote_id) if remote_id is not None else None
        with self._write_lock:
            cursor = self._execute_write("""
                UPDATE attendance SET is_synced = 1, remote_id = COALESCE(?, remote_id)
                WHERE id = ? AND updated_at IS ?
            """, (remote_id, entry_id, expected_updated_at))
            if cursor.rowcount > 0:
                return True

            self._execute_write(
                "UPDATE attendance SET remote_id = COALESCE(?, remote_id) WHERE id = ?",
                (remote_id, entry_id)
            )
            return False

    # Pending counts
    def count_unsynced_employees(self) -> int:
        row = self._fetch_one("SELECT COUNT(*) AS count FROM employees WHERE is_synced = 0")
        return row['count']

    def count_unsynced_attendance(self) -> int:
        row = self._fetch_one("SELECT COUNT(*) AS count FROM attendance WHERE is_synced = 0")
        return row['count']

    def count_pending(self) -> int:
        """Unsynced employees plus unsynced attendance entries"""
        return self.count_unsynced_employees() + self.count_unsynced_attendance()

    # Sync logs
    def add_sync_log(self, entry: SyncLogEntry) -> int:
        cursor = self._execute_write("""
            INSERT INTO sync_logs (sync_type, status, message, synced_at, records_synced)
            VALUES (?, ?, ?, ?, ?)
        """, (
            entry.sync_type,
            entry.status,
            entry.message,
            entry.synced_at or format_datetime(datetime.now()),
            entry.records_synced,
        ))
        return cursor.lastrowid

    def get_sync_logs(self, limit: int = 50) -> List[SyncLogEntry]:
        """Most recent sync log entries first (display only)"""
        rows = self._fetch_all("SELECT * FROM sync_logs ORDER BY id DESC LIMIT ?", (limit,))
        return [
            SyncLogEntry(
                id=row['id'],
                sync_type=row['sync_type'],
                status=row['status'],
                message=row['message'] or '',
                synced_at=row['synced_at'],
                records_synced=row['records_synced'],
            )
            for row in rows
        ]

    # Read-only queries for the dashboard and records views
    def get_dashboard_stats(self, today: str) -> Dict[str, int]:
        """Aggregate counts shown on the dashboard for the given day"""
        week_ago = days_before(today, 7)
        conn = self.get_connection()
        try:
            total_employees = conn.execute("SELECT COUNT(*) FROM employees").fetchone()[0]
            today_row = conn.execute("""
                SELECT COUNT(*), COALESCE(SUM(working_minutes), 0)
                FROM attendance WHERE attendance_date = ?
            """, (today,)).fetchone()
            weekly = conn.execute(
                "SELECT COUNT(*) FROM attendance WHERE attendance_date >= ?", (week_ago,)
            ).fetchone()[0]
            pending = (
                conn.execute("SELECT COUNT(*) FROM employees WHERE is_synced = 0").fetchone()[0]
                + conn.execute("SELECT COUNT(*) FROM attendance WHERE is_synced = 0").fetchone()[0]
            )
        finally:
            conn.close()

        return {
            'total_employees': total_employees,
            'today_attendance': today_row[0],
            'total_working_minutes_today': today_row[1],
            'pending_sync': pending,
            'weekly_attendance': weekly,
        }

    def search_attendance(self, query: str = "", attendance_date: Optional[str] = None) -> List[Dict[str, Any]]:
        """Attendance entries newest first, joined with employee name and department.

        ``query`` matches emp id, name or department case-insensitively;
        ``attendance_date`` restricts to a single day.
        """
        sql = """
            SELECT a.*, e.name AS employee_name, e.department AS employee_department
            FROM attendance a
            LEFT JOIN employees e ON e.emp_id = a.emp_id
        """
        conditions = []
        params: List[Any] = []

        if query:
            like = f"%{query.lower()}%"
            conditions.append(
                "(LOWER(a.emp_id) LIKE ? OR LOWER(COALESCE(e.name, '')) LIKE ?"
                " OR LOWER(COALESCE(e.department, '')) LIKE ?)"
            )
            params.extend([like, like, like])

        if attendance_date:
            conditions.append("a.attendance_date = ?")
            params.append(attendance_date)

        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY a.attendance_date DESC, a.login_time DESC"

        records = []
        for row in self._fetch_all(sql, params):
            record = _row_to_attendance(row).to_dict()
            record['employee_name'] = row['employee_name']
            record['employee_department'] = row['employee_department']
            records.append(record)
        return records

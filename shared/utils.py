"""
Shared utility functions for ScanClock application.
"""

import math
import os
import platform
import uuid
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional, Union

from platformdirs import user_data_dir

APP_NAME = "ScanClock"


def get_data_path(relative_path: str) -> Path:
    """Get absolute path to writable data files (databases, logs)

    Uses ``SCANCLOCK_DATA_DIR`` when set, otherwise the per-user data
    directory from ``platformdirs`` (e.g. ``~/.local/share/ScanClock``).
    """
    override = os.getenv('SCANCLOCK_DATA_DIR')
    base_path = Path(override) if override else Path(user_data_dir(APP_NAME))
    base_path.mkdir(parents=True, exist_ok=True)
    return base_path / relative_path


def generate_device_id() -> str:
    """Build a new, unique device identifier for this machine"""
    hostname = platform.node() or 'unknown'
    return f"scanclock-{hostname}-{uuid.uuid4().hex[:8]}"


def to_int_optional(value: Union[str, int, None]) -> Optional[int]:
    """Convert string to int, return None if invalid"""
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def format_datetime(dt: datetime) -> str:
    """Format datetime as an ISO string with microseconds"""
    return dt.isoformat(timespec='microseconds')


def parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    """Parse datetime string, return None if invalid"""
    if not dt_str:
        return None
    try:
        return datetime.fromisoformat(dt_str.replace('Z', '+00:00'))
    except ValueError:
        try:
            return datetime.strptime(dt_str, '%Y-%m-%d %H:%M:%S')
        except ValueError:
            return None


def format_date(d) -> str:
    """Format date to YYYY-MM-DD"""
    if isinstance(d, datetime):
        return d.date().isoformat()
    elif isinstance(d, date):
        return d.isoformat()
    elif isinstance(d, str):
        return d  # Already a string
    else:
        return str(d)


def parse_date(date_str: str) -> Optional[date]:
    """Parse date string, return None if invalid"""
    if not date_str:
        return None
    try:
        return date.fromisoformat(date_str)
    except ValueError:
        return None


def days_before(day: str, days: int) -> str:
    """Return the YYYY-MM-DD date ``days`` days before ``day``"""
    return format_date(date.fromisoformat(day) - timedelta(days=days))


def compute_working_minutes(login_time: datetime, logout_time: datetime) -> int:
    """Whole minutes between login and logout, rounded down and never negative"""
    if login_time.tzinfo is not None and logout_time.tzinfo is None:
        logout_time = logout_time.astimezone(login_time.tzinfo)
    elif login_time.tzinfo is None and logout_time.tzinfo is not None:
        login_time = login_time.astimezone(logout_time.tzinfo)

    minutes = math.floor((logout_time - login_time).total_seconds() / 60)
    return max(0, minutes)


def format_duration(minutes: int) -> str:
    """Format a duration in minutes, e.g. ``45m`` or ``8h 30m``"""
    hours, mins = divmod(int(minutes), 60)
    if hours == 0:
        return f"{mins}m"
    return f"{hours}h {mins}m"


def normalize_emp_id(emp_id: Optional[str]) -> str:
    """Strip whitespace (scanners often append a newline) from an employee id"""
    return (emp_id or "").strip()

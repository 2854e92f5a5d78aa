"""
Shared data models for the ScanClock application.
Used by both server and client components.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# Remote table names and their natural keys
EMPLOYEES_TABLE = "employees"
ATTENDANCE_TABLE = "attendance"

NATURAL_KEYS: Dict[str, Tuple[str, ...]] = {
    EMPLOYEES_TABLE: ("emp_id",),
    ATTENDANCE_TABLE: ("emp_id", "attendance_date"),
}

# Device id given to attendance pulled from a remote row that has none
CLOUD_DEVICE_ID = "cloud"


class SyncType(Enum):
    """What a sync log entry covers"""
    EMPLOYEES = "employees"
    ATTENDANCE = "attendance"
    FULL = "full"


class SyncLogStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"


class RecordAction(Enum):
    """Outcome of a successful attendance scan"""
    LOGIN = "login"
    LOGOUT = "logout"


@dataclass
class Employee:
    """Employee model with sync bookkeeping"""
    id: Optional[int] = None
    emp_id: str = ""
    name: str = ""
    department: str = ""
    designation: Optional[str] = None
    created_at: Optional[str] = None  # ISO format timestamp
    updated_at: Optional[str] = None  # ISO format timestamp
    is_synced: bool = False
    remote_id: Optional[str] = None  # Remote-assigned ID

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_remote_dict(self) -> Dict[str, Any]:
        """Payload pushed to the remote store (business fields only)"""
        return {
            'emp_id': self.emp_id,
            'name': self.name,
            'department': self.department,
            'designation': self.designation,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_remote_dict(cls, data: Dict[str, Any]) -> 'Employee':
        """Create an already-synced Employee from a remote row"""
        return cls(
            emp_id=data.get('emp_id') or "",
            name=data.get('name') or "",
            department=data.get('department') or "",
            designation=data.get('designation') or None,
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
            is_synced=True,
            remote_id=str(data['id']) if data.get('id') is not None else None,
        )


@dataclass
class AttendanceEntry:
    """One employee's attendance for one calendar day"""
    id: Optional[int] = None
    emp_id: str = ""
    attendance_date: str = ""  # YYYY-MM-DD
    login_time: Optional[str] = None  # ISO format timestamp
    logout_time: Optional[str] = None  # ISO format timestamp, None while the session is open
    working_minutes: Optional[int] = None
    device_id: str = ""
    is_synced: bool = False
    remote_id: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.logout_time is None

    @property
    def natural_key(self) -> Tuple[str, str]:
        return (self.emp_id, self.attendance_date)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_remote_dict(self) -> Dict[str, Any]:
        """Payload pushed to the remote store (business fields only)"""
        return {
            'emp_id': self.emp_id,
            'attendance_date': self.attendance_date,
            'login_time': self.login_time,
            'logout_time': self.logout_time,
            'working_minutes': self.working_minutes,
            'device_id': self.device_id,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_remote_dict(cls, data: Dict[str, Any]) -> 'AttendanceEntry':
        """Create an already-synced AttendanceEntry from a remote row"""
        return cls(
            emp_id=data.get('emp_id') or "",
            attendance_date=data.get('attendance_date') or "",
            login_time=data.get('login_time'),
            logout_time=data.get('logout_time') or None,
            working_minutes=data.get('working_minutes'),
            device_id=data.get('device_id') or CLOUD_DEVICE_ID,
            is_synced=True,
            remote_id=str(data['id']) if data.get('id') is not None else None,
            updated_at=data.get('updated_at'),
        )


@dataclass
class SyncLogEntry:
    """Audit trail row for one sync attempt"""
    id: Optional[int] = None
    sync_type: str = SyncType.FULL.value
    status: str = SyncLogStatus.SUCCESS.value
    message: str = ""
    synced_at: Optional[str] = None
    records_synced: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RecordResult:
    """Result of AttendanceRecorder.record_attendance"""
    action: RecordAction
    employee: Employee
    entry: AttendanceEntry


@dataclass
class SyncResult:
    """Counts produced by one completed sync cycle"""
    employees_pushed: int = 0
    attendance_pushed: int = 0
    employees_pulled: int = 0
    attendance_pulled: int = 0
    failed_records: List[str] = field(default_factory=list)

    @property
    def records_synced(self) -> int:
        return (self.employees_pushed + self.attendance_pushed
                + self.employees_pulled + self.attendance_pulled)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['records_synced'] = self.records_synced
        return data


@dataclass
class SyncStatus:
    """Status information for sync operations"""
    is_online: bool = False
    is_syncing: bool = False
    last_sync: Optional[str] = None  # ISO timestamp
    last_error: Optional[str] = None
    pending_count: int = 0  # Unsynced employees + unsynced attendance
    pending_employees: int = 0
    pending_attendance: int = 0
    server_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AdminSession:
    """Capability passed to admin-only client operations"""
    privileged: bool = False


@dataclass
class ApiResponse:
    """Standard API response wrapper"""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Configuration models
@dataclass
class ClientConfig:
    """Client configuration with validation"""
    server_url: str = ""
    device_id: str = ""
    api_key: str = ""
    sync_interval: int = 30  # seconds
    timeout: int = 10  # seconds

    def __post_init__(self) -> None:
        """Validate configuration after initialization"""
        if self.server_url:
            if not self.server_url.startswith(('http://', 'https://')):
                raise ValueError("Invalid server URL: must start with http:// or https://")
            self.server_url = self.server_url.rstrip('/')

        if not (5 <= self.sync_interval <= 3600):
            raise ValueError(f"Sync interval must be between 5 and 3600 seconds, got {self.sync_interval}")

        if not (1 <= self.timeout <= 120):
            raise ValueError(f"Timeout must be between 1 and 120 seconds, got {self.timeout}")

    def is_configured(self) -> bool:
        return bool(self.server_url and self.api_key)

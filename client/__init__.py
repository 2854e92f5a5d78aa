"""Client package for ScanClock application.

Provides the attendance recorder, connectivity monitor and the offline-first
sync service, plus the client facade that wires them together.
"""
from .attendance_recorder import AttendanceRecorder
from .connectivity import ConnectivityMonitor
from .remote_store import RemoteStore
from .sync_service import RemoteSyncService
from .timeclock_client import ScanClockClient, get_client, load_config

__all__ = [
    "AttendanceRecorder", "ConnectivityMonitor", "RemoteStore",
    "RemoteSyncService", "ScanClockClient", "get_client", "load_config",
]

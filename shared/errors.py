"""
Exception types shared by the ScanClock client and server.
"""

from typing import Optional


class ScanClockError(Exception):
    """Base class for all ScanClock errors"""
    pass


class EmployeeNotFound(ScanClockError):
    """No employee exists for the scanned or typed employee id"""

    def __init__(self, emp_id: str):
        self.emp_id = emp_id
        super().__init__(f"Employee with id '{emp_id}' not found")


class AlreadyClosed(ScanClockError):
    """The employee has already logged in and out today"""

    def __init__(self, emp_id: str, attendance_date: str):
        self.emp_id = emp_id
        self.attendance_date = attendance_date
        super().__init__(f"Employee '{emp_id}' already logged out on {attendance_date}")


class PermissionDenied(ScanClockError):
    """An admin operation was attempted without a privileged session"""
    pass


class RemoteStoreError(ScanClockError):
    """The remote store rejected a request or returned an unusable response"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class SyncCycleError(ScanClockError):
    """A sync cycle was aborted by an error not scoped to a single record"""
    pass

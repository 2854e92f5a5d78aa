#!/usr/bin/env python3
"""
ScanClock Application Launcher
Provides simple entry points for the reference server and terminal-mode client.
"""

import sys
from pathlib import Path

# Add the project root to Python path for clean imports
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

USAGE = """ScanClock Application Launcher

Usage:
  python launcher.py server [host] [port]                     # Run the remote store server (Waitress)
  python launcher.py configure <server_url> <api_key>         # Point this device at a server
  python launcher.py add-employee <emp_id> <name> [dept] [designation]
  python launcher.py scan <emp_id>                            # Record a login/logout
  python launcher.py sync                                     # Run one sync cycle now
  python launcher.py status                                   # Show sync and dashboard status

Add --debug to any command for verbose logging, --log-file to also write a log file.
"""


def _build_client():
    from PyQt6.QtCore import QCoreApplication

    from client.timeclock_client import ScanClockClient

    QCoreApplication.instance() or QCoreApplication(sys.argv)
    return ScanClockClient()


def _configure_logging(debug, log_to_file):
    from shared.logging_config import enable_debug_logging, enable_file_logging

    if debug:
        enable_debug_logging()
    if log_to_file:
        print(f"Logging to {enable_file_logging()}")


def _print_status(client):
    from shared.utils import format_duration

    status = client.get_sync_status()
    stats = client.get_dashboard_stats()
    print(f"Device:          {client.config.device_id}")
    print(f"Server:          {status.server_url or '(not configured)'}")
    print(f"Online:          {status.is_online}")
    print(f"Last sync:       {status.last_sync or 'never'}")
    print(f"Pending changes: {status.pending_count} "
          f"({status.pending_employees} employees, {status.pending_attendance} attendance)")
    print(f"Employees:       {stats['total_employees']}")
    print(f"Present today:   {stats['today_attendance']} "
          f"(worked {format_duration(stats['total_working_minutes_today'])})")
    print(f"Last 7 days:     {stats['weekly_attendance']} entries")


def main():
    """Main launcher with command-line arguments"""
    debug = "--debug" in sys.argv
    log_to_file = "--log-file" in sys.argv
    argv = [arg for arg in sys.argv if arg not in ("--debug", "--log-file")]
    if len(argv) < 2:
        print(USAGE)
        sys.exit(1)

    command = argv[1].lower()
    args = argv[2:]

    if command == 'server':
        from server import DEFAULT_SERVER_PORT, run_console_server
        _configure_logging(debug, log_to_file)
        host = args[0] if len(args) > 0 else '127.0.0.1'
        port = int(args[1]) if len(args) > 1 else DEFAULT_SERVER_PORT
        run_console_server(host=host, port=port)
        return

    from shared.errors import ScanClockError
    from shared.models import AdminSession, ClientConfig, RecordAction
    from shared.utils import format_duration

    _configure_logging(debug, log_to_file)
    client = _build_client()

    try:
        if command == 'configure' and len(args) == 2:
            client.update_config(ClientConfig(
                server_url=args[0],
                api_key=args[1],
                device_id=client.config.device_id,
                sync_interval=client.config.sync_interval,
                timeout=client.config.timeout,
            ))
            client.sync_service.wait_for_sync(timeout=client.config.timeout * 4)
            print(f"Configured server {client.config.server_url}")

        elif command == 'add-employee' and len(args) >= 2:
            employee = client.add_employee(
                AdminSession(privileged=True),
                emp_id=args[0],
                name=args[1],
                department=args[2] if len(args) > 2 else "",
                designation=args[3] if len(args) > 3 else None,
            )
            print(f"Added {employee.name} ({employee.emp_id})")

        elif command == 'scan' and len(args) == 1:
            result = client.record_attendance(args[0])
            if result.action is RecordAction.LOGIN:
                print(f"Welcome, {result.employee.name}!")
            else:
                print(f"Goodbye, {result.employee.name}! Worked {format_duration(result.entry.working_minutes)}")

        elif command == 'sync':
            if not client.monitor.check():
                print("Offline: server not reachable, changes stay queued")
                sys.exit(2)
            result = client.sync_now()
            if result is None:
                print("Sync skipped")
            else:
                print(f"Synced {result.records_synced} records, {client.pending_count} pending")

        elif command == 'status':
            client.monitor.check()
            _print_status(client)

        else:
            print(USAGE)
            sys.exit(1)

    except ScanClockError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except ValueError as e:
        print(f"Invalid input: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()

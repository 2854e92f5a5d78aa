"""Server package for ScanClock application.

Reference implementation of the shared remote store, served with Waitress.
"""
from .server import DEFAULT_SERVER_PORT, init_server_db, run_server
from .server import app as flask_app

__all__ = ["run_server", "flask_app", "init_server_db", "run_console_server", "DEFAULT_SERVER_PORT"]


def run_console_server(host='127.0.0.1', port=DEFAULT_SERVER_PORT):
    """Run the server directly in console mode using Waitress"""
    print("ScanClock Server - Console Mode")
    print(f"Starting server on {host}:{port}")
    run_server(host=host, port=port)

"""
ScanClock REST API Server
Shared remote store for ScanClock devices: natural-key upserts and bulk reads
for the employees and attendance tables.
"""

import sqlite3
import uuid
from datetime import datetime
from typing import Any, Dict, List

from flask import Flask, g, jsonify, request
from flask_cors import CORS

import shared
from shared.logging_config import get_server_logger
from shared.models import (ATTENDANCE_TABLE, EMPLOYEES_TABLE, NATURAL_KEYS,
                           ApiResponse)
from shared.utils import format_datetime, get_data_path, parse_date, parse_datetime

logger = get_server_logger()

# Server configuration constants
DB_BUSY_TIMEOUT_MS: int = 5000
DEFAULT_SERVER_PORT: int = 5000
WAITRESS_THREADS: int = 6
WAITRESS_CHANNEL_TIMEOUT: int = 60
DEFAULT_API_KEY = 'default-api-key'

app = Flask(__name__)
CORS(app)  # Enable CORS for all routes

app.config.setdefault('SERVER_DB', str(get_data_path('server_scanclock.db')))

# Columns accepted from clients, per table; natural key columns first
TABLE_COLUMNS: Dict[str, List[str]] = {
    EMPLOYEES_TABLE: ['emp_id', 'name', 'department', 'designation', 'created_at', 'updated_at'],
    ATTENDANCE_TABLE: ['emp_id', 'attendance_date', 'login_time', 'logout_time',
                       'working_minutes', 'device_id', 'updated_at'],
}

REQUIRED_COLUMNS: Dict[str, List[str]] = {
    EMPLOYEES_TABLE: ['emp_id', 'name'],
    ATTENDANCE_TABLE: ['emp_id', 'attendance_date', 'login_time'],
}


def _connect() -> sqlite3.Connection:
    conn = sqlite3.connect(app.config['SERVER_DB'])
    try:
        conn.execute(f"PRAGMA busy_timeout = {DB_BUSY_TIMEOUT_MS}")
        conn.execute("PRAGMA journal_mode = DELETE")
    except sqlite3.Error as e:
        logger.warning(f"Failed to set PRAGMA options: {e}")
    conn.row_factory = sqlite3.Row
    return conn


def get_db():
    """Get database connection (for Flask context)"""
    if 'db' not in g:
        g.db = _connect()
    return g.db


@app.teardown_appcontext
def close_db(error):
    """Close database connection"""
    db = g.pop('db', None)
    if db is not None:
        db.close()


def init_server_db(default_api_key: str = DEFAULT_API_KEY):
    """Initialize server database"""
    conn = _connect()
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS employees (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                emp_id TEXT UNIQUE NOT NULL,
                name TEXT NOT NULL,
                department TEXT NOT NULL DEFAULT '',
                designation TEXT,
                created_at TEXT,
                updated_at TEXT,
                synced_at TEXT
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
                device_id TEXT,
                updated_at TEXT,
                synced_at TEXT,
                UNIQUE(emp_id, attendance_date)
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS api_keys (
                key TEXT PRIMARY KEY,
                device_id TEXT NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                last_used TEXT DEFAULT CURRENT_TIMESTAMP,
                active BOOLEAN DEFAULT TRUE
            )
        """)

        if default_api_key:
            conn.execute("""
                INSERT OR IGNORE INTO api_keys (key, device_id, active)
                VALUES (?, 'default-device', 1)
            """, (default_api_key,))

        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        logger.error(f"Failed to initialize server database: {e}")
        raise
    finally:
        conn.close()


def authenticate_request():
    """Authenticate API request using Bearer token; returns the device id"""
    auth_header = request.headers.get('Authorization')
    if not auth_header or not auth_header.startswith('Bearer '):
        logger.debug("Auth failed: No Bearer token in request")
        return None

    api_key = auth_header[7:]  # Remove 'Bearer '

    db = get_db()
    row = db.execute(
        "SELECT device_id, active FROM api_keys WHERE key = ?",
        (api_key,)
    ).fetchone()

    if not row:
        logger.warning(f"Auth failed: API key not found (key: {api_key[:8]}...)")
        return None

    if not row['active']:
        logger.warning("Auth failed: API key exists but is not active")
        return None

    db.execute("UPDATE api_keys SET last_used = CURRENT_TIMESTAMP WHERE key = ?", (api_key,))
    db.commit()

    return row['device_id']


def require_auth(f):
    """Decorator to require authentication"""
    def decorated_function(*args, **kwargs):
        device_id = authenticate_request()
        if not device_id:
            return jsonify(ApiResponse(False, error="Unauthorized").to_dict()), 401
        g.device_id = device_id
        return f(*args, **kwargs)
    decorated_function.__name__ = f.__name__
    return decorated_function


@app.errorhandler(400)
def bad_request(error):
    return jsonify(ApiResponse(False, error="Bad request").to_dict()), 400


@app.errorhandler(404)
def not_found(error):
    return jsonify(ApiResponse(False, error="Not found").to_dict()), 404


@app.errorhandler(405)
def method_not_allowed(error):
    return jsonify(ApiResponse(False, error="Method not allowed").to_dict()), 405


@app.errorhandler(500)
def internal_error(error):
    logger.error(f"Internal error: {error}")
    return jsonify(ApiResponse(False, error="Internal server error").to_dict()), 500


@app.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify(ApiResponse(True, data={"status": "healthy", "timestamp": format_datetime(datetime.now())}).to_dict())


@app.route('/api/v1/info', methods=['GET'])
def get_server_info():
    """Get server version information"""
    return jsonify(ApiResponse(True, data={
        "server_time": format_datetime(datetime.now()),
        "version": shared.__VERSION__,
        "api_version": shared.__API_VERSION__,
        "tables": {table: list(keys) for table, keys in NATURAL_KEYS.items()},
    }).to_dict())


def _validate_record(table: str, record: Dict[str, Any]):
    """Return an error message for an unacceptable record, else None"""
    for column in REQUIRED_COLUMNS[table]:
        value = record.get(column)
        if value is None or (isinstance(value, str) and not value.strip()):
            return f"Missing required field: {column}"

    if table == ATTENDANCE_TABLE:
        if parse_date(record['attendance_date']) is None:
            return "attendance_date must be a YYYY-MM-DD date"
        for column in ('login_time', 'logout_time'):
            if record.get(column) and parse_datetime(record[column]) is None:
                return f"{column} must be a valid datetime string"
        minutes = record.get('working_minutes')
        if minutes is not None and not isinstance(minutes, int):
            return "working_minutes must be an integer"

    return None


@app.route('/api/v1/<table>', methods=['GET'])
@require_auth
def list_records(table):
    """Return every row of a table"""
    if table not in TABLE_COLUMNS:
        return jsonify(ApiResponse(False, error=f"Unknown table: {table}").to_dict()), 404

    try:
        db = get_db()
        order = "emp_id" if table == EMPLOYEES_TABLE else "attendance_date, emp_id"
        rows = db.execute(f"SELECT * FROM {table} ORDER BY {order}").fetchall()
        return jsonify(ApiResponse(True, data={"records": [dict(row) for row in rows]}).to_dict())

    except sqlite3.Error as e:
        logger.error(f"Error listing {table}: {e}")
        return jsonify(ApiResponse(False, error=str(e)).to_dict()), 500


@app.route('/api/v1/<table>/upsert', methods=['POST'])
@require_auth
def upsert_record(table):
    """Insert a row, or overwrite the row with the same natural key"""
    if table not in TABLE_COLUMNS:
        return jsonify(ApiResponse(False, error=f"Unknown table: {table}").to_dict()), 404

    data = request.get_json(silent=True)
    if not data or not isinstance(data.get('record'), dict):
        return jsonify(ApiResponse(False, error="No record provided").to_dict()), 400

    natural_key = list(NATURAL_KEYS[table])
    if list(data.get('on_conflict') or []) != natural_key:
        return jsonify(ApiResponse(
            False, error=f"on_conflict must be {','.join(natural_key)}").to_dict()), 400

    record = data['record']
    error = _validate_record(table, record)
    if error:
        return jsonify(ApiResponse(False, error=error).to_dict()), 400

    columns = TABLE_COLUMNS[table] + ['synced_at']
    values = [record.get(column) for column in TABLE_COLUMNS[table]] + [format_datetime(datetime.now())]
    if table == EMPLOYEES_TABLE and values[2] is None:
        values[2] = ''  # department

    updates = ', '.join(f"{column} = excluded.{column}" for column in columns if column not in natural_key)
    placeholders = ', '.join('?' * len(columns))

    db = get_db()
    try:
        db.execute(f"""
            INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})
            ON CONFLICT({', '.join(natural_key)}) DO UPDATE SET {updates}
        """, values)
        db.commit()

        where = ' AND '.join(f"{column} = ?" for column in natural_key)
        row = db.execute(f"SELECT * FROM {table} WHERE {where}",
                         [record[column] for column in natural_key]).fetchone()

    except sqlite3.Error as e:
        db.rollback()
        logger.error(f"Error upserting into {table}: {e}")
        return jsonify(ApiResponse(False, error="Internal server error").to_dict()), 500

    logger.debug(f"Upserted {table} {[record[column] for column in natural_key]} from {g.device_id}")
    return jsonify(ApiResponse(True, data=dict(row)).to_dict())


@app.route('/api/v1/devices/onboard', methods=['POST'])
def onboard_device():
    """Onboard a new device and issue API key"""
    data = request.get_json(silent=True)
    if not data or not data.get('device_id'):
        return jsonify(ApiResponse(False, error="device_id required").to_dict()), 400

    device_id = data['device_id']
    api_key = str(uuid.uuid4())

    try:
        db = get_db()
        now = format_datetime(datetime.now())
        db.execute("""
            INSERT INTO api_keys (key, device_id, created_at, last_used, active)
            VALUES (?, ?, ?, ?, 1)
        """, (api_key, device_id, now, now))
        db.commit()
    except sqlite3.Error as e:
        logger.error(f"Error onboarding device: {e}")
        return jsonify(ApiResponse(False, error=str(e)).to_dict()), 500

    logger.info(f"Onboarded device {device_id}")
    return jsonify(ApiResponse(True, data={
        "api_key": api_key,
        "device_id": device_id
    }).to_dict()), 201


def run_server(host='127.0.0.1', port=DEFAULT_SERVER_PORT):
    """Run server with Waitress WSGI server"""
    from waitress import serve

    init_server_db()
    logger.info(f"Starting ScanClock Server on {host}:{port}")
    logger.info(f"Database: {app.config['SERVER_DB']}")

    serve(
        app,
        host=host,
        port=port,
        threads=WAITRESS_THREADS,
        channel_timeout=WAITRESS_CHANNEL_TIMEOUT,
    )


if __name__ == '__main__':
    run_server()

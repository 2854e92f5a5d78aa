"""
HTTP client for the shared remote store.

Talks to the ScanClock REST API (see ``server/server.py``) using the
``{"success", "data", "error"}`` envelope. Upserts are keyed on each
table's natural key so repeating a push never creates a duplicate.
"""

from typing import Any, Dict, List, Sequence

import requests

import shared
from shared.errors import RemoteStoreError
from shared.logging_config import get_sync_logger
from shared.models import NATURAL_KEYS, ClientConfig

logger = get_sync_logger()

HEALTH_TIMEOUT_SECONDS: int = 3


class RemoteStore:
    """Remote CRUD API keyed by business keys"""

    def __init__(self, config: ClientConfig, session: requests.Session = None):
        self.config = config
        self._session = session or requests.Session()
        self._session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': f'ScanClock-Client/{shared.__VERSION__}'
        })
        self._apply_api_key()

    def _apply_api_key(self):
        if self.config.api_key:
            self._session.headers['Authorization'] = f'Bearer {self.config.api_key}'
            logger.debug(f"Remote store using API key: {self.config.api_key[:8]}...")
        else:
            self._session.headers.pop('Authorization', None)

    def update_config(self, config: ClientConfig):
        self.config = config
        self._apply_api_key()

    def _url(self, path: str) -> str:
        return f"{self.config.server_url}{path}"

    @staticmethod
    def _check_table(table: str):
        if table not in NATURAL_KEYS:
            raise ValueError(f"Unknown remote table: {table}")

    def _unwrap(self, response: requests.Response, action: str) -> Any:
        """Return the envelope's data or raise RemoteStoreError"""
        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            raise RemoteStoreError(
                f"{action}: invalid JSON response ({response.status_code})",
                status_code=response.status_code
            )

        if response.status_code >= 400 or not body.get('success'):
            error = body.get('error') or response.reason or 'unknown error'
            raise RemoteStoreError(
                f"{action}: {response.status_code} {error}",
                status_code=response.status_code
            )

        return body.get('data')

    def upsert(self, table: str, natural_key_columns: Sequence[str], record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or overwrite the row matching the record's natural key.

        Returns the stored row including its remote ``id``.
        """
        self._check_table(table)
        response = self._session.post(
            self._url(f"/api/v1/{table}/upsert"),
            json={'on_conflict': list(natural_key_columns), 'record': record},
            timeout=self.config.timeout
        )
        data = self._unwrap(response, f"upsert {table}")
        if not isinstance(data, dict) or data.get('id') is None:
            raise RemoteStoreError(f"upsert {table}: response did not include an id",
                                   status_code=response.status_code)
        return data

    def list_all(self, table: str) -> List[Dict[str, Any]]:
        """Fetch every row of a remote table"""
        self._check_table(table)
        response = self._session.get(
            self._url(f"/api/v1/{table}"),
            timeout=self.config.timeout
        )
        data = self._unwrap(response, f"list {table}")
        records = (data or {}).get('records')
        if not isinstance(records, list):
            raise RemoteStoreError(f"list {table}: response did not include records",
                                   status_code=response.status_code)
        return records

    def ping(self) -> bool:
        """Check if the remote store is reachable"""
        if not self.config.server_url:
            return False

        try:
            response = self._session.get(self._url("/health"), timeout=HEALTH_TIMEOUT_SECONDS)
        except requests.RequestException as e:
            logger.debug(f"Health check failed: {e}")
            return False

        if response.status_code != 200:
            logger.debug(f"Health check returned {response.status_code}")
        return response.status_code == 200

"""
Periodic read-only dashboard query, independent of the sync cadence.
"""

from datetime import datetime
from typing import Callable, Dict

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

from shared.db_helpers import DatabaseException, LocalStore
from shared.logging_config import get_client_logger
from shared.utils import format_date

logger = get_client_logger()

DEFAULT_POLL_INTERVAL_MS: int = 30000


class StatsPoller(QObject):
    """Re-reads dashboard statistics from the local store on a timer"""

    stats_updated = pyqtSignal(dict)

    def __init__(self, store: LocalStore, interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
                 clock: Callable[[], datetime] = datetime.now, parent=None):
        super().__init__(parent)
        self.store = store
        self.interval_ms = interval_ms
        self._clock = clock
        self.latest: Dict[str, int] = {}

        self.poll_timer = QTimer(self)
        self.poll_timer.timeout.connect(self.refresh)

    def refresh(self) -> Dict[str, int]:
        try:
            self.latest = self.store.get_dashboard_stats(format_date(self._clock()))
        except DatabaseException as e:
            logger.warning(f"Could not load dashboard stats: {e}")
            return self.latest

        self.stats_updated.emit(self.latest)
        return self.latest

    def start(self):
        self.refresh()
        self.poll_timer.start(self.interval_ms)

    def stop(self):
        self.poll_timer.stop()

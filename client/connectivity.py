"""
Connectivity monitor for the ScanClock client.

Tracks whether the remote store is reachable and emits ``online_changed``
on every offline/online transition. The state is either probed on a timer
or pushed in by the platform's network-reachability signal via
``set_online``.
"""

import threading
from typing import Callable, Optional

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

from shared.logging_config import get_client_logger

logger = get_client_logger()

DEFAULT_CHECK_INTERVAL_MS: int = 5000


class ConnectivityMonitor(QObject):
    """Reports online/offline state and its transitions"""

    online_changed = pyqtSignal(bool)

    def __init__(self, probe: Optional[Callable[[], bool]] = None,
                 check_interval_ms: int = DEFAULT_CHECK_INTERVAL_MS,
                 initial_state: bool = False, parent=None):
        super().__init__(parent)
        self._probe = probe
        self._online = initial_state
        self._running = False
        self._state_lock = threading.Lock()
        self.check_interval_ms = check_interval_ms

        self.check_timer = QTimer(self)
        self.check_timer.timeout.connect(self._trigger_background_check)

    @property
    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> bool:
        """Record the current state; emits online_changed only on a transition.

        Returns True when the state changed.
        """
        online = bool(online)
        with self._state_lock:
            if online == self._online:
                return False
            self._online = online

        logger.info("Connectivity: online" if online else "Connectivity: offline")
        self.online_changed.emit(online)
        return True

    def check(self) -> bool:
        """Run the reachability probe once and update the state"""
        if self._probe is None:
            return self._online

        try:
            online = bool(self._probe())
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False

        self.set_online(online)
        return online

    def set_probe(self, probe: Optional[Callable[[], bool]]) -> bool:
        """Replace the reachability probe and re-check right away.

        Without a probe the device is considered offline. Returns the new state.
        """
        self._probe = probe
        if probe is None:
            self.check_timer.stop()
            self.set_online(False)
            return False

        online = self.check()
        if self._running and not self.check_timer.isActive():
            self.check_timer.start(self.check_interval_ms)
        return online

    def _trigger_background_check(self):
        """Probe in a background thread so a slow network never blocks the UI"""
        threading.Thread(target=self.check, daemon=True).start()

    def start(self):
        """Start periodic probing"""
        self._running = True
        if self._probe is None:
            logger.debug("No connectivity probe configured, relying on set_online()")
            return
        self._trigger_background_check()
        self.check_timer.start(self.check_interval_ms)

    def stop(self):
        self._running = False
        self.check_timer.stop()

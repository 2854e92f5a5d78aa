"""
Logging for ScanClock.

All component loggers (``scanclock.client``, ``scanclock.sync``,
``scanclock.server``) hang off one ``scanclock`` parent that owns the
handlers: a console handler colored with termcolor when attached to a
terminal, and optionally one file per run. Each line reads
``[timestamp] [COMPONENT] [LEVEL] message``.
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Union

from termcolor import colored

from shared.utils import get_data_path

ROOT_LOGGER_NAME = "scanclock"
LOG_FORMAT = '[%(asctime)s] [%(component)s] [%(levelname)s] %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class ScanClockFormatter(logging.Formatter):
    """Tags each line with its component, taken from the logger name"""

    LEVEL_COLORS = {
        'DEBUG': 'cyan',
        'INFO': 'green',
        'WARNING': 'yellow',
        'ERROR': 'red',
        'CRITICAL': 'magenta'
    }

    def __init__(self, use_colors: bool = False):
        super().__init__(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
        self.use_colors = use_colors

    def format(self, record):
        # scanclock.sync -> SYNC
        record.component = record.name.rpartition('.')[2].upper()
        formatted = super().format(record)
        if self.use_colors:
            return colored(formatted, self.LEVEL_COLORS.get(record.levelname, 'white'))
        return formatted


def _is_terminal(stream) -> bool:
    try:
        return bool(stream and stream.isatty())
    except (AttributeError, OSError, ValueError):
        return False


def _root_logger() -> logging.Logger:
    """The shared parent logger, given a console handler on first use"""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        stream = sys.stdout or sys.stderr
        console = logging.StreamHandler(stream)
        console.setFormatter(ScanClockFormatter(use_colors=_is_terminal(stream)))
        root.addHandler(console)
        root.setLevel(logging.INFO)
    return root


def get_logger(component: str) -> logging.Logger:
    _root_logger()
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{component.lower()}")


def get_client_logger() -> logging.Logger:
    return get_logger("client")


def get_server_logger() -> logging.Logger:
    return get_logger("server")


def get_sync_logger() -> logging.Logger:
    return get_logger("sync")


def set_log_level(level: str):
    """Set the level of every ScanClock logger and handler"""
    level_value = getattr(logging, level.upper(), logging.INFO)
    root = _root_logger()
    root.setLevel(level_value)
    for handler in root.handlers:
        handler.setLevel(level_value)


def enable_debug_logging():
    set_log_level("DEBUG")


def enable_file_logging(log_file: Union[str, Path, None] = None) -> Path:
    """Also write ScanClock logs to a file and return its path.

    Defaults to a new file per run under ``logs/`` in the data directory.
    Enabling the same file twice adds no second handler.
    """
    if log_file is None:
        stamp = datetime.now().strftime('%Y-%m-%d_%H-%M-%S')
        log_file = get_data_path('logs') / f"scanclock_{stamp}.log"
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = _root_logger()
    target = os.path.abspath(log_file)
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
            return log_file

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setFormatter(ScanClockFormatter(use_colors=False))
    root.addHandler(file_handler)
    return log_file

"""
Centralized logging configuration for Ensemble
Handles all logging setup and provides convenience functions
"""

import logging
import logging.handlers
import platform
import sys
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Deque, List, Optional
# No config import here: config -> settings -> logging_config would be circular

if "__compiled__" in globals() or getattr(sys, 'frozen', False):
    ROOT_DIR = Path(sys.argv[0]).parent
else:
    ROOT_DIR = Path(__file__).parent

LOGS_DIR = ROOT_DIR / "logs"

# Define log formats
CONSOLE_FORMAT = '(%(filename)s:%(lineno)d) %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s'
RECENT_FORMAT = '[%(asctime)s] %(levelname)-7s [%(name)s] %(message)s'

# Loggers that dump full websocket frames (including auth tokens) at DEBUG
QUIET_LOGGERS = (
    "music_assistant_client",
    "music_assistant_client.connection",
    "aiohttp",
    "aiohttp.client",
)

# Track if logging has been initialized
_logging_initialized = False
_recent_handler: Optional["RecentLogHandler"] = None


class RecentLogHandler(logging.Handler):
    """
    Keeps the most recent log records in memory.

    Lets a running client show its own log or attach it to a bug report
    without reading the rotated files back from disk.
    """

    def __init__(self, max_entries: int = 1000, level: int = logging.DEBUG):
        super().__init__(level)
        self._records: Deque[logging.LogRecord] = deque(maxlen=max_entries)
        self.setFormatter(logging.Formatter(RECENT_FORMAT, datefmt='%H:%M:%S'))

    def emit(self, record: logging.LogRecord) -> None:
        self._records.append(record)

    @property
    def records(self) -> List[logging.LogRecord]:
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()

    def get_logs(self, min_level: int = logging.INFO) -> str:
        """Formatted entries at or above min_level, oldest first"""
        return "\n".join(self.format(r) for r in self._records if r.levelno >= min_level)

    def count(self, level: int) -> int:
        return sum(1 for r in self._records if r.levelno == level)


def setup_logging(
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    console: bool = True,
    log_file: Optional[str] = None,
    max_entries: int = 1000,
    max_bytes: int = 1 * 1024 * 1024,
    backup_count: int = 10,
) -> None:
    """
    Set up logging configuration with separate console and file handlers

    Args:
        console_level: Logging level for console output (default: INFO)
        file_level: Logging level for file output (default: DEBUG)
        console: Whether to enable console logging (default: True)
        log_file: Optional custom log file name
        max_entries: Size of the in-memory recent log buffer
        max_bytes: Rotate the log file after this many bytes
        backup_count: Rotated files to keep
    """
    global _logging_initialized, _recent_handler
    if _logging_initialized:
        return

    if not log_file:
        log_file = "app.log"
    LOGS_DIR.mkdir(exist_ok=True)
    log_path = LOGS_DIR / log_file

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all levels

    # Clear any existing handlers
    root_logger.handlers = []

    # Console handler (simpler format)
    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, console_level.upper()))
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        root_logger.addHandler(console_handler)

    # File handler (detailed format)
    file_handler = logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(getattr(logging, file_level.upper()))
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    root_logger.addHandler(file_handler)

    _recent_handler = RecentLogHandler(max_entries=max_entries)
    root_logger.addHandler(_recent_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # Force UTF-8 encoding for Windows console
    if sys.platform.startswith('win'):
        sys.stdout.reconfigure(encoding='utf-8')
        sys.stderr.reconfigure(encoding='utf-8')

    _logging_initialized = True

    root_logger.info(f"Logging initialized - Console: {console_level}, File: {file_level}")
    root_logger.debug(f"Log file: {log_path}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name"""
    # setup_logging() must be called explicitly by the entry point.
    return logging.getLogger(name)


def get_recent_logs(min_level: int = logging.INFO) -> str:
    """Recent in-memory log entries, empty if logging was never set up"""
    if _recent_handler is None:
        return ""
    return _recent_handler.get_logs(min_level)


def generate_bug_report(handler: Optional[RecentLogHandler] = None) -> str:
    """
    Build a plain-text bug report from the recent log buffer.

    Entries are listed newest first so the failure is at the top.
    """
    from config import VERSION

    handler = handler or _recent_handler
    records = handler.records if handler else []
    formatter = handler.formatter if handler else logging.Formatter(RECENT_FORMAT)
    rule = "=" * 39

    lines = [
        rule,
        "ENSEMBLE BUG REPORT",
        f"Generated: {datetime.now().isoformat()}",
        rule,
        "",
        "APP INFO:",
        f"  Version: {VERSION}",
        f"  Python: {platform.python_version()}",
        f"  Platform: {platform.system()} {platform.release()}",
        "",
        "LOG SUMMARY:",
        f"  Total entries: {len(records)}",
        f"  Errors: {sum(1 for r in records if r.levelno >= logging.ERROR)}",
        f"  Warnings: {sum(1 for r in records if r.levelno == logging.WARNING)}",
        "",
        rule,
        "LOGS (newest first):",
        rule,
        "",
    ]
    lines.extend(formatter.format(r) for r in reversed(records))
    return "\n".join(lines)

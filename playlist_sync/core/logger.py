"""
Logging configuration for playlist-sync.

This module sets up the logging system with multiple outputs:
    - Console: Real-time messages with tqdm-compatible formatting
    - log_full_<ts>.log: Complete log of all events (DEBUG and above)
    - log_errors_<ts>.log: Only ERROR and CRITICAL level messages
    - sync_conflicts_<ts>.log: Conflicts the merge engine resolved on its own

Every console message also lands in the full log; the error log and the
conflict report are filtered views of the same records.

Log File Locations:
    storage.logs_directory from config.yaml, one set of timestamped files
    per psync invocation.

Usage:
    from playlist_sync.core.logger import setup_logging, get_logger

    setup_logging(logs_dir)  # Call once at startup
    logger = get_logger(__name__)  # Get logger for each module

    logger.info("Starting sync")
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, TextIO

from tqdm import tqdm


# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# ANSI color codes
class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BOLD = "\033[1m"


class ColoredConsoleFormatter(logging.Formatter):
    """
    Formatter that colors the level name on console output.

    Colors:
        - DEBUG: Blue
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bold Red
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.BLUE,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.WHITE)
        return f"{color}{record.levelname}{Colors.RESET}: {record.getMessage()}"


class TqdmLoggingHandler(logging.Handler):
    """
    Console handler that writes through tqdm.write().

    The `sync --retries` loop shows a tqdm bar while waiting between
    attempts; writing through tqdm keeps log lines above the bar instead
    of tearing it.

    Attributes:
        stream: The output stream (defaults to sys.stderr).
    """

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream)
        except Exception:
            self.handleError(record)


class SyncConflictHandler(logging.Handler):
    """
    Handler that captures merge conflicts for the conflict report file.

    This handler listens for log records that carry conflict information
    and writes them to sync_conflicts_<ts>.log in a simple, human-readable
    format, so the user can review what the merge decided on their behalf:

        [PLAYLIST_RENAMED_BOTH_SIDES] Summer (1700000000000)
        Renamed on both sides: local 'Road Trip', remote 'Summer'; kept the remote name
        Resolution: REMOTE_WINS

    The handler looks for specific extra fields in log records:
        - 'sync_conflict_type': ConflictType name
        - 'sync_conflict_playlist_id': Playlist id
        - 'sync_conflict_playlist_name': Playlist name at merge time
        - 'sync_conflict_description': Human-readable description
        - 'sync_conflict_resolution': ConflictResolution name

    Only records containing these fields are written to the report.

    Attributes:
        report_path: Path to the sync_conflicts log file.
        report_file: Open file handle (set by open()).

    Usage:
        log_sync_conflict(logger, conflict)
    """

    def __init__(self, report_path: Path) -> None:
        """
        Initialize the conflict handler.

        Args:
            report_path: Path to the report file.
                         File will be created/overwritten.
        """
        super().__init__()
        self.report_path = report_path
        self.report_file: TextIO | None = None

    def open(self) -> None:
        """
        Open the report file for writing.

        Called by setup_logging() after handler is created.
        File is opened in write mode (overwrites existing content).
        """
        self.report_file = open(self.report_path, "w", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        """
        Write conflict info to the report if present in the log record.

        Args:
            record: The log record to check and potentially write.

        Behavior:
            1. Check if record has 'sync_conflict_type' attribute
            2. If not present, ignore the record (return immediately)
            3. If present, write a three-line entry followed by a blank line
        """
        if not hasattr(record, "sync_conflict_type"):
            return

        if self.report_file is None:
            return

        try:
            conflict_type = getattr(record, "sync_conflict_type", "UNKNOWN")
            playlist_id = getattr(record, "sync_conflict_playlist_id", "?")
            playlist_name = getattr(record, "sync_conflict_playlist_name", "")
            description = getattr(record, "sync_conflict_description", "")
            resolution = getattr(record, "sync_conflict_resolution", "")

            self.report_file.write(f"[{conflict_type}] {playlist_name} ({playlist_id})\n")
            self.report_file.write(f"{description}\n")
            self.report_file.write(f"Resolution: {resolution}\n\n")
            self.report_file.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        """
        Close the report file handle.

        Safe to call multiple times.
        """
        if self.report_file is not None:
            self.report_file.close()
            self.report_file = None
        super().close()


class ErrorOnlyFilter(logging.Filter):
    """
    Filter that only allows ERROR and CRITICAL level records.

    Used by the error log file handler to exclude DEBUG, INFO, and WARNING.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def setup_logging(logs_dir: Path, verbose: bool = False) -> None:
    """
    Configure the logging system for the application.

    This function should be called ONCE at application startup, after
    the configuration is loaded but before any other operations.

    Args:
        logs_dir: Directory where log files will be created.
        verbose: If True, the console shows DEBUG messages too.

    Behavior:
        1. Create logs_dir if it doesn't exist
        2. Generate timestamp for this run's log files
        3. Configure root logger level to DEBUG
        4. Console handler (TqdmLoggingHandler), INFO or DEBUG, colored
        5. Full log file handler: log_full_{timestamp}.log, DEBUG
        6. Error log file handler: log_errors_{timestamp}.log, ERROR+
        7. Conflict report handler: sync_conflicts_{timestamp}.log

    Thread Safety:
        This function is NOT thread-safe. Call it once from the main
        thread before starting any worker threads.
    """
    logs_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Drop handlers from a previous setup_logging() call
    for handler in root_logger.handlers[:]:
        handler.close()
    root_logger.handlers.clear()

    # Console handler (tqdm-compatible) with colors
    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    # Full log file handler
    full_log_path = logs_dir / f"log_full_{timestamp}.log"
    full_handler = logging.FileHandler(full_log_path, mode="w", encoding="utf-8")
    full_handler.setLevel(logging.DEBUG)
    full_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    root_logger.addHandler(full_handler)

    # Error-only log file handler
    error_log_path = logs_dir / f"log_errors_{timestamp}.log"
    error_handler = logging.FileHandler(error_log_path, mode="w", encoding="utf-8")
    error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
    error_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    error_handler.addFilter(ErrorOnlyFilter())
    root_logger.addHandler(error_handler)

    # Conflict report handler
    conflicts_path = logs_dir / f"sync_conflicts_{timestamp}.log"
    conflict_handler = SyncConflictHandler(conflicts_path)
    conflict_handler.open()
    root_logger.addHandler(conflict_handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.
              This creates a hierarchy like 'playlist_sync.sync.merge'.

    Returns:
        logging.Logger: A logger instance configured by setup_logging().

    Note:
        Loggers obtained before setup_logging() is called propagate to a
        root logger without handlers, so library use stays silent.
    """
    return logging.getLogger(name)


def format_report_line(label: str, value: int) -> str:
    """Format one count of a merge report, highlighted when non-zero."""
    color = Colors.CYAN if value else Colors.WHITE
    return f"  {label}: {color}{value}{Colors.RESET}"


def log_sync_conflict(logger: logging.Logger, conflict: Any) -> None:
    """
    Log a conflict that the merge engine resolved automatically.

    Attaches the extra fields that SyncConflictHandler picks up to write
    sync_conflicts_<ts>.log.

    Args:
        logger: The logger to use for the message.
        conflict: A sync.models.Conflict (typed loosely to keep this
                  module free of model imports).

    Example:
        log_sync_conflict(logger, Conflict(
            type=ConflictType.PLAYLIST_RENAMED_BOTH_SIDES,
            playlist_id=1700000000000,
            playlist_name="Road Trip",
            description="Renamed on both devices ...",
            resolution=ConflictResolution.REMOTE_WINS,
        ))
    """
    logger.warning(
        f"Conflict on playlist '{conflict.playlist_name}': {conflict.description}",
        extra={
            "sync_conflict_type": conflict.type.name,
            "sync_conflict_playlist_id": conflict.playlist_id,
            "sync_conflict_playlist_name": conflict.playlist_name,
            "sync_conflict_description": conflict.description,
            "sync_conflict_resolution": conflict.resolution.name,
        }
    )


def shutdown_logging() -> None:
    """
    Properly shut down the logging system.

    Flushes and closes every handler on the root logger, then removes
    them. Typically called in a finally block of the CLI entry point.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        handler.flush()
        handler.close()
        root_logger.removeHandler(handler)

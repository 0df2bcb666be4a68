"""Logging setup and configuration."""

import io
import logging
import shutil
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from queued_api.logging.formatters import ConsoleFormatter, JSONFormatter

# Default settings
DEFAULT_LOG_DIR = Path("logs")
DEFAULT_ROTATION_WHEN = "midnight"
DEFAULT_ROTATION_INTERVAL = 1
DEFAULT_BACKUP_COUNT = 30  # Keep 30 days of logs
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG
ERROR_LOG_NAME = "errors.log"

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "aiohttp",
    "aiohttp.access",
    "aiohttp.client",
    "asyncio",
    "urllib3",
]


class ArchivingTimedRotatingFileHandler(TimedRotatingFileHandler):
    """
    TimedRotatingFileHandler that moves rotated files to an archive folder.

    When a log file is rotated (e.g., api.log -> api.log.2026-01-22), the backup
    is moved to an 'archive' subdirectory to keep the main log directory clean:

        logs/api.log                         (current file)
        logs/archive/api.log.2026-01-22
        logs/archive/api.log.2026-01-21

    If archive_dir is provided, rotated files are moved there instead.
    """

    def __init__(
        self,
        filename,
        when="midnight",
        interval=1,
        backupCount=0,
        encoding=None,
        delay=False,
        utc=False,
        archive_dir=None,
    ):
        super().__init__(filename, when, interval, backupCount, encoding, delay, utc)
        if archive_dir:
            self.archive_dir = Path(archive_dir)
        else:
            self.archive_dir = Path(self.baseFilename).parent / "archive"

        self.archive_dir.mkdir(parents=True, exist_ok=True)

    def getFilesToDelete(self):
        # Backups live in the archive folder, so retention must look there
        base_name = Path(self.baseFilename).name
        archived = sorted(
            str(path)
            for path in self.archive_dir.glob(f"{base_name}.*")
            if self.extMatch.match(path.name[len(base_name) + 1 :])
        )
        if len(archived) <= self.backupCount:
            return []
        return archived[: len(archived) - self.backupCount]

    def doRollover(self):
        super().doRollover()

        log_path = Path(self.baseFilename)
        for rotated_file in log_path.parent.glob(f"{log_path.name}.*"):
            if rotated_file == log_path:
                continue

            archive_file = self.archive_dir / rotated_file.name
            try:
                shutil.move(str(rotated_file), str(archive_file))
            except OSError as e:
                # Not through logging, this runs inside a handler
                print(
                    f"Warning: Failed to archive {rotated_file}: {e}", file=sys.stderr
                )

        if self.backupCount > 0:
            for stale in self.getFilesToDelete():
                Path(stale).unlink(missing_ok=True)


def _console_handler() -> logging.StreamHandler:
    if sys.platform == "win32":
        safe_stdout = io.TextIOWrapper(
            sys.stdout.buffer, encoding="utf-8", errors="replace"
        )
        return logging.StreamHandler(safe_stdout)
    return logging.StreamHandler(sys.stdout)


def setup_logging(
    name: str = "queued_api",
    log_dir: Path | str | None = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    rotation_when: str = DEFAULT_ROTATION_WHEN,
    rotation_interval: int = DEFAULT_ROTATION_INTERVAL,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    error_log: bool = True,
    suppress_noisy: bool = True,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Configure root logging with a console handler and rotating log files.

    Files written (unless log_to_stdout is set):
        {log_dir}/{name}.log     all records at file_level, rotated daily
        {log_dir}/errors.log     ERROR and above only

    Rotated backups are moved to {log_dir}/archive and the newest
    backup_count of them are kept.

    Args:
        name: Logger name and log file prefix
        log_dir: Directory for log files (default: ./logs)
        json_format: Use JSON format for file logs (default: True)
        console_level: Console handler level (default: INFO)
        file_level: File handler level (default: DEBUG)
        rotation_when: When to rotate logs - 'midnight', 'H' (hourly), 'M' (minutes)
        rotation_interval: Interval for rotation (default: 1)
        backup_count: Number of rotated files to keep (default: 30)
        error_log: Also write an errors-only file (default: True)
        suppress_noisy: Quiet down asyncio and HTTP client loggers
        log_to_stdout: Send all output to stdout only, skipping file handlers.
            Useful for containers where logs are captured from stdout.

    Returns:
        Configured logger instance
    """
    log_dir = Path(log_dir) if log_dir else DEFAULT_LOG_DIR

    console_handler = _console_handler()
    console_handler.setFormatter(ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    log_file = None
    if log_to_stdout:
        console_handler.setLevel(file_level)
        root_logger.addHandler(console_handler)
    else:
        console_handler.setLevel(console_level)

        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"{name}.log"

        if json_format:
            file_formatter = JSONFormatter()
        else:
            file_formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )

        file_handler = ArchivingTimedRotatingFileHandler(
            log_file,
            when=rotation_when,
            interval=rotation_interval,
            backupCount=backup_count,
            encoding="utf-8",
            archive_dir=log_dir / "archive",
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

        if error_log:
            error_handler = ArchivingTimedRotatingFileHandler(
                log_dir / ERROR_LOG_NAME,
                when=rotation_when,
                interval=rotation_interval,
                backupCount=backup_count,
                encoding="utf-8",
                archive_dir=log_dir / "archive",
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(file_formatter)
            root_logger.addHandler(error_handler)

        root_logger.addHandler(console_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    if log_file is None:
        logger.debug("Logging initialized: stdout-only mode")
    else:
        logger.debug(
            "Logging initialized: file=%s, json=%s",
            log_file,
            json_format,
        )

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Use this instead of logging.getLogger() to ensure consistent naming.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)

"""Logging setup and configuration."""

import io
import logging
import shutil
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

# Default settings
DEFAULT_LOG_DIR = Path("logs")
DEFAULT_ROTATION_WHEN = "midnight"
DEFAULT_ROTATION_INTERVAL = 1
DEFAULT_BACKUP_COUNT = 7
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "aiohttp.access",
    "aiohttp.client",
    "aiohttp.server",
    "asyncio",
    "urllib3",
]


class ArchivingTimedRotatingFileHandler(TimedRotatingFileHandler):
    """
    TimedRotatingFileHandler that moves rotated files to an archive folder.

    When a log file is rotated (collector.log -> collector.log.2026-01-22), the
    backup is moved to ``archive_dir`` (default: an ``archive`` subdirectory)
    to keep the main log directory clean.
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

    def doRollover(self):
        super().doRollover()

        log_path = Path(self.baseFilename)
        for rotated_file in log_path.parent.glob(f"{log_path.name}.*"):
            if rotated_file == log_path:
                continue

            try:
                shutil.move(str(rotated_file), str(self.archive_dir / rotated_file.name))
            except OSError as e:
                # Logger not usable here (recursion)
                print(f"Warning: Failed to archive {rotated_file}: {e}", file=sys.stderr)


def get_log_file_path(log_dir: Path, name: str = "collector") -> Path:
    """
    Build log file path with a date subfolder.

    Structure: {log_dir}/{YYYY-MM-DD}/{name}_{MMDD}_{HHMM}.log

    Example:
        logs/2026-01-05/collector_0105_1430.log
    """
    now = datetime.now()
    filename = f"{name}_{now.strftime('%m%d')}_{now.strftime('%H%M')}.log"
    return log_dir / now.strftime("%Y-%m-%d") / filename


def setup_logging(
    name: str = "collector",
    stage: str | None = None,
    log_dir: Path | None = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    rotation_when: str = DEFAULT_ROTATION_WHEN,
    rotation_interval: int = DEFAULT_ROTATION_INTERVAL,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Configure logging with a console handler and an archiving rotating file handler.

    Args:
        name: Logger name and log file prefix
        stage: Stage name injected into every record (e.g. "fleet")
        log_dir: Directory for log files (default: ./logs)
        json_format: Use JSON format for file logs (default: True)
        console_level: Console handler level (default: INFO)
        file_level: File handler level (default: DEBUG)
        rotation_when: When to rotate logs ('midnight', 'H', 'M')
        rotation_interval: Interval for rotation (default: 1)
        backup_count: Number of backup files to keep (default: 7)
        suppress_noisy: Quiet down aiohttp and asyncio loggers
        log_to_stdout: Send all log output to stdout only, skipping the file
            handler. Useful for containers where logs are captured from stdout.

    Returns:
        Configured logger instance
    """
    log_dir = log_dir or DEFAULT_LOG_DIR

    if stage:
        set_log_context(stage=stage)

    console_formatter = ConsoleFormatter()
    if sys.platform == "win32":
        safe_stdout = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace")
        console_handler = logging.StreamHandler(safe_stdout)
    else:
        console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()

    log_file: Path | None = None
    if log_to_stdout:
        console_handler.setLevel(min(console_level, file_level))
        root_logger.addHandler(console_handler)
    else:
        console_handler.setLevel(console_level)

        log_file = get_log_file_path(log_dir, name=name)
        log_file.parent.mkdir(parents=True, exist_ok=True)

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
        root_logger.addHandler(console_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    if log_file is None:
        logger.debug("Logging initialized: stdout-only mode")
    else:
        logger.debug(f"Logging initialized: file={log_file}, json={json_format}")

    return logger

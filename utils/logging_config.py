"""
Logging setup for morg.

A run logs to stdout and, when configured, to a rotating UTF-8 log file.
Modules log through ``logging.getLogger(__name__)``; the application's
own messages go to the ``morg`` logger.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Iterable, List, Optional

APP_LOGGER = 'morg'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Chatty dependencies, capped at WARNING
NOISY_LIBRARIES = ('urllib3', 'requests', 'mutagen')


def _level_number(level: str) -> int:
    number = logging.getLevelName(level.upper())
    if not isinstance(number, int):
        raise ValueError(f"Invalid log level: {level}")
    return number


def _build_handlers(log_file: Optional[Path], max_bytes: int, backups: int,
                    console: bool) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            str(log_file), maxBytes=max_bytes, backupCount=backups, encoding='utf-8'
        ))
    return handlers


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console_output: bool = True,
) -> logging.Logger:
    """
    Replace the root handlers and return the application logger.

    Args:
        level: Level name such as 'INFO' or 'DEBUG'
        log_file: Rotating log file, or None for console only
        max_file_size: Bytes per log file before it is rotated
        backup_count: Rotated files to keep
        console_output: Also log to stdout

    Raises:
        ValueError: If the level name is unknown
    """
    numeric_level = _level_number(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(numeric_level)
    for handler in _build_handlers(log_file, max_file_size, backup_count, console_output):
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    app_logger = logging.getLogger(APP_LOGGER)
    app_logger.setLevel(numeric_level)
    app_logger.info(f"Logging at {level.upper()}" + (f" to {log_file}" if log_file else ""))
    return app_logger


def _progress_step(total: int) -> int:
    # Roughly every 10% for small batches, every 5% and then 1% for larger ones
    if total <= 100:
        return max(1, total // 10)
    if total <= 1000:
        return max(1, total // 20)
    return max(1, total // 100)


def log_processing_progress(
    current: int,
    total: int,
    logger: logging.Logger,
    message_template: str = "Processed {current}/{total} items ({percentage:.1f}%)",
) -> None:
    """Log ``current`` of ``total`` when it falls on a progress step or completes the batch."""
    if total <= 0:
        return
    if current % _progress_step(total) and current != total:
        return
    logger.info(message_template.format(
        current=current, total=total, percentage=100.0 * current / total
    ))


def configure_library_logging(libraries: Iterable[str] = NOISY_LIBRARIES) -> None:
    """Keep dependency loggers at WARNING so sync logs stay readable."""
    for name in libraries:
        logging.getLogger(name).setLevel(logging.WARNING)

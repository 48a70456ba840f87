"""Logging configuration for treehash.

All log output goes to ``treehash.log`` in the configured log directory so
it never interleaves with the progress display or the summary printed on
the terminal. Stage modules log through ``logging.getLogger(__name__)``
and inherit the handler installed here on the ``treehash`` logger.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILE_NAME = "treehash.log"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

# Worker and walker threads are named, so the thread column tells stages apart
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(threadName)s | %(message)s"


def setup_logging(
    log_dir: Path,
    level: str = "INFO",
    max_bytes: int = LOG_MAX_BYTES,
    backup_count: int = LOG_BACKUP_COUNT,
) -> logging.Logger:
    """Send treehash logging to a size-rotated file.

    A log already over ``max_bytes`` is rolled to ``treehash.log.1`` by the
    first record of the session; a long run that crosses the limit rolls
    over mid-run the same way.

    Args:
        log_dir: Directory to store log files (created if missing)
        level: Log level name for the treehash logger
        max_bytes: Size at which the log rolls over
        backup_count: Number of rolled-over files kept

    Returns:
        The configured ``treehash`` logger
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    logger = logging.getLogger("treehash")
    logger.setLevel(level.upper())

    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level.upper())
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(file_handler)

    logger.info("=" * 80)
    logger.info("TREEHASH SESSION STARTED")
    logger.info(f"Log file: {log_file} (level {level.upper()})")
    logger.info("=" * 80)

    return logger

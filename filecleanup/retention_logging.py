"""
Logging setup for the file cleanup system.

Engine modules log through structlog with key/value context; structlog is
routed into the standard logging module so a single set of handlers (console
plus a rotating log file) receives everything.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import structlog

from .retention_models import MB

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LOG_MAX_BYTES = 1 * MB
LOG_BACKUP_COUNT = 3


def log_file_for(log_file_path: str) -> Path:
    """Location of the rotating log file below the configured log directory."""
    return Path(log_file_path).expanduser() / 'FileCleanup' / 'log' / 'FileCleanup.log'


def setup_logging(log_level: str = 'INFO', log_file_path: Optional[str] = None,
                  detailed_log: bool = False, verbose: bool = False) -> Optional[Path]:
    """
    Configure stdlib logging and structlog.

    Args:
        log_level: Base level name.
        log_file_path: Directory holding the rotating log file. Console only if None.
        detailed_log: Log every indexed and deleted file (forces DEBUG).
        verbose: Force DEBUG without per-file events.

    Returns:
        Path of the log file, if one was configured.
    """
    level = logging.DEBUG if (detailed_log or verbose) else getattr(logging, log_level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stderr)]
    log_file = None
    if log_file_path:
        log_file = log_file_for(log_file_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT))

    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT,
                        handlers=handlers, force=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=['event'], drop_missing=True),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    return log_file

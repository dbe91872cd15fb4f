"""
Logging configuration for solpnl.
Supports normal mode (concise) and debug mode (verbose with file output).
"""
import logging
import sys
from pathlib import Path
from typing import Optional, Union


class ConciseFormatter(logging.Formatter):
    """Single-line, concise log format."""

    FORMATS = {
        logging.DEBUG: "\033[90m[D]\033[0m %(name)s: %(message)s",
        logging.INFO: "\033[32m[I]\033[0m %(message)s",
        logging.WARNING: "\033[33m[W]\033[0m %(message)s",
        logging.ERROR: "\033[31m[E]\033[0m %(name)s: %(message)s",
        logging.CRITICAL: "\033[31;1m[!]\033[0m %(name)s: %(message)s",
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno, self.FORMATS[logging.INFO])
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


class VerboseFormatter(logging.Formatter):
    """Detailed format for debug file logging."""
    def __init__(self):
        super().__init__(
            fmt='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


NOISY_LOGGERS = [
    'botocore', 'boto3', 'urllib3', 's3transfer', 'requests',
]


def setup_logging(level=logging.INFO, debug_log_path: Optional[Union[str, Path]] = None) -> logging.Logger:
    """
    Configure logging for the command-line process.
    Call this once at startup; library code never calls it.

    When ``debug_log_path`` is given, everything under the ``solpnl``
    logger is also written there at DEBUG level.
    """
    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ConciseFormatter())
    handler.name = 'console'
    root.addHandler(handler)

    app_logger = logging.getLogger('solpnl')
    app_logger.setLevel(level)

    if debug_log_path:
        add_debug_file_handler(app_logger, debug_log_path)
        app_logger.info(f"Debug logging enabled - verbose logs written to {debug_log_path}")

    return app_logger


def add_debug_file_handler(logger: logging.Logger, path: Union[str, Path]) -> logging.Handler:
    """Attach a verbose file handler to ``logger`` unless one is already there."""
    for existing in logger.handlers:
        if getattr(existing, 'name', None) == 'debug_file':
            return existing

    file_handler = logging.FileHandler(path, mode='a', encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(VerboseFormatter())
    file_handler.name = 'debug_file'
    logger.addHandler(file_handler)
    logger.setLevel(logging.DEBUG)
    return file_handler

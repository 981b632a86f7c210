"""
Logging configuration for sheetloader

All modules log under the ``sheetloader`` root logger so a single call to
``setup_logging`` controls the whole run, including the bulk API client.
"""
import logging
import sys
from typing import Optional

ROOT_LOGGER = "sheetloader"

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
JSON_FORMAT = (
    '{"time": "%(asctime)s", "level": "%(levelname)s", '
    '"module": "%(name)s", "message": "%(message)s"}'
)

# Third-party loggers that log every HTTP request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_type: str = "text",
    quiet_http: bool = True
) -> logging.Logger:
    """
    Setup logging configuration

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for logging
        format_type: 'text' or 'json'
        quiet_http: Raise httpx/httpcore loggers to WARNING so polling
            does not flood the output

    Returns:
        Configured root logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers so repeated CLI runs don't double-log
    logger.handlers = []

    formatter = logging.Formatter(JSON_FORMAT if format_type == "json" else TEXT_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if quiet_http:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger of the sheetloader root logger

    Args:
        name: Component name (e.g. 'BulkJobClient')

    Returns:
        Logger instance
    """
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")

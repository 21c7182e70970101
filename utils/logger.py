"""
Logging configuration utility.
"""

import logging
import sys
from typing import Iterable

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Third-party loggers that chatter at INFO on every request
NOISY_LOGGERS = ('urllib3', 'keyring')


def setup_logging(
    level: str = 'INFO',
    format_str: str = None,
    log_file: str = None,
    quiet: Iterable[str] = NOISY_LOGGERS
) -> logging.Logger:
    """
    Configure logging for the agent.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_str: Log message format
        log_file: Optional file to write logs to
        quiet: Logger names clamped to WARNING regardless of level

    Returns:
        Configured root logger
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    formatter = logging.Formatter(format_str or DEFAULT_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in quiet:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    return root_logger


def setup_logging_from_settings(settings: dict, verbose: bool = False) -> logging.Logger:
    """Configure logging from the `logging` section of settings.yaml."""
    log_settings = settings.get('logging', {}) or {}
    level = 'DEBUG' if verbose else log_settings.get('level', 'INFO')
    return setup_logging(
        level=level,
        format_str=log_settings.get('format'),
        log_file=log_settings.get('file'),
    )

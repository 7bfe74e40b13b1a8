"""
Centralized logging configuration.

Configures the root logger once at application start so that the engine
loggers and the request middleware share one format.
"""

import logging
import sys

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO", format_string: str = DEFAULT_FORMAT) -> logging.Logger:
    """
    Set up the root logger with a single stdout handler.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ...). Unknown names fall back to INFO.
        format_string: Log record format

    Returns:
        Configured root logger
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates on reload
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S"))
    root_logger.addHandler(console_handler)

    # SQLAlchemy echo is controlled by settings.db_echo, keep its logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return root_logger

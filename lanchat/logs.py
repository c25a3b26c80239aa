"""Logging setup, including the debug.log file toggle."""

import logging

from lanchat.config import DEBUG_LOG_FILE

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_package_logger = logging.getLogger("lanchat")
_file_handler: logging.FileHandler | None = None


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    # Debug records go to the file only
    for handler in logging.getLogger().handlers:
        handler.setLevel(logging.INFO)
    set_debug(debug, truncate=True)


def debug_enabled() -> bool:
    return _file_handler is not None


def set_debug(enabled: bool, truncate: bool = False) -> None:
    """Turn DEBUG logging to debug.log on or off at runtime."""
    global _file_handler
    if enabled and _file_handler is None:
        _file_handler = logging.FileHandler(DEBUG_LOG_FILE, mode="w" if truncate else "a")
        _file_handler.setLevel(logging.DEBUG)
        _file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        _package_logger.addHandler(_file_handler)
        _package_logger.setLevel(logging.DEBUG)
        _package_logger.debug("Debug logging enabled")
    elif not enabled and _file_handler is not None:
        _package_logger.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None
        _package_logger.setLevel(logging.NOTSET)

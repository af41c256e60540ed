"""Centralized logging configuration for the tracker service."""
import logging
from typing import Optional

from app import config

_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_configured = False


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Configure the ``app`` logger once.

    Args:
        level: Log level name. Defaults to the LOG_LEVEL setting.
        log_file: Optional path to a log file. Defaults to the LOG_FILE setting.
    """
    global _configured
    if _configured:
        return

    log_level = getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO)
    log_file = log_file or config.LOG_FILE

    root = logging.getLogger("app")
    root.setLevel(log_level)
    root.handlers.clear()

    formatter = logging.Formatter(_LOG_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
        except OSError:
            root.warning("Could not open log file %s, logging to stdout only", log_file)

    _configured = True

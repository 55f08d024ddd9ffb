# focusrank/utils/logging_utils.py
import logging
import sys
from typing import Optional

from focusrank.config.settings import settings

# Libraries whose INFO output drowns out the engine's own [Component] lines
QUIET_LOGGERS = ("httpx", "chromadb")


def _resolve_level(log_level: str) -> int:
    numeric_level = getattr(logging, log_level.upper(), None)
    if isinstance(numeric_level, int):
        return numeric_level
    print(f"Warning: Invalid log level '{log_level}' in settings. Defaulting to INFO.", file=sys.stderr)
    return logging.INFO


def setup_logging(log_level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """
    Route every focusrank logger through one stdout handler on the root logger.

    The engine is a library and never calls this itself; host applications
    opt in. Calling it again replaces the handler instead of stacking another.
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        fmt=fmt or settings.logging.format,
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    root_logger.setLevel(_resolve_level(log_level or settings.app.log_level))
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

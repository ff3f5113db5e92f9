"""Logging setup shared by every module."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Any

from aatm.config import env

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class CustomLogger(logging.Logger):
    """Logger with a helper that always attaches the active traceback."""

    def error_trace(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        """Log an error message together with the current exception traceback."""
        kwargs.setdefault("exc_info", True)
        self.error(msg, *args, **kwargs)


logging.setLoggerClass(CustomLogger)


def _build_handlers() -> list:
    formatter = logging.Formatter(_FORMAT)
    handlers: list = []

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    handlers.append(console)

    if env.ENABLE_LOGGING:
        try:
            env.LOG_DIR.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                env.LOG_DIR / "aatm.log",
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
            )
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as e:
            print(f"Could not set up file logging in {env.LOG_DIR}: {e}", file=sys.stderr)

    return handlers


_HANDLERS = _build_handlers()


def setup_logger(name: str) -> CustomLogger:
    """Return the named logger with the shared handlers attached once."""
    logger = logging.getLogger(name)
    if not isinstance(logger, CustomLogger):
        # Logger was created before our class was registered
        logger.__class__ = CustomLogger

    logger.setLevel(getattr(logging, env.LOG_LEVEL, logging.INFO))
    if not logger.handlers:
        for handler in _HANDLERS:
            logger.addHandler(handler)
    logger.propagate = False
    return logger  # type: ignore[return-value]

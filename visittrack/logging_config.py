"""
Logging configuration for the visit tracker.

Everything logs under the 'visittrack' logger tree (modules use
logging.getLogger(__name__), which nests below it).

  Log file : $LOG_DIR/visittrack.log  (LOG_DIR defaults to ./logs)
  Rotation : 5 MB × 3 backups
  Level    : LOG_LEVEL env var, INFO when unset
  Console  : optional stderr handler (CLI --verbose)

Usage
-----
    from visittrack.logging_config import configure_logging, log_call

    configure_logging()                 # idempotent
    configure_logging(console=True)     # also mirror WARNING+ to stderr

    @log_call
    def save(record): ...

    @log_call(redact=("to",))
    def send(template, to): ...

Log lines
---------
    2026-02-16 14:32:01 | INFO     | visittrack.engine.tiered_store | Archived 3 stale visits
    2026-02-16 14:32:01 | DEBUG    | visittrack | CALL save | args=(VisitRecord(...))
    2026-02-16 14:32:01 | INFO     | visittrack | OK   save | 4ms
    2026-02-16 14:32:01 | ERROR    | visittrack | FAIL send | RelayError: 503 | 812ms
"""

import functools
import logging
import logging.handlers
import os
import sys
import time
from pathlib import Path

LOGGER_NAME = "visittrack"

_LOG_DIR = Path(os.environ.get("LOG_DIR", Path(__file__).parent.parent / "logs"))
_LOG_FILE = _LOG_DIR / "visittrack.log"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_MAX_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 3


def _level_from_env() -> int:
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def configure_logging(console: bool = False) -> logging.Logger:
    """
    Attach the rotating file handler to the 'visittrack' logger.

    Calling it again never duplicates the file handler. Passing console=True
    adds a stderr handler (WARNING and above) if one is not attached yet.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_level_from_env())

    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)

    if not any(isinstance(h, logging.handlers.RotatingFileHandler) for h in logger.handlers):
        _LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            _LOG_FILE,
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console and not any(getattr(h, "_visittrack_console", False) for h in logger.handlers):
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(logging.WARNING)
        stream_handler.setFormatter(formatter)
        stream_handler._visittrack_console = True
        logger.addHandler(stream_handler)

    return logger


def _format_args(args, kwargs, redact) -> str:
    parts = [repr(a) for a in args]
    for key, value in kwargs.items():
        parts.append(f"{key}=***" if key in redact else f"{key}={value!r}")
    return ", ".join(parts) if parts else "-"


def log_call(func=None, *, redact=()):
    """
    Decorator: trace entry, exit and failure of a function.

    DEBUG on entry, INFO with elapsed milliseconds on success, ERROR on
    failure (the exception is re-raised). Keyword arguments named in
    `redact` are logged as *** instead of their value.

    Usable bare (@log_call) or with options (@log_call(redact=("to",))).
    """
    def decorate(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            logger = logging.getLogger(LOGGER_NAME)
            name = fn.__name__
            start = time.perf_counter()
            logger.debug(f"CALL {name} | args=({_format_args(args, kwargs, redact)})")
            try:
                result = fn(*args, **kwargs)
            except Exception as exc:
                ms = int((time.perf_counter() - start) * 1000)
                logger.error(f"FAIL {name} | {type(exc).__name__}: {exc} | {ms}ms")
                raise
            ms = int((time.perf_counter() - start) * 1000)
            logger.info(f"OK   {name} | {ms}ms")
            return result
        return wrapper

    if func is not None:
        return decorate(func)
    return decorate

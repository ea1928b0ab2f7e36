"""
Logging setup built on loguru.

Every module gets its logger through ``get_logger(__name__)``; the process
entry point calls ``configure_logging`` once. Records emitted through the
standard library ``logging`` module (kubernetes client, httpx, pyroute2) are
forwarded into loguru so everything ends up in one stream.
"""

import logging
import sys
import traceback

from loguru import logger as _logger

from overlayip.models.enums import LogLevel

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

_LEVEL_MAP = {
    LogLevel.FULL: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
}

# Third-party loggers that are too chatty below WARNING
_NOISY_LOGGERS = ("kubernetes", "urllib3", "httpx", "httpcore", "pyroute2")

_logger.configure(extra={"name": "overlayip"})


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = _logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that issued the logging call
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        _logger.bind(name=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def configure_logging(level: LogLevel = LogLevel.INFO) -> None:
    """
    Configure the process-wide log sink.

    Args:
        level: Verbosity. FULL also turns on backtraces and variable dumps
            for exceptions and lets third-party debug output through.
    """
    loguru_level = _LEVEL_MAP.get(level, "INFO")
    full = level == LogLevel.FULL

    _logger.remove()
    _logger.add(
        sys.stderr,
        level=loguru_level,
        format=LOG_FORMAT,
        backtrace=full,
        diagnose=full,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if full else logging.WARNING)


def get_logger(name: str):
    """Get a logger bound to a module name."""
    return _logger.bind(name=name)


def format_traceback(exc: BaseException) -> str:
    """Render an exception with its traceback as a single string."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

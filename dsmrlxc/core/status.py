"""Status reporting shared by the provisioning components.

Components never format output themselves. They receive a reporter, a plain
callable taking a :class:`Status` and a message, and call it for every
user-visible line. The default reporter forwards to a module logger so the
console shows colored INFO/WARNING/ERROR lines and the log file keeps a copy.
"""
import logging
from enum import Enum
from typing import Callable


class Status(str, Enum):
    """Kind of a user-visible status line."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    OK = "ok"


Reporter = Callable[[Status, str], None]


def log_reporter(logger: logging.Logger) -> Reporter:
    """Build a reporter that writes status lines to ``logger``."""

    def report(status: Status, message: str) -> None:
        if status is Status.OK:
            logger.info(f"✓ {message}")
        elif status is Status.WARN:
            logger.warning(message)
        elif status is Status.ERROR:
            logger.error(message)
        else:
            logger.info(message)

    return report

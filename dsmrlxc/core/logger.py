"""Unified logging for dsmr-lxc with console and file output."""
import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

console = Console()
err_console = Console(stderr=True)

# Log file configuration
LOG_DIR = Path("/var/log/dsmr-lxc")
LOG_FILE = LOG_DIR / "dsmr-lxc.log"
FALLBACK_LOG_FILE = Path("/tmp/dsmr-lxc.log")

# Track if file logging has been set up
_file_logging_configured = False


def _open_log_handler(path: Path) -> logging.FileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path)


def setup_file_logging(log_file: str = None, verbose: bool = False):
    """Set up file logging for provisioning runs.

    Args:
        log_file: Path to log file (defaults to /var/log/dsmr-lxc/dsmr-lxc.log)
        verbose: Enable debug-level logging

    Note:
        Creates log directory if it doesn't exist.
        Falls back to /tmp/dsmr-lxc.log if the target cannot be opened.
    """
    global _file_logging_configured

    if _file_logging_configured:
        return

    target_log_file = Path(log_file) if log_file else LOG_FILE

    try:
        file_handler = _open_log_handler(target_log_file)
    except OSError:
        target_log_file = FALLBACK_LOG_FILE
        file_handler = _open_log_handler(target_log_file)

    level = logging.DEBUG if verbose else logging.INFO
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    root_logger = logging.getLogger("dsmrlxc")
    root_logger.addHandler(file_handler)
    root_logger.setLevel(level)

    _file_logging_configured = True

    root_logger.info(f"dsmr-lxc logging initialized: {target_log_file}")


def set_verbose(verbose: bool = True) -> None:
    """Switch every dsmrlxc console logger to DEBUG (or back to INFO)."""
    level = logging.DEBUG if verbose else logging.INFO
    for name, logger in logging.root.manager.loggerDict.items():
        if name.startswith("dsmrlxc") and isinstance(logger, logging.Logger):
            if any(isinstance(h, RichHandler) for h in logger.handlers):
                logger.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance with console output.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger with Rich console handler

    Note:
        File logging must be enabled separately via setup_file_logging()
    """
    logger = logging.getLogger(name)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(console=console, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

    return logger

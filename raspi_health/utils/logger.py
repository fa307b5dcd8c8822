"""
Logging configuration for raspi-health.
Rich console output for the operator plus an append-only health log on disk.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from .errors import ConfigurationError

LOG_LINE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logger(
    name: str = "raspi_health",
    verbose: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Set up logging for raspi-health.

    Args:
        name: Logger name
        verbose: Enable debug logging on the console
        quiet: Only log warnings and errors on the console
        log_file: Durable log file; lines are appended with a severity tag

    Returns:
        Configured logger instance
    """
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    # Console handler with Rich formatting
    console = Console(stderr=True)
    rich_handler = RichHandler(
        console=console,
        show_time=verbose,
        show_path=verbose,
        rich_tracebacks=True,
        tracebacks_show_locals=verbose,
    )
    rich_handler.setLevel(level)

    if verbose:
        format_string = "%(name)s: %(message)s"
    else:
        format_string = "%(message)s"

    rich_handler.setFormatter(logging.Formatter(format_string))
    logger.addHandler(rich_handler)

    if log_file:
        log_file = Path(log_file)
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot open log file {log_file}: {e}")

        # The health log keeps everything from INFO up regardless of console level
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter(LOG_LINE_FORMAT))
        logger.addHandler(file_handler)

    # Prevent propagation to root logger
    logger.propagate = False

    return logger


def tail_log(log_file: Path, lines: int = 50) -> list:
    """Last ``lines`` lines of a log file, oldest first."""
    log_file = Path(log_file)
    if not log_file.exists():
        return []
    with open(log_file, "r", encoding="utf-8", errors="replace") as f:
        content = f.read().splitlines()
    return content[-lines:]


class OperationLogger:
    """Context manager for logging operations with structured output."""

    def __init__(
        self, logger: logging.Logger, operation: str, details: Optional[str] = None
    ):
        self.logger = logger
        self.operation = operation
        self.details = details
        self.start_time = None

    def __enter__(self):
        self.start_time = datetime.now()
        msg = f"Starting {self.operation}"
        if self.details:
            msg += f": {self.details}"
        self.logger.info(msg)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = datetime.now() - self.start_time

        if exc_type is None:
            self.logger.info(
                f"Completed {self.operation} in {duration.total_seconds():.2f}s"
            )
        elif issubclass(exc_type, KeyboardInterrupt):
            self.logger.warning(
                f"Interrupted {self.operation} after {duration.total_seconds():.2f}s"
            )
        else:
            self.logger.error(
                f"Failed {self.operation} after {duration.total_seconds():.2f}s: {exc_val}"
            )

        return False  # Don't suppress exceptions

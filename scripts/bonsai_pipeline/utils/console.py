"""
Shared rich console and logging setup.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

LOGGER_NAME = "bonsai_pipeline"

console = Console()


def configure_logging(verbose: bool = False) -> logging.Logger:
    """
    Route the package loggers through a rich handler.

    Args:
        verbose: Log at DEBUG instead of INFO

    Returns:
        The package root logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=console,
            markup=True,
            show_path=False,
            rich_tracebacks=False,
            log_time_format="[%H:%M:%S]",
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False

    return logger


def tagged(tag: str, line: str, color: str = "white") -> str:
    """Format one tool output line as rich markup, e.g. `[cyan][CORE SHDC][/cyan] ...`."""
    return f"[{color}]{escape(tag)}[/{color}] {escape(line)}"

"""Logging setup."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(level: str = "INFO", console: Console = None) -> logging.Logger:
    """Configure the root logger with a rich handler.

    Args:
        level: Log level name.
        console: Console to log to (stderr by default).

    Returns:
        The root logger.
    """
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="[%X]"))

    root_logger = logging.getLogger()
    # Avoid duplicate output when called more than once
    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Chatty libraries
    for name in ("httpx", "httpcore", "websockets"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger

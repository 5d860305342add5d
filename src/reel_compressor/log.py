"""Logging setup: rich console handler plus an optional log file."""

import logging

from rich.console import Console
from rich.logging import RichHandler

from .config import AppConfig

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def setup_logging(config: AppConfig, verbose: bool = False, console: Console | None = None) -> logging.Logger:
    """
    Configure the `reel_compressor` logger tree.

    Safe to call repeatedly; handlers installed by a previous call are replaced.
    """
    logger = logging.getLogger("reel_compressor")
    level = logging.DEBUG if verbose else getattr(logging, config.logging.level.upper(), logging.INFO)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if config.logging.console_logging:
        console_handler = RichHandler(console=console, show_path=False, rich_tracebacks=True, markup=False)
        console_handler.setLevel(level)
        logger.addHandler(console_handler)

    if config.logging.file_logging:
        log_file = config.default_log_file()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger

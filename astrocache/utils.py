"""Small validation, formatting and logging helpers."""

from __future__ import annotations

import logging
from datetime import datetime

LOGGER_NAME = "astrocache"


def normalize_term(value: str | None) -> str:
    """Return *value* with surrounding whitespace removed ('' for None)."""
    return (value or "").strip()


def ensure_positive(value: int, name: str) -> int:
    """Validate that *value* is positive."""
    if value <= 0:
        raise ValueError(f"{name} must be greater than 0")
    return value


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def format_file_size(num_bytes: int) -> str:
    """Render a byte count in decimal KB or MB ('-' when unknown)."""
    if num_bytes <= 0:
        return "-"
    if num_bytes < 1_000_000:
        return f"{num_bytes / 1000:.1f} KB"
    return f"{num_bytes / 1_000_000:.1f} MB"


def configure_logging(verbose: bool = False) -> logging.Logger:
    """Attach a Rich handler to the package logger (idempotent)."""

    from rich.console import Console
    from rich.logging import RichHandler

    logger = logging.getLogger(LOGGER_NAME)
    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=False,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    return logger

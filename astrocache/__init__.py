"""Astrocache package initialization."""

from __future__ import annotations

from .api import AstrocacheClient, search, set_data_dir
from .errors import AstrocacheError, InvalidInputError, StorageError, TransportError

__all__ = [
    "__version__",
    "AstrocacheClient",
    "AstrocacheError",
    "InvalidInputError",
    "StorageError",
    "TransportError",
    "get_version",
    "search",
    "set_data_dir",
]

__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__

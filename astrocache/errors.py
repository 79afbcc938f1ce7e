"""Exception types shared across astrocache."""

from __future__ import annotations


class AstrocacheError(Exception):
    """Base class for every error raised by astrocache."""


class InvalidInputError(AstrocacheError, ValueError):
    """Raised when a search term is empty or whitespace-only."""


class TransportError(AstrocacheError):
    """Raised when the remote catalog cannot be reached or decoded."""


class StorageError(AstrocacheError):
    """Raised when the local cache database fails."""

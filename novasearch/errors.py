from __future__ import annotations

from typing import Optional


class NovaSearchError(Exception):
    """Base class for errors raised by the index access layer."""


class InvalidArgument(NovaSearchError, ValueError):
    """Raised when a required path or connection is missing at the API boundary."""


class TransientUnavailable(NovaSearchError):
    """Raised when the index stayed busy/locked for every open attempt."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class FatalOpenError(NovaSearchError):
    """Raised when the index cannot be opened and retrying would not help."""

    def __init__(self, message: str, *, db_path: Optional[str] = None) -> None:
        super().__init__(message)
        self.db_path = db_path


class NotConnected(NovaSearchError):
    """Raised when a query is issued on a connection that is not open."""

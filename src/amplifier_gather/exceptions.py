"""Gather-specific exceptions.

Per IMPLEMENTATION_PHILOSOPHY: Clear, actionable error messages.
Every stage wraps the error below it, so the message names the failing phase.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .classifier import URIKind


class GatherError(Exception):
    """Base exception for gather operations."""

    def __init__(self, message: str, context: dict | None = None):
        """Initialize with message and optional context.

        Args:
            message: Human-readable error message
            context: Optional dict with additional context (source, destination, etc.)
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ClassificationError(GatherError):
    """Locator could not be classified (unsupported scheme or missing scheme)."""

    def __init__(self, message: str, context: dict | None = None, kind: "URIKind | None" = None):
        super().__init__(message, context)
        self.kind = kind


class LocatorParseError(GatherError):
    """Locator string is malformed at some parsing stage."""


class UnsupportedProtocolError(GatherError):
    """No gatherer or saver is registered for the protocol."""


class CopyError(GatherError):
    """Directory copy failed (partial destination trees are left behind)."""


class PinningError(GatherError):
    """Pinned locator could not be rendered from captured metadata."""


class FetchError(GatherError):
    """Transport-level failure while gathering a source."""


class AuthenticationError(GatherError):
    """Credentials could not be obtained for a source."""

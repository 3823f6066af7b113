"""
Exception hierarchy for the QnA bot engine

Every failure raised by the engine derives from QnABotError so hosts can
catch engine failures in one place. "No match" is not an error; it is an
empty result from the match engine.
"""

from typing import Iterable, List, Optional


class QnABotError(Exception):
    """Base class for all engine errors."""


class ValidationError(QnABotError):
    """Raised when knowledge base content is malformed."""

    def __init__(self, message: str, errors: Optional[Iterable[str]] = None):
        self.errors: List[str] = list(errors or [])
        if self.errors:
            message = f"{message}: " + "; ".join(self.errors)
        super().__init__(message)


class ConfigError(QnABotError):
    """Raised when a configuration source cannot be read."""


class StorageError(QnABotError):
    """Raised when conversation state cannot be read or written."""


class ConcurrencyError(StorageError):
    """Raised when a write loses an optimistic concurrency check."""

    def __init__(self, conversation_id: str, expected: Optional[str], actual: Optional[str]):
        self.conversation_id = conversation_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"State for conversation {conversation_id} was modified concurrently "
            f"(expected etag {expected!r}, found {actual!r})"
        )


class ScoringError(QnABotError):
    """Raised when a scorer fails or returns an out-of-range score."""

"""Exception hierarchy for the cleanup engine.

Callers that only care about "something in cleanup failed" catch
``CleanupError``; the persistence layer's failures share ``PersistenceError``
so the resolver can degrade gracefully when configured to.
"""

from __future__ import annotations


class CleanupError(Exception):
    """Base exception for all cleanup engine errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class ConfigurationError(CleanupError):
    """Invalid or inconsistent settings."""


class InvalidShieldError(CleanupError):
    """A user-supplied shield failed validation."""


class TerminologyError(CleanupError):
    """A DTO carried an enum value with no counterpart in the data model."""


class OutcomeTrackingError(CleanupError):
    """A review outcome could not be built."""


class PersistenceError(CleanupError):
    """Base class for rule store failures."""

    retryable: bool = False


class RuleDecodeError(PersistenceError):
    """A stored rule payload could not be deserialized."""


class RuleStorageError(PersistenceError):
    """The backing store could not be read or written."""

    retryable = True


class InvalidRuleScopeError(CleanupError):
    """A rule store call was made with an empty tenant, store or entity id."""

"""
Exception hierarchy shared by the engine, the store and the adapters.
"""

from __future__ import annotations


class AIBooksError(Exception):
    """Base class for every error raised by ai-books."""


class ValidationError(AIBooksError, ValueError):
    """A name, size or count parameter was rejected before any mutation."""


class NotFoundError(AIBooksError, KeyError):
    """The requested library does not exist in the store."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Library '{self.name}' not found."


class PreconditionViolation(AIBooksError, AssertionError):
    """The encoder was called in a way its contract forbids."""


class StorageError(AIBooksError):
    """The persistent backend rejected a write; the previous state is kept."""

"""
Shared pytest fixtures for ai-books tests.

ChromaDB runs in ephemeral (in-memory) mode; every fixture call gets its
own namespace so tests sharing the client cannot see each other's
libraries.
"""

from __future__ import annotations

import uuid

import chromadb
import pytest

from ai_books.library import LibraryService
from ai_books.store import ChromaLibraryStore, LibraryStore

# A single shared EphemeralClient instance for the test session.
_EPHEMERAL_CLIENT = chromadb.EphemeralClient()


def make_text(n_words: int, word: str = "lorem", **overrides: str) -> str:
    """
    Build a text of *n_words* copies of *word*.

    Keyword arguments of the form ``w<index>="term"`` replace single words,
    e.g. ``make_text(1000, w600="quizzical")``.
    """
    words = [word] * n_words
    for key, term in overrides.items():
        words[int(key[1:])] = term
    return " ".join(words)


#: Comfortably above the 100 character minimum.
VALID_TEXT = make_text(60, word="sample")


def new_chroma_store(namespace: str | None = None, **kwargs) -> ChromaLibraryStore:
    return ChromaLibraryStore(
        namespace=namespace or f"t{uuid.uuid4().hex[:12]}",
        _client=_EPHEMERAL_CLIENT,
        **kwargs,
    )


@pytest.fixture()
def library_store() -> LibraryStore:
    return LibraryStore()


@pytest.fixture()
def chroma_store() -> ChromaLibraryStore:
    """ChromaDB backed store in a namespace unique to this test."""
    return new_chroma_store()


@pytest.fixture()
def service(library_store: LibraryStore) -> LibraryService:
    """LibraryService wired to a fresh in-memory store."""
    return LibraryService(store=library_store)

"""
LibraryService: high-level API for building and querying knowledge libraries.

This is the main entry-point for applications that want to turn long texts
into retrievable chunks.

Usage example::

    from ai_books import LibraryService

    service = LibraryService()

    # Chunk and encode a document under a name
    stats = service.create_library("react-docs", open("react.md").read())

    # Later, pull out the chunks most relevant to a question
    for chunk in service.query_library("react-docs", "How do hooks work?"):
        print(chunk.content[:80])
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from .encoding import (
    DEFAULT_CHUNK_WORDS,
    DEFAULT_N_MAX,
    build_chunk,
    chunk_text,
    total_states,
    utc_timestamp,
    verify_chunk,
)
from .errors import NotFoundError, ValidationError
from .models import Chunk, Library, utf8_bytes
from .similarity import rank_chunks
from .store import LibraryStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Parameter bounds
# ---------------------------------------------------------------------------

NAME_PATTERN = re.compile(r"[a-z0-9_-]+")
MAX_NAME_LENGTH = 100
MIN_TEXT_LENGTH = 100
N_MAX_RANGE = (5, 20)
TOP_K_RANGE = (1, 20)
MAX_RESULTS_RANGE = (1, 50)

DEFAULT_TOP_K = 8
DEFAULT_MAX_RESULTS = 10

#: Characters of chunk content shown in search results.
PREVIEW_LENGTH = 200


def validate_name(name: str) -> None:
    if not name:
        raise ValidationError("Library name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Library name must be at most {MAX_NAME_LENGTH} characters"
        )
    if not NAME_PATTERN.fullmatch(name):
        raise ValidationError(
            "Library name must be lowercase alphanumeric with hyphens/underscores"
        )


def _validate_range(label: str, value: int, bounds: tuple[int, int]) -> None:
    low, high = bounds
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be an integer")
    if not low <= value <= high:
        raise ValidationError(f"{label} must be between {low} and {high}, got {value}")


def _validate_query(query: str) -> None:
    if not query:
        raise ValidationError("Query cannot be empty")


def build_library(
    name: str,
    text: str,
    n_max: int = DEFAULT_N_MAX,
    target_words: int = DEFAULT_CHUNK_WORDS,
) -> Library:
    """
    Chunk and encode *text* into a new, unsaved :class:`Library`.

    The ratio divides the UTF-8 size of the original *text* by the
    modelled size of all descriptors.
    """
    chunks = tuple(build_chunk(piece, n_max) for piece in chunk_text(text, target_words))
    descriptor_bytes = sum(c.descriptor.serialized_size for c in chunks)
    content_bytes = len(utf8_bytes(text))
    now = utc_timestamp()
    return Library(
        name=name,
        chunks=chunks,
        compression_ratio=content_bytes / descriptor_bytes,
        created_at=now,
        updated_at=now,
    )


def format_context(chunks: Iterable[Chunk]) -> str:
    """Join chunks into a numbered context block for an LLM prompt."""
    return "\n\n".join(
        f"[Chunk {i}]\n{chunk.content}" for i, chunk in enumerate(chunks, 1)
    )


def preview(content: str, length: int = PREVIEW_LENGTH) -> str:
    if len(content) <= length:
        return content
    return content[:length] + "..."


class LibraryService:
    """
    Orchestrates chunking, encoding, storage and retrieval of libraries.

    Responsibilities
    ----------------
    * **Create** – Validates the name and parameters, chunks the text,
      encodes every chunk and swaps the finished library into the store.
      Validation always runs first, so a rejected call leaves the store
      untouched.
    * **Retrieve** – Ranks every chunk of a library against a query and
      returns the best ones, either as chunk records or as scored previews.
    * **Manage** – Lists, describes, verifies and deletes libraries.

    Parameters
    ----------
    store:
        The :class:`LibraryStore` holding the libraries.  A fresh in-memory
        store is created when omitted, so independent services never share
        state unless they are handed the same store.
    """

    def __init__(self, store: LibraryStore | None = None) -> None:
        self.store = store if store is not None else LibraryStore()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_library(
        self, name: str, text: str, n_max: int = DEFAULT_N_MAX
    ) -> dict[str, Any]:
        """
        Build a library from *text* and save it under *name*.

        An existing library with the same name is replaced, not merged.

        Returns
        -------
        dict
            Keys: ``library_name``, ``chunks_created``, ``total_words``,
            ``compression_ratio``, ``created_at``.
        """
        validate_name(name)
        if len(text) < MIN_TEXT_LENGTH:
            raise ValidationError(
                f"Text must be at least {MIN_TEXT_LENGTH} characters"
            )
        _validate_range("n_max", n_max, N_MAX_RANGE)

        library = build_library(name, text, n_max)
        replaced = self.store.exists(name)
        self.store.save(library)
        logger.info(
            "%s library %s: %d chunks, ratio %.2f",
            "Replaced" if replaced else "Created",
            name,
            len(library.chunks),
            library.compression_ratio,
        )
        return {
            "library_name": name,
            "chunks_created": len(library.chunks),
            "total_words": library.total_words,
            "compression_ratio": library.compression_ratio,
            "created_at": library.created_at,
        }

    def query_library(
        self, name: str, query: str, top_k: int = DEFAULT_TOP_K
    ) -> list[Chunk]:
        """Return the *top_k* chunks of library *name* most relevant to *query*."""
        _validate_query(query)
        _validate_range("top_k", top_k, TOP_K_RANGE)
        library = self._require(name)
        return [chunk for chunk, _ in rank_chunks(query, library.chunks)[:top_k]]

    def search_documents(
        self, name: str, query: str, max_results: int = DEFAULT_MAX_RESULTS
    ) -> dict[str, Any]:
        """
        Rank library *name* against *query* and return scored previews.

        Each result has ``chunk_id``, ``content_preview``,
        ``relevance_score`` and ``word_count``.
        """
        _validate_query(query)
        _validate_range("max_results", max_results, MAX_RESULTS_RANGE)
        library = self._require(name)

        results = [
            {
                "chunk_id": chunk.id,
                "content_preview": preview(chunk.content),
                "relevance_score": score,
                "word_count": chunk.word_count,
            }
            for chunk, score in rank_chunks(query, library.chunks)[:max_results]
        ]
        return {
            "query": query,
            "results": results,
            "total_results": len(results),
            "library_name": name,
        }

    def list_libraries(self) -> list[dict[str, Any]]:
        """Summaries of every stored library, in store order."""
        return [
            {
                "name": lib.name,
                "chunks_count": len(lib.chunks),
                "compression_ratio": lib.compression_ratio,
                "created_at": lib.created_at,
                "updated_at": lib.updated_at,
            }
            for lib in self.store.list()
        ]

    def get_library_stats(self, name: str) -> dict[str, Any]:
        library = self._require(name)
        total_chunks = len(library.chunks)
        return {
            "library_name": name,
            "total_chunks": total_chunks,
            "total_words": library.total_words,
            "total_characters": library.total_characters,
            "content_bytes": library.content_bytes,
            "descriptor_bytes": library.descriptor_bytes,
            "compression_ratio": library.compression_ratio,
            "average_chunk_size": (
                library.total_words / total_chunks if total_chunks else 0.0
            ),
            "created_at": library.created_at,
            "updated_at": library.updated_at,
            "n_max": library.n_max,
            "addressable_states": (
                total_states(library.n_max) if library.n_max is not None else None
            ),
        }

    def delete_library(self, name: str) -> dict[str, Any]:
        """Delete library *name*.  Deleting an absent library is not an error."""
        validate_name(name)
        deleted = self.store.delete(name)
        if deleted:
            logger.info("Deleted library %s", name)
            message = f"Library '{name}' deleted."
        else:
            message = f"Library '{name}' does not exist."
        return {"deleted": deleted, "library_name": name, "message": message}

    def verify_integrity(self, name: str) -> dict[str, Any]:
        """Recompute every chunk digest of library *name* and count mismatches."""
        library = self._require(name)
        total = len(library.chunks)
        verified = sum(1 for chunk in library.chunks if verify_chunk(chunk))
        failed = total - verified
        if failed:
            logger.warning("Library %s: %d of %d chunks failed verification", name, failed, total)
        return {
            "library_name": name,
            "total_chunks": total,
            "verified_chunks": verified,
            "failed_chunks": failed,
            "integrity_percentage": verified / total * 100 if total else 100.0,
            "all_verified": failed == 0,
        }

    def extend_context(
        self,
        documents: dict[str, str],
        query: str,
        top_k: int = DEFAULT_TOP_K,
    ) -> dict[str, Any]:
        """
        Retrieve context for *query* from several already-loaded documents.

        Each document (keyed by its source, e.g. a file path) is encoded into
        a transient library that is never saved; its *top_k* best chunks are
        appended to the combined context.
        """
        _validate_query(query)
        _validate_range("top_k", top_k, TOP_K_RANGE)
        if not documents:
            raise ValidationError("At least one document is required")

        sections: list[str] = []
        retrieved = 0
        total_words = 0
        original_size = 0
        compressed_size = 0
        for source, text in documents.items():
            library = build_library(source, text)
            original_size += len(utf8_bytes(text))
            compressed_size += library.descriptor_bytes
            best = [chunk for chunk, _ in rank_chunks(query, library.chunks)[:top_k]]
            retrieved += len(best)
            total_words += sum(c.word_count for c in best)
            sections.append(f"=== {source} ===\n{format_context(best)}")

        return {
            "query": query,
            "files_processed": len(documents),
            "total_chunks_retrieved": retrieved,
            "extended_context": "\n\n".join(sections),
            "total_words": total_words,
            "compression_stats": {
                "original_size": original_size,
                "compressed_size": compressed_size,
                "compression_ratio": original_size / compressed_size,
            },
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, name: str) -> Library:
        validate_name(name)
        library = self.store.get(name)
        if library is None:
            raise NotFoundError(name)
        return library

"""
MCP (Model Context Protocol) server for ai-books.

Exposes the LibraryService as a set of Claude tools so that Claude can
turn long documents into knowledge libraries and pull back only the chunks
a question needs.

Run as a stdio server (Claude Desktop / claude.ai):
    python -m ai_books.mcp_server

Or via the installed entry-point:
    ai-books-mcp

Configuration (environment variables):
    AI_BOOKS_DB_PATH    - path to a ChromaDB store; libraries are kept in memory only when unset
    AI_BOOKS_LOG_LEVEL  - logging level written to stderr (default: INFO)
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Annotated, Any

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field

from .errors import AIBooksError, ValidationError
from .library import LibraryService, format_context
from .store import ChromaLibraryStore, LibraryStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Resolve configuration from environment
# ---------------------------------------------------------------------------

_DB_PATH = os.environ.get("AI_BOOKS_DB_PATH")
_LOG_LEVEL = os.environ.get("AI_BOOKS_LOG_LEVEL", "INFO")

# Lazy-initialised singleton so a persistent store is only opened once.
_service: LibraryService | None = None


def _get_service() -> LibraryService:
    global _service
    if _service is None:
        store = ChromaLibraryStore(path=_DB_PATH) if _DB_PATH else LibraryStore()
        _service = LibraryService(store=store)
    return _service


def _call(fn, *args: Any, **kwargs: Any) -> Any:
    """Run a service call, turning library errors into tool errors."""
    try:
        return fn(*args, **kwargs)
    except AIBooksError as exc:
        raise ToolError(str(exc)) from exc


def _load_files(file_paths: list[str]) -> dict[str, str]:
    documents: dict[str, str] = {}
    for file_path in file_paths:
        try:
            documents[file_path] = Path(file_path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ValidationError(f"Cannot read {file_path}: {exc}") from exc
    return documents


# ---------------------------------------------------------------------------
# FastMCP server
# ---------------------------------------------------------------------------

LibraryName = Annotated[
    str,
    Field(
        min_length=1,
        max_length=100,
        pattern=r"^[a-z0-9_-]+$",
        description="Name of the knowledge library (e.g. 'react-docs', 'ml-papers')",
    ),
]
Query = Annotated[str, Field(min_length=1, description="The question or search query")]

mcp = FastMCP(
    "ai-books",
    instructions=(
        "Knowledge libraries for documents larger than the context window. "
        "Use `create_library` once per document to chunk and fingerprint it. "
        "Use `query_library` to get the chunks relevant to a question as a "
        "ready-to-read context block, or `search_documents` for scored "
        "previews. Use `extend_context` to answer from files without storing "
        "them. Use `list_libraries`, `get_library_stats`, `verify_integrity` "
        "and `delete_library` to manage stored libraries."
    ),
)


@mcp.tool()
def create_library(
    name: LibraryName,
    text: Annotated[str, Field(min_length=100, description="Text to encode")],
    n_max: Annotated[
        int, Field(ge=5, le=20, description="Orbital levels per descriptor")
    ] = 15,
) -> str:
    """
    Chunk a text into a named knowledge library.

    An existing library with the same name is replaced.

    Returns:
        JSON with library_name, chunks_created, total_words,
        compression_ratio and created_at.
    """
    result = _call(_get_service().create_library, name, text, n_max=n_max)
    return json.dumps(result, indent=2)


@mcp.tool()
def query_library(
    library_name: LibraryName,
    query: Query,
    top_k: Annotated[int, Field(ge=1, le=20, description="Chunks to retrieve")] = 8,
) -> str:
    """
    Retrieve the chunks of a library most relevant to a question.

    Returns:
        JSON with query, library_name, chunks_retrieved, total_words and
        context (the retrieved chunks, numbered, best first).
    """
    chunks = _call(_get_service().query_library, library_name, query, top_k=top_k)
    return json.dumps(
        {
            "query": query,
            "chunks_retrieved": len(chunks),
            "context": format_context(chunks),
            "total_words": sum(c.word_count for c in chunks),
            "library_name": library_name,
        },
        indent=2,
    )


@mcp.tool()
def extend_context(
    file_paths: Annotated[list[str], Field(min_length=1, description="Files to load")],
    query: Query,
    top_k: Annotated[int, Field(ge=1, le=20, description="Chunks per file")] = 8,
) -> str:
    """
    Answer a question from files without creating libraries.

    Every file is read as UTF-8 and encoded on the fly; the best chunks of
    each are combined into one context block.

    Returns:
        JSON with query, files_processed, total_chunks_retrieved,
        extended_context, total_words and compression_stats.
    """
    documents = _call(_load_files, file_paths)
    result = _call(_get_service().extend_context, documents, query, top_k=top_k)
    return json.dumps(result, indent=2)


@mcp.tool()
def list_libraries() -> str:
    """
    List every stored library.

    Returns:
        JSON with libraries (name, chunks_count, compression_ratio,
        created_at, updated_at) and total_libraries.
    """
    libraries = _get_service().list_libraries()
    return json.dumps(
        {"libraries": libraries, "total_libraries": len(libraries)}, indent=2
    )


@mcp.tool()
def get_library_stats(library_name: LibraryName) -> str:
    """Return size, word and descriptor statistics for one library."""
    return json.dumps(_call(_get_service().get_library_stats, library_name), indent=2)


@mcp.tool()
def delete_library(library_name: LibraryName) -> str:
    """
    Delete a library.

    Returns:
        JSON with deleted (false when the library did not exist),
        library_name and message.
    """
    return json.dumps(_get_service().delete_library(library_name), indent=2)


@mcp.tool()
def verify_integrity(library_name: LibraryName) -> str:
    """
    Check that every chunk of a library still matches its SHA-256 digest.

    Returns:
        JSON with total_chunks, verified_chunks, failed_chunks,
        integrity_percentage and all_verified.
    """
    return json.dumps(_call(_get_service().verify_integrity, library_name), indent=2)


@mcp.tool()
def search_documents(
    library_name: LibraryName,
    query: Query,
    max_results: Annotated[int, Field(ge=1, le=50, description="Results to return")] = 10,
) -> str:
    """
    Search a library and return scored content previews.

    Returns:
        JSON with query, library_name, total_results and results (chunk_id,
        content_preview, relevance_score, word_count).
    """
    result = _call(
        _get_service().search_documents, library_name, query, max_results=max_results
    )
    for item in result["results"]:
        item["relevance_score"] = round(item["relevance_score"], 4)
    return json.dumps(result, indent=2)


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the MCP server over stdio (used by Claude Desktop)."""
    # stdout carries the protocol, so logs go to stderr.
    logging.basicConfig(
        level=_LOG_LEVEL.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(
        "Starting ai-books MCP server (%s)",
        f"ChromaDB at {_DB_PATH}" if _DB_PATH else "in-memory libraries",
    )
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()

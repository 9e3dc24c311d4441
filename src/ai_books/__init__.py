"""
ai-books: chunked knowledge libraries for documents larger than an LLM context.

Splits long texts into word-bounded chunks, fingerprints each chunk with a
deterministic descriptor derived from its SHA-256 digest, and retrieves the
chunks most relevant to a query.
"""

from .library import LibraryService
from .store import ChromaLibraryStore, LibraryStore
from .encoding import chunk_text, encode_descriptor, verify_chunk
from .similarity import compute_similarity

__all__ = [
    "LibraryService",
    "LibraryStore",
    "ChromaLibraryStore",
    "chunk_text",
    "encode_descriptor",
    "verify_chunk",
    "compute_similarity",
]

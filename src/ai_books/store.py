"""
Library stores: the in-process name -> library mapping, and a ChromaDB
backed variant that keeps libraries across restarts.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
import uuid
from typing import Any

import chromadb
from chromadb.errors import ChromaError

from .errors import StorageError
from .models import Chunk, Descriptor, Library, utf8_bytes

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "ai-books"

# Depending on the version, chromadb reports client-side failures such as an
# oversized batch as ValueError rather than ChromaError.
_CHROMA_ERRORS = (ChromaError, ValueError)


class LibraryStore:
    """
    In-memory mapping of library name to :class:`Library`.

    Keys are unique and case-sensitive.  Iteration follows insertion order;
    saving over an existing name replaces the library in place.  A single
    re-entrant lock guards the whole mapping so one instance can be shared
    between threads.
    """

    def __init__(self) -> None:
        self._libraries: dict[str, Library] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def save(self, library: Library) -> None:
        """Add *library*, replacing any library with the same name."""
        with self._lock:
            self._libraries[library.name] = library

    def delete(self, name: str) -> bool:
        """Remove a library; return whether anything was removed."""
        with self._lock:
            return self._libraries.pop(name, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._libraries.clear()

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get(self, name: str) -> Library | None:
        with self._lock:
            return self._libraries.get(name)

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._libraries

    def list(self) -> list[Library]:
        with self._lock:
            return list(self._libraries.values())

    def count(self) -> int:
        with self._lock:
            return len(self._libraries)


class ChromaLibraryStore(LibraryStore):
    """
    Write-through :class:`LibraryStore` mirrored into ChromaDB.

    Each library lives in its own collection.  Chunk content is the
    document, the descriptor states are the embedding vector (no embedding
    model is involved) and the remaining chunk fields are metadata.
    Collection names are derived from a hash of the library name plus a
    per-write suffix since Chroma only accepts 3-63 character names; the
    real name is kept in the collection metadata together with the
    *namespace*, which lets several stores share one client without seeing
    each other's libraries.

    Saving writes a fresh collection in batches of at most *max_batch_size*
    records and only drops the previous collection once every batch is in,
    so a failed save leaves both the memory and the disk copy untouched.

    All libraries of the namespace are loaded into memory on construction,
    so reads never touch ChromaDB.
    """

    def __init__(
        self,
        path: str = "./ai_books_db",
        namespace: str = DEFAULT_NAMESPACE,
        max_batch_size: int | None = None,
        _client: chromadb.ClientAPI | None = None,
    ) -> None:
        super().__init__()
        self.client = _client or chromadb.PersistentClient(path=path)
        self.namespace = namespace
        self.max_batch_size = max_batch_size or self.client.get_max_batch_size()
        # library name -> name of the collection currently holding it
        self._collections: dict[str, str] = {}
        self._hydrate()

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def save(self, library: Library) -> None:
        with self._lock:
            new_name = self._new_collection_name(library.name)
            try:
                self._write_library(new_name, library)
            except _CHROMA_ERRORS as exc:
                self._discard_collection(new_name)
                raise StorageError(
                    f"Could not persist library '{library.name}': {exc}"
                ) from exc

            old_name = self._collections.get(library.name)
            self._collections[library.name] = new_name
            super().save(library)
            if old_name is not None:
                self._discard_collection(old_name)

    def delete(self, name: str) -> bool:
        with self._lock:
            if not super().delete(name):
                return False
            collection_name = self._collections.pop(name, None)
            if collection_name is not None:
                self._drop_collection(collection_name)
            return True

    def clear(self) -> None:
        with self._lock:
            for collection in self._namespace_collections():
                self._drop_collection(collection.name)
            self._collections.clear()
            super().clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _new_collection_name(self, library_name: str) -> str:
        digest = hashlib.sha256(utf8_bytes(library_name)).hexdigest()
        return f"{self.namespace}-{digest[:24]}-{uuid.uuid4().hex[:8]}"

    def _drop_collection(self, collection_name: str) -> None:
        try:
            self.client.delete_collection(collection_name)
        except _CHROMA_ERRORS as exc:
            raise StorageError(
                f"Could not delete collection {collection_name}: {exc}"
            ) from exc

    def _discard_collection(self, collection_name: str) -> None:
        """Best-effort removal of a collection that is no longer referenced."""
        try:
            self.client.delete_collection(collection_name)
        except _CHROMA_ERRORS as exc:
            logger.warning("Could not remove collection %s: %s", collection_name, exc)

    def _namespace_collections(self) -> list[Any]:
        collections = []
        for item in self.client.list_collections():
            # Older clients return Collection objects, some newer ones names.
            name = item if isinstance(item, str) else item.name
            collection = self.client.get_collection(name, embedding_function=None)
            meta = collection.metadata or {}
            if meta.get("namespace") == self.namespace and "library_name" in meta:
                collections.append(collection)
        return collections

    def _write_library(self, collection_name: str, library: Library) -> None:
        metadata = {
            "namespace": self.namespace,
            "library_name": library.name,
            "compression_ratio": library.compression_ratio,
            "created_at": library.created_at,
            "updated_at": library.updated_at,
        }
        collection = self.client.create_collection(
            name=collection_name, embedding_function=None, metadata=metadata
        )
        chunks = library.chunks
        for start in range(0, len(chunks), self.max_batch_size):
            batch = chunks[start : start + self.max_batch_size]
            collection.add(
                ids=[c.id for c in batch],
                documents=[c.content for c in batch],
                embeddings=[[float(s) for s in c.descriptor.states] for c in batch],
                metadatas=[
                    {
                        "position": position,
                        "digest": c.digest,
                        "n_max": c.descriptor.n_max,
                        "word_count": c.word_count,
                        "character_count": c.character_count,
                        "created_at": c.created_at,
                    }
                    for position, c in enumerate(batch, start)
                ],
            )
        # Only a fully written collection carries a revision.
        collection.modify(metadata={**metadata, "revision": time.time_ns()})

    def _read_library(self, collection: Any) -> Library:
        meta = collection.metadata
        result = collection.get(include=["documents", "metadatas", "embeddings"])
        ids = result.get("ids") or []
        docs = result.get("documents") or []
        metas = result.get("metadatas") or []
        embeddings = result.get("embeddings")
        if embeddings is None:
            embeddings = [[] for _ in ids]

        rows = sorted(
            zip(ids, docs, metas, embeddings),
            key=lambda row: int(row[2]["position"]),
        )
        chunks = tuple(
            Chunk(
                id=chunk_id,
                content=doc,
                digest=str(chunk_meta["digest"]),
                descriptor=Descriptor(
                    digest=str(chunk_meta["digest"]),
                    states=tuple(int(round(float(s))) for s in states),
                    n_max=int(chunk_meta["n_max"]),
                ),
                word_count=int(chunk_meta["word_count"]),
                character_count=int(chunk_meta["character_count"]),
                created_at=str(chunk_meta["created_at"]),
            )
            for chunk_id, doc, chunk_meta, states in rows
        )
        return Library(
            name=str(meta["library_name"]),
            chunks=chunks,
            compression_ratio=float(meta["compression_ratio"]),
            created_at=str(meta["created_at"]),
            updated_at=str(meta["updated_at"]),
        )

    def _hydrate(self) -> None:
        # A process that died mid-save can leave an unfinished collection
        # (no revision) or two finished ones; the newest revision wins.
        latest: dict[str, Any] = {}
        for collection in self._namespace_collections():
            if _revision(collection) == 0:
                self._discard_collection(collection.name)
                continue
            name = collection.metadata["library_name"]
            current = latest.get(name)
            if current is None:
                latest[name] = collection
                continue
            if _revision(collection) > _revision(current):
                latest[name], collection = collection, current
            self._discard_collection(collection.name)

        libraries = [(self._read_library(c), c.name) for c in latest.values()]
        libraries.sort(key=lambda pair: pair[0].created_at)
        for library, collection_name in libraries:
            self._collections[library.name] = collection_name
            super().save(library)
        logger.info(
            "Loaded %d libraries from namespace %s", len(libraries), self.namespace
        )


def _revision(collection: Any) -> int:
    return int((collection.metadata or {}).get("revision", 0))

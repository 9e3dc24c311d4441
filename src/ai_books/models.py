"""
Immutable records for descriptors, chunks and libraries.
"""

from __future__ import annotations

from dataclasses import dataclass, field

#: Bytes used to model a serialized descriptor: the raw SHA-256 digest...
DIGEST_BYTES: int = 32
#: ...plus this many bytes for every orbital state.
STATE_BYTES: int = 4


def utf8_bytes(text: str) -> bytes:
    """UTF-8 encode *text*, passing lone surrogates through instead of failing."""
    return text.encode("utf-8", "surrogatepass")


@dataclass(frozen=True)
class Descriptor:
    """
    Fixed-length fingerprint derived from a content digest.

    ``states[n - 1]`` lies in ``[0, 2 * n * n]`` for every level ``n``.
    """

    digest: str
    states: tuple[int, ...]
    n_max: int

    @property
    def serialized_size(self) -> int:
        return DIGEST_BYTES + STATE_BYTES * len(self.states)


@dataclass(frozen=True)
class Chunk:
    id: str
    content: str
    digest: str
    descriptor: Descriptor
    word_count: int
    character_count: int
    created_at: str

    @property
    def content_size(self) -> int:
        """UTF-8 size of the retained content, in bytes."""
        return len(utf8_bytes(self.content))

    @property
    def compression_ratio(self) -> float:
        """Content bytes per descriptor byte (theoretical, content is kept)."""
        return self.content_size / self.descriptor.serialized_size


@dataclass(frozen=True)
class Library:
    """
    A named, ordered collection of chunks.

    The chunk order is the chunking order and is what keeps ranking ties
    stable.  ``compression_ratio`` compares the retained content with the
    descriptors only; the content itself is never discarded, so the two
    sizes are reported separately by :attr:`content_bytes` and
    :attr:`descriptor_bytes`.
    """

    name: str
    chunks: tuple[Chunk, ...] = field(default_factory=tuple)
    compression_ratio: float = 0.0
    created_at: str = ""
    updated_at: str = ""

    @property
    def total_words(self) -> int:
        return sum(c.word_count for c in self.chunks)

    @property
    def total_characters(self) -> int:
        return sum(c.character_count for c in self.chunks)

    @property
    def content_bytes(self) -> int:
        return sum(c.content_size for c in self.chunks)

    @property
    def descriptor_bytes(self) -> int:
        return sum(c.descriptor.serialized_size for c in self.chunks)

    @property
    def n_max(self) -> int | None:
        """Capacity parameter of the first chunk, ``None`` when empty."""
        if not self.chunks:
            return None
        return self.chunks[0].descriptor.n_max

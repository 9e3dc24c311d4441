"""
Encoding layer: chunking, descriptor derivation, and integrity checks.

These utilities turn raw text into stored chunk records:
  - Word-bounded chunking of long texts before encoding
  - Deterministic descriptors derived from each chunk's SHA-256 digest
  - Integrity verification of a chunk against its recorded digest
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timezone

from .errors import PreconditionViolation, ValidationError
from .models import Chunk, Descriptor, utf8_bytes

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Maximum number of words per chunk when splitting long texts.
DEFAULT_CHUNK_WORDS: int = 250

#: Default number of orbital levels in a descriptor.
DEFAULT_N_MAX: int = 15

#: Number of leading digest bytes used to seed the orbital states (128 bits).
SEED_BYTES: int = 16


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


def chunk_text(text: str, target_words: int = DEFAULT_CHUNK_WORDS) -> list[str]:
    """
    Split *text* into pieces of at most *target_words* words.

    Words are separated by runs of whitespace and re-joined with single
    spaces.  Order is preserved and only the last piece may be shorter.
    Text without any words yields ``[""]``, a single empty piece.
    """
    if target_words < 1:
        raise ValidationError("target_words must be at least 1")

    words = text.split()
    if not words:
        return [""]
    return [
        " ".join(words[i : i + target_words])
        for i in range(0, len(words), target_words)
    ]


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------


def compute_digest(content: str) -> str:
    """Return the lowercase hex SHA-256 digest of *content*."""
    return hashlib.sha256(utf8_bytes(content)).hexdigest()


def orbital_capacity(n: int) -> int:
    """Capacity ``2n²`` of orbital level *n*."""
    return 2 * n * n


def total_states(n_max: int = DEFAULT_N_MAX) -> int:
    """
    Number of distinct descriptors addressable with *n_max* levels.

    Informational only: it bounds the theoretical compression, retrieval
    never looks at it.
    """
    if n_max < 1:
        raise PreconditionViolation(f"n_max must be >= 1, got {n_max}")
    total = 1
    for n in range(1, n_max + 1):
        total *= orbital_capacity(n) + 1
    return total


def encode_descriptor(content: str, n_max: int = DEFAULT_N_MAX) -> Descriptor:
    """
    Derive the descriptor of *content*.

    Level ``n`` (1-based) takes seed byte ``(n - 1) % 16`` of the raw digest
    modulo ``capacity(n) + 1``.  The result depends only on *content* and
    *n_max*.
    """
    if n_max < 1:
        raise PreconditionViolation(f"n_max must be >= 1, got {n_max}")

    raw = hashlib.sha256(utf8_bytes(content)).digest()
    # SHA-256 always yields 32 bytes, so the seed is always complete.
    seed = raw[:SEED_BYTES]

    states = tuple(
        seed[(n - 1) % SEED_BYTES] % (orbital_capacity(n) + 1)
        for n in range(1, n_max + 1)
    )
    return Descriptor(digest=raw.hex(), states=states, n_max=n_max)


# ---------------------------------------------------------------------------
# Chunk records
# ---------------------------------------------------------------------------


def generate_id() -> str:
    """Return a new unique chunk ID."""
    return str(uuid.uuid4())


def utc_timestamp() -> str:
    """Return the current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


def build_chunk(content: str, n_max: int = DEFAULT_N_MAX) -> Chunk:
    """Encode *content* and wrap it in a new :class:`Chunk`."""
    descriptor = encode_descriptor(content, n_max)
    return Chunk(
        id=generate_id(),
        content=content,
        digest=descriptor.digest,
        descriptor=descriptor,
        word_count=len(content.split()),
        character_count=len(content),
        created_at=utc_timestamp(),
    )


# ---------------------------------------------------------------------------
# Integrity
# ---------------------------------------------------------------------------


def verify_chunk(chunk: Chunk) -> bool:
    """Return ``True`` when *chunk*'s content still hashes to its digest."""
    return compute_digest(chunk.content) == chunk.digest

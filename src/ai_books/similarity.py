"""
Relevance scoring between a free-text query and stored chunks.

The score blends two signals:
  - keyword overlap between the query and the chunk content (70 %)
  - position-wise agreement of the query digest with the chunk digest (30 %)

The digest signal carries no meaning of its own (unrelated texts agree on
about 1/16 of hex positions); it only separates chunks that tie on keywords.
"""

from __future__ import annotations

import hashlib
import re
from typing import Callable, Sequence

from .models import Chunk, utf8_bytes

KEYWORD_WEIGHT: float = 0.7
DIGEST_WEIGHT: float = 0.3

#: Query tokens must be longer than this to count as keywords.
MIN_KEYWORD_LENGTH: int = 3

_TOKEN_SPLIT = re.compile(r"\W+")


def _tokens(text: str) -> list[str]:
    return [t for t in _TOKEN_SPLIT.split(text.lower()) if t]


def keyword_score(query: str, content: str) -> float:
    """
    Fraction of query keywords found in *content*.

    A keyword matches when some content token contains it, or is contained
    in it.  Returns 0.0 when the query has no keyword.
    """
    keywords = [t for t in _tokens(query) if len(t) > MIN_KEYWORD_LENGTH]
    if not keywords:
        return 0.0

    content_tokens = set(_tokens(content))
    matches = sum(
        1
        for kw in keywords
        if any(kw in tok or tok in kw for tok in content_tokens)
    )
    return matches / len(keywords)


def digest_score(query: str, digest: str) -> float:
    """Fraction of hex positions where the lower-cased query's digest matches *digest*."""
    query_digest = hashlib.sha256(utf8_bytes(query.lower())).hexdigest()
    same = sum(1 for a, b in zip(query_digest, digest) if a == b)
    return same / len(query_digest)


def compute_similarity(query: str, chunk: Chunk) -> float:
    """Relevance of *chunk* to *query*, in [0.0, 1.0]."""
    return (
        keyword_score(query, chunk.content) * KEYWORD_WEIGHT
        + digest_score(query, chunk.digest) * DIGEST_WEIGHT
    )


def rank_chunks(
    query: str,
    chunks: Sequence[Chunk],
    scorer: Callable[[str, Chunk], float] = compute_similarity,
) -> list[tuple[Chunk, float]]:
    """
    Score every chunk and sort by descending score.

    ``list.sort`` is stable, so chunks with equal scores stay in their
    original order.
    """
    scored = [(chunk, scorer(query, chunk)) for chunk in chunks]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored

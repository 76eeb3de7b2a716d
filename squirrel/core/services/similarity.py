"""
Vector similarity helpers used for semantic retrieval.

Vectors of different lengths are compared over their common prefix so that
notes embedded by different providers can coexist in one store.
"""

import logging
from typing import Any, Callable, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

logger = logging.getLogger(__name__)

T = TypeVar("T")


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """
    Cosine similarity in [-1, 1].

    Empty or zero-magnitude vectors score 0. Mismatched lengths are
    compared over the first min(len(a), len(b)) components.
    """
    if a is None or b is None or len(a) == 0 or len(b) == 0:
        return 0.0

    length = min(len(a), len(b))
    if len(a) != len(b):
        logger.debug("Comparing vectors of different lengths (%d vs %d)", len(a), len(b))

    va = np.asarray(a[:length], dtype=np.float64)
    vb = np.asarray(b[:length], dtype=np.float64)

    magnitude = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0

    score = float(np.dot(va, vb)) / magnitude
    # Rounding can push identical vectors just past 1.
    return max(-1.0, min(1.0, score))


def normalize_vector(vector: Sequence[float]) -> List[float]:
    """Scales a vector to unit length. Zero vectors are returned unchanged."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0:
        return [float(v) for v in vector]
    return (arr / norm).tolist()


def _default_embedding(item: Any) -> Optional[Sequence[float]]:
    return getattr(item, "embedding", None)


def top_k_similar(
    query: Optional[Sequence[float]],
    items: Sequence[T],
    k: int,
    embedding_of: Callable[[T], Optional[Sequence[float]]] = _default_embedding,
) -> List[Tuple[T, float]]:
    """
    Returns up to k (item, score) pairs, best first.

    Items without an embedding are skipped rather than scored as zero.
    Ties keep the original relative order of `items`.
    """
    if query is None or len(query) == 0:
        logger.debug("Empty query embedding provided")
        return []
    if k <= 0:
        return []

    scored = []
    for item in items:
        embedding = embedding_of(item)
        if embedding is None or len(embedding) == 0:
            continue
        scored.append((item, cosine_similarity(query, embedding)))

    if not scored:
        logger.debug("No comparable embeddings among %d items", len(items))
        return []

    # list.sort is stable, so equal scores keep input order
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:k]

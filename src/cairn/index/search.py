"""Linear cosine-similarity search over a collection's embedding side-table."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from cairn.index.models import EmbeddingEntry


@dataclass
class Match:
    id: str
    similarity: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|).

    Returns NaN when either vector has zero magnitude or the dimensions
    differ. NaN compares false against every threshold, so such vectors
    never match.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return math.nan
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0.0 or norm_b == 0.0:
        return math.nan
    return float(np.dot(va, vb) / (norm_a * norm_b))


def rank(
    query: Sequence[float],
    embeddings: Sequence[EmbeddingEntry],
    threshold: float,
    limit: int,
) -> list[Match]:
    """Matches with similarity >= threshold, best first, at most ``limit``.

    Ties keep side-table order.
    """
    if limit <= 0:
        return []
    scored = [Match(e.id, cosine_similarity(query, e.vector)) for e in embeddings]
    matches = [m for m in scored if m.similarity >= threshold]
    matches.sort(key=lambda m: m.similarity, reverse=True)
    return matches[:limit]

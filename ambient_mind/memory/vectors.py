from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Sequence, TypeVar

import numpy as np


T = TypeVar("T")


@dataclass(slots=True)
class RankedItem(Generic[T]):
    item: T
    similarity: float


def as_vector(values: Iterable[float] | np.ndarray) -> np.ndarray:
    if isinstance(values, np.ndarray):
        return values.astype(np.float64, copy=False).reshape(-1)
    return np.asarray(list(values), dtype=np.float64).reshape(-1)


def encode_vector(values: Iterable[float] | np.ndarray) -> bytes:
    return as_vector(values).tobytes()


def decode_vector(blob: bytes | memoryview | None) -> np.ndarray:
    if not blob:
        return np.zeros(0, dtype=np.float64)
    return np.frombuffer(bytes(blob), dtype=np.float64).copy()


def cosine_similarity(a: Iterable[float] | np.ndarray, b: Iterable[float] | np.ndarray) -> float:
    """Cosine similarity in [-1, 1]; 0.0 for mismatched lengths or zero vectors."""
    va = as_vector(a)
    vb = as_vector(b)
    if va.size == 0 or va.shape != vb.shape:
        return 0.0
    norm = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def rank_by_similarity(
    query: Iterable[float] | np.ndarray,
    candidates: Sequence[T],
    vector_of: Callable[[T], np.ndarray],
    *,
    top_k: int | None = None,
    threshold: float = 0.0,
) -> list[RankedItem[T]]:
    """Threshold first, then a stable descending sort, then top-k.

    Equal similarities keep candidate order, so results are reproducible.
    """
    query_vec = as_vector(query)
    scored: list[RankedItem[T]] = []
    for candidate in candidates:
        similarity = cosine_similarity(query_vec, vector_of(candidate))
        if similarity < threshold:
            continue
        scored.append(RankedItem(item=candidate, similarity=similarity))

    scored.sort(key=lambda ranked: ranked.similarity, reverse=True)
    if top_k is not None:
        scored = scored[: max(0, int(top_k))]
    return scored

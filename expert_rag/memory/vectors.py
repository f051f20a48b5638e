# expert_rag/memory/vectors.py
"""
Vector helpers shared by the embedder and the chunk store.

Cosine similarity follows dot(a, b) / (|a| * |b|), with a zero vector on
either side scoring 0. Vector literals use the pgvector text form
"[f1,f2,...,fD]".
"""

from typing import List, Sequence, Tuple

import numpy as np

from expert_rag.errors import DimensionError


def ensure_dimension(vector: Sequence[float], dimension: int, what: str = "vector"):

    if len(vector) != dimension:
        raise DimensionError(
            f"{what} has {len(vector)} dimensions, expected {dimension}"
        )


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:

    if len(a) != len(b):
        raise DimensionError(
            f"Cannot compare vectors of length {len(a)} and {len(b)}"
        )

    va = np.asarray(a, dtype="float64")
    vb = np.asarray(b, dtype="float64")

    norm = np.linalg.norm(va) * np.linalg.norm(vb)

    if norm == 0.0:
        return 0.0

    return float(np.dot(va, vb) / norm)


def _normalize(vectors: np.ndarray) -> np.ndarray:
    """
    Row-normalize; zero rows stay zero so they score 0 against anything.
    """

    norms = np.linalg.norm(vectors, axis=1, keepdims=True)

    return np.divide(
        vectors,
        norms,
        out=np.zeros_like(vectors),
        where=norms > 0,
    )


def rank_by_similarity(
    query: Sequence[float],
    matrix: Sequence[Sequence[float]],
) -> Tuple[List[int], List[float]]:
    """
    Rank the rows of `matrix` against `query`.

    Returns (row indices, scores), highest similarity first. Equal scores
    keep their original row order, so callers passing rows in insertion
    order get insertion-order tie-breaking.
    """

    if len(matrix) == 0:
        return [], []

    rows = np.asarray(matrix, dtype="float64")
    q = np.asarray(query, dtype="float64").reshape(1, -1)

    if rows.ndim != 2 or rows.shape[1] != q.shape[1]:
        raise DimensionError(
            f"Query has {q.shape[1]} dimensions, stored vectors have "
            f"{rows.shape[1] if rows.ndim == 2 else 'ragged'}"
        )

    scores = (_normalize(rows) @ _normalize(q).T).ravel()

    # clamp float drift so identical vectors never exceed 1
    scores = np.clip(scores, -1.0, 1.0)

    order = np.argsort(-scores, kind="stable")

    return order.tolist(), [float(scores[i]) for i in order]


# ============================================================
# LITERAL CODEC
# ============================================================

def to_vector_literal(vector: Sequence[float]) -> str:
    """
    "[f1,f2,...]" using repr(), which round-trips Python floats exactly.
    """

    return "[" + ",".join(repr(float(x)) for x in vector) + "]"


def parse_vector_literal(literal: str) -> List[float]:

    body = literal.strip()

    if not (body.startswith("[") and body.endswith("]")):
        raise ValueError(f"Malformed vector literal: {literal[:40]!r}")

    body = body[1:-1].strip()

    if not body:
        return []

    return [float(part) for part in body.split(",")]

"""Vector similarity helpers shared by the live and reference indexes."""

from __future__ import annotations

import json
from collections.abc import Sequence

import numpy as np
from numpy.typing import ArrayLike


def cosine_similarity(a: ArrayLike, b: ArrayLike) -> float:
    """Cosine similarity of two vectors, clipped to [-1, 1].

    Returns 0.0 when either vector is empty, the lengths differ, either norm
    is zero, or the result is not finite. Never raises and never returns NaN.
    """
    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()
    if va.size == 0 or vb.size == 0 or va.size != vb.size:
        return 0.0

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if not (norm_a > 0.0 and norm_b > 0.0):
        return 0.0

    score = float(np.dot(va, vb) / (norm_a * norm_b))
    if not np.isfinite(score):
        return 0.0
    return max(-1.0, min(1.0, score))


def encode_vector(vector: Sequence[float]) -> str:
    """Serialize a vector for the ``embedding_json`` column."""
    return json.dumps([float(v) for v in vector], separators=(",", ":"))


def decode_vector(payload: str | bytes | None) -> list[float]:
    """Decode an ``embedding_json`` value; corrupt payloads decode to an empty vector."""
    if not payload:
        return []
    try:
        values = json.loads(payload)
    except (TypeError, ValueError):
        return []
    if not isinstance(values, list):
        return []
    try:
        return [float(v) for v in values]
    except (TypeError, ValueError):
        return []

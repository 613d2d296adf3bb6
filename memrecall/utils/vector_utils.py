"""
Vector math for semantic matching.
"""

import math
from typing import Sequence


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors, clamped to [0, 1].

    Zero-magnitude vectors and vectors of different lengths have no defined
    direction relative to each other and score 0. Negative similarity also
    scores 0, and floating-point drift above 1 is clipped.

    Args:
        a: First vector
        b: Second vector

    Returns:
        Similarity in [0, 1]
    """
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    if math.isnan(similarity):
        return 0.0
    return min(max(similarity, 0.0), 1.0)

# services/stats.py
"""Numeric helpers shared by the matrix, market and collusion services.

Empty and single-element inputs return defined sentinels (0) instead of raising.
"""

from typing import Sequence

import numpy as np


def mean(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(values))


def median(values: Sequence[float]) -> float:
    """Median; an even count averages the two middle values."""
    if len(values) == 0:
        return 0.0
    return float(np.median(values))


def std_dev(values: Sequence[float]) -> float:
    """Population standard deviation (0 for empty or singleton input)."""
    if len(values) < 2:
        return 0.0
    return float(np.std(values))


def variance(values: Sequence[float]) -> float:
    if len(values) < 2:
        return 0.0
    return float(np.var(values))


def coefficient_of_variation(values: Sequence[float]) -> float:
    avg = mean(values)
    if avg == 0:
        return float("inf")
    return std_dev(values) / avg


def cosine_similarity(vector1: Sequence[float], vector2: Sequence[float]) -> float:
    if len(vector1) != len(vector2) or len(vector1) == 0:
        return 0.0
    a = np.asarray(vector1, dtype=float)
    b = np.asarray(vector2, dtype=float)
    magnitude = np.linalg.norm(a) * np.linalg.norm(b)
    if magnitude == 0:
        return 0.0
    return float(np.dot(a, b) / magnitude)


def jaccard(set1: set, set2: set) -> float:
    union = set1 | set2
    if not union:
        return 0.0
    return len(set1 & set2) / len(union)

"""
Similarity Scorer: MSE, cosine similarity and euclidean distance.

Each backend pairs with exactly one Metric and one MatchPolicy
(threshold + minimum confidence gap).
"""

import math
from dataclasses import dataclass
from enum import Enum

import numpy as np


def _pair(a, b):
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)
    if a.size == 0 or a.shape != b.shape:
        return None
    return a, b


def mse(a, b) -> float:
    """mean((a - b)^2); +inf on dimension mismatch or empty vectors."""
    pair = _pair(a, b)
    if pair is None:
        return math.inf
    diff = pair[0] - pair[1]
    return float(np.mean(diff * diff))


def cosine_similarity(a, b) -> float:
    """dot(a, b) / (|a| |b|); 0 on mismatch, empty or zero-magnitude vectors."""
    pair = _pair(a, b)
    if pair is None:
        return 0.0
    a, b = pair
    mag_a = float(np.linalg.norm(a))
    mag_b = float(np.linalg.norm(b))
    if mag_a == 0 or mag_b == 0:
        return 0.0
    return float(np.dot(a, b) / (mag_a * mag_b))


def euclidean_distance(a, b) -> float:
    """sqrt(sum((a - b)^2)); +inf on dimension mismatch or empty vectors."""
    pair = _pair(a, b)
    if pair is None:
        return math.inf
    return float(np.linalg.norm(pair[0] - pair[1]))


class Metric(Enum):
    MSE = 'mse'
    COSINE = 'cosine'
    EUCLIDEAN = 'euclidean'

    @property
    def lower_is_better(self) -> bool:
        return self is not Metric.COSINE

    @property
    def worst(self) -> float:
        return 0.0 if self is Metric.COSINE else math.inf

    def score(self, a, b) -> float:
        return _METRIC_FUNCTIONS[self](a, b)

    def passes(self, score: float, threshold: float) -> bool:
        if self.lower_is_better:
            return score < threshold
        return score > threshold

    def better(self, score: float, current: float) -> bool:
        """Strictly better; exact ties keep the current (first-seen) score."""
        if self.lower_is_better:
            return score < current
        return score > current

    def gap(self, best: float, second: float) -> float:
        """Margin between best and second-best on the metric's natural scale."""
        if self.lower_is_better:
            return second - best
        return best - second


_METRIC_FUNCTIONS = {
    Metric.MSE: mse,
    Metric.COSINE: cosine_similarity,
    Metric.EUCLIDEAN: euclidean_distance,
}


@dataclass(frozen=True)
class MatchPolicy:
    """Metric, decision threshold and minimum confidence gap for one backend."""
    metric: Metric
    threshold: float
    min_gap: float = 0.0

    def to_dict(self) -> dict:
        return {
            'metric': self.metric.value,
            'threshold': self.threshold,
            'min_gap': self.min_gap,
        }

from __future__ import annotations

import logging
import math
from typing import Callable

import numpy as np

from posematch.errors import DimensionMismatchError, UndefinedInputError
from posematch.pose import Pose
from posematch.vectors import PoseVector, extract_vector

logger = logging.getLogger(__name__)

Metric = Callable[[PoseVector | None, PoseVector | None], float]


def cosine_distance(v1: PoseVector | None, v2: PoseVector | None) -> float:
    """
    ``sqrt(2 * (1 - cos_sim))``: 0 for the same orientation, 2 for opposite.

    Inputs need not be unit length. Two zero vectors count as identical; a
    zero vector against a non-zero one counts as orthogonal.
    """
    if v1 is None or v2 is None:
        raise UndefinedInputError("Cosine distance needs both pose vectors")
    _check_dims(v1, v2)

    a = v1.coords
    b = v2.coords
    na = float(np.linalg.norm(a))
    nb = float(np.linalg.norm(b))
    if na == 0.0 and nb == 0.0:
        sim = 1.0
    elif na == 0.0 or nb == 0.0:
        sim = 0.0
    else:
        sim = float(np.dot(a, b)) / (na * nb)

    sim = min(max(sim, -1.0), 1.0)
    return math.sqrt(2.0 * (1.0 - sim))


def weighted_distance(v1: PoseVector | None, v2: PoseVector | None) -> float:
    """
    Confidence-weighted L1 distance, weighted by the first (reference) vector.

    Each body part contributes an x and a y coordinate that share one
    confidence value. Returns 0.0 while there is no reference vector.
    """
    if v1 is None:
        logger.debug("Weighted distance requested without a reference vector")
        return 0.0
    if v2 is None:
        raise UndefinedInputError("Weighted distance needs a candidate pose vector")
    _check_dims(v1, v2)

    per_coord_conf = np.repeat(v1.confidences, 2)
    term2 = float(np.sum(per_coord_conf * np.abs(v1.coords - v2.coords)))
    if v1.confidence_sum == 0.0:
        return 0.0 if term2 == 0.0 else math.inf
    term1 = 1.0 / v1.confidence_sum
    return term1 * term2


METRICS: dict[str, Metric] = {
    "cosine": cosine_distance,
    "weighted": weighted_distance,
}


def get_metric(name: str) -> Metric:
    key = name.lower()
    if key not in METRICS:
        raise ValueError(f"Unsupported metric: {name} (choose from {', '.join(sorted(METRICS))})")
    return METRICS[key]


class SimilarityScorer:
    """Scores pose pairs with a metric picked by configuration."""

    def __init__(self, metric: str = "cosine") -> None:
        self.metric_name = metric.lower()
        self._metric = get_metric(metric)

    def distance(self, v1: PoseVector | None, v2: PoseVector | None) -> float:
        return self._metric(v1, v2)

    def score_poses(self, reference: Pose, candidate: Pose) -> float:
        return self.distance(extract_vector(reference), extract_vector(candidate))


def _check_dims(v1: PoseVector, v2: PoseVector) -> None:
    if v1.count != v2.count or v1.coords.shape != v2.coords.shape:
        raise DimensionMismatchError(v1.count, v2.count)

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from posematch.errors import DegenerateVectorError, EmptyPoseError
from posematch.pose import Pose


@dataclass(frozen=True, eq=False)
class PoseVector:
    """
    Comparable encoding of a pose.

    - ``coords`` holds x,y interleaved (2N values) with unit L2 norm, or all
      zeros when every keypoint sits at the origin.
    - ``confidences`` holds one score per keypoint, in the same order.
    """

    coords: np.ndarray
    confidences: np.ndarray
    confidence_sum: float

    @property
    def count(self) -> int:
        return int(self.confidences.shape[0])

    @property
    def is_degenerate(self) -> bool:
        return not bool(np.any(self.coords))


def extract_vector(pose: Pose, strict: bool = False) -> PoseVector:
    """
    Convert a pose into a normalized :class:`PoseVector`.

    An all-origin detection has zero norm. By default it yields an all-zero
    ``coords`` vector; with ``strict=True`` it raises DegenerateVectorError.
    """
    if len(pose.keypoints) == 0:
        raise EmptyPoseError("Pose has no keypoints")

    raw = np.array([[kp.x, kp.y] for kp in pose.keypoints], dtype=np.float64).reshape(-1)
    confidences = np.array([kp.score for kp in pose.keypoints], dtype=np.float64)

    norm = float(np.linalg.norm(raw))
    if norm == 0.0:
        if strict:
            raise DegenerateVectorError("All keypoints are at the origin; pose vector has zero norm")
        coords = np.zeros_like(raw)
    else:
        coords = raw / norm

    return PoseVector(
        coords=_frozen(coords),
        confidences=_frozen(confidences),
        confidence_sum=float(confidences.sum()),
    )


def _frozen(arr: np.ndarray) -> np.ndarray:
    out = np.array(arr, dtype=np.float64, copy=True)
    out.setflags(write=False)
    return out

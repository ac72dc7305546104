from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

# COCO keypoints used by YOLO and MoveNet pose models.
COCO17_NAMES = (
    "nose",
    "left_eye",
    "right_eye",
    "left_ear",
    "right_ear",
    "left_shoulder",
    "right_shoulder",
    "left_elbow",
    "right_elbow",
    "left_wrist",
    "right_wrist",
    "left_hip",
    "right_hip",
    "left_knee",
    "right_knee",
    "left_ankle",
    "right_ankle",
)

# BlazePose landmark order (33 points).
BLAZEPOSE_NAMES = (
    "nose",
    "left_eye_inner",
    "left_eye",
    "left_eye_outer",
    "right_eye_inner",
    "right_eye",
    "right_eye_outer",
    "left_ear",
    "right_ear",
    "mouth_left",
    "mouth_right",
    "left_shoulder",
    "right_shoulder",
    "left_elbow",
    "right_elbow",
    "left_wrist",
    "right_wrist",
    "left_pinky",
    "right_pinky",
    "left_index",
    "right_index",
    "left_thumb",
    "right_thumb",
    "left_hip",
    "right_hip",
    "left_knee",
    "right_knee",
    "left_ankle",
    "right_ankle",
    "left_heel",
    "right_heel",
    "left_foot_index",
    "right_foot_index",
)


@dataclass(frozen=True)
class Keypoint:
    name: str
    x: float
    y: float
    score: float  # confidence in [0..1]


@dataclass(frozen=True)
class Pose:
    """
    One subject's keypoints from a single detection call.

    Keypoint order follows the model's canonical body-part order. Two poses
    are compared index by index, so both must come from the same model.
    ``track_id`` is set only by models that track people across frames.
    """

    keypoints: tuple[Keypoint, ...] = ()
    score: float | None = None
    track_id: int | None = None

    @classmethod
    def from_points(
        cls,
        points: Iterable[Sequence[float]],
        names: Sequence[str] | None = None,
        score: float | None = None,
    ) -> "Pose":
        """Build a pose from ``(x, y, score)`` triples."""
        keypoints = []
        for idx, point in enumerate(points):
            name = names[idx] if names is not None and idx < len(names) else f"kp{idx}"
            keypoints.append(
                Keypoint(name=name, x=float(point[0]), y=float(point[1]), score=float(point[2]))
            )
        return cls(keypoints=tuple(keypoints), score=score)

    def __len__(self) -> int:
        return len(self.keypoints)


def first_pose(poses: Sequence[Pose] | None) -> Pose | None:
    """Return the highest-priority pose of a detection result, if any."""
    if not poses:
        return None
    return poses[0]

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

import numpy as np

from posematch.pose import Pose


class PoseModel(str, Enum):
    BLAZEPOSE = "blazepose"
    YOLO_POSE = "yolo-pose"
    MOVENET = "movenet"

    @classmethod
    def parse(cls, value: "str | PoseModel") -> "PoseModel":
        if isinstance(value, PoseModel):
            return value
        key = str(value).strip().lower()
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"Unsupported model: {value}")


@dataclass(frozen=True)
class BlazePoseConfig:
    runtime: str = "solutions"  # "solutions" or "tasks"
    model_type: str = "full"  # lite | full | heavy
    delegate: str = "cpu"
    min_detection_confidence: float = 0.5
    task_model_path: str | None = None
    num_poses: int = 1


@dataclass(frozen=True)
class YoloPoseConfig:
    model_path: str = "yolo11n-pose.pt"
    device: str = "cpu"
    conf_threshold: float = 0.25
    iou_threshold: float = 0.45
    imgsz: int = 640


@dataclass(frozen=True)
class MoveNetConfig:
    model_type: str = "lightning"  # lightning | thunder | multipose
    model_url: str | None = None  # local .tflite path or http(s) URL
    enable_tracking: bool = False
    model_dir: str = "models/movenet"
    min_pose_score: float = 0.25
    num_threads: int | None = None


ModelConfig = BlazePoseConfig | YoloPoseConfig | MoveNetConfig


@dataclass(frozen=True)
class EstimatorConfig:
    """
    Everything needed to build one pose model instance.

    ``backend`` selects where the model runs. For BlazePose it is
    ``<runtime>-<delegate>`` (e.g. ``solutions-cpu``, ``tasks-gpu``); for
    YOLO-Pose it is the torch device (``cpu``, ``cuda:0``, ``mps``); MoveNet
    always runs on the TFLite CPU interpreter (``tflite-cpu``).
    ``runtime_flags`` are exported to the process environment before the
    model is built.
    """

    model: PoseModel = PoseModel.BLAZEPOSE
    backend: str = "solutions-cpu"
    runtime_flags: Mapping[str, Any] = field(default_factory=dict)
    model_options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Own copies so a caller mutating its dicts cannot change an active config.
        object.__setattr__(self, "model", PoseModel.parse(self.model))
        object.__setattr__(self, "runtime_flags", dict(self.runtime_flags))
        object.__setattr__(self, "model_options", dict(self.model_options))

    def model_config(self) -> ModelConfig:
        opts = self.model_options
        if self.model is PoseModel.BLAZEPOSE:
            runtime, _, delegate = self.backend.partition("-")
            return BlazePoseConfig(
                runtime=runtime or "solutions",
                model_type=str(opts.get("type", "full")),
                delegate=delegate or "cpu",
                min_detection_confidence=float(opts.get("min_detection_confidence", 0.5)),
                task_model_path=opts.get("task_model_path"),
                num_poses=int(opts.get("max_poses", 1)),
            )
        if self.model is PoseModel.YOLO_POSE:
            return YoloPoseConfig(
                model_path=str(opts.get("custom_model") or opts.get("model_path", "yolo11n-pose.pt")),
                device=self.backend or "cpu",
                conf_threshold=float(opts.get("conf_threshold", 0.25)),
                iou_threshold=float(opts.get("iou_threshold", 0.45)),
                imgsz=int(opts.get("imgsz", 640)),
            )
        if self.model is PoseModel.MOVENET:
            threads = opts.get("num_threads")
            return MoveNetConfig(
                model_type=str(opts.get("type", "lightning")),
                model_url=opts.get("custom_model") or opts.get("model_url") or None,
                enable_tracking=bool(opts.get("enable_tracking", False)),
                model_dir=str(opts.get("model_dir", "models/movenet")),
                min_pose_score=float(opts.get("min_pose_score", 0.25)),
                num_threads=int(threads) if threads is not None else None,
            )
        raise ValueError(f"Unsupported model: {self.model}")


class BasePoseEstimator:
    name = "base"

    def estimate(
        self,
        frame_bgr: np.ndarray,
        max_poses: int = 1,
        flip_horizontal: bool = False,
    ) -> list[Pose]:  # pragma: no cover - interface
        raise NotImplementedError

    def close(self) -> None:
        return None


def mirror_x(x: float, width: int, flip_horizontal: bool) -> float:
    return float(width) - x if flip_horizontal else x

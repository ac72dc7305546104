from __future__ import annotations

import logging
import os
from typing import Any, Mapping

from posematch.estimators.base import (
    BasePoseEstimator,
    BlazePoseConfig,
    EstimatorConfig,
    MoveNetConfig,
    YoloPoseConfig,
)

logger = logging.getLogger(__name__)


def build_estimator(config: EstimatorConfig) -> BasePoseEstimator:
    model_cfg = config.model_config()

    if isinstance(model_cfg, BlazePoseConfig):
        from posematch.estimators.mediapipe_pose import MediaPipePoseEstimator

        return MediaPipePoseEstimator(
            runtime=model_cfg.runtime,
            model_type=model_cfg.model_type,
            delegate=model_cfg.delegate,
            min_detection_confidence=model_cfg.min_detection_confidence,
            task_model_path=model_cfg.task_model_path,
            num_poses=model_cfg.num_poses,
        )

    if isinstance(model_cfg, YoloPoseConfig):
        from posematch.estimators.yolo_pose import YoloPoseEstimator

        return YoloPoseEstimator(
            model_path=model_cfg.model_path,
            conf_threshold=model_cfg.conf_threshold,
            iou_threshold=model_cfg.iou_threshold,
            imgsz=model_cfg.imgsz,
            device=model_cfg.device,
        )

    if isinstance(model_cfg, MoveNetConfig):
        from posematch.estimators.movenet import MoveNetPoseEstimator

        return MoveNetPoseEstimator(
            model_type=model_cfg.model_type,
            model_url=model_cfg.model_url,
            enable_tracking=model_cfg.enable_tracking,
            model_dir=model_cfg.model_dir,
            min_pose_score=model_cfg.min_pose_score,
            num_threads=model_cfg.num_threads,
        )

    raise ValueError(f"Unsupported model: {config.model}")


def apply_runtime_flags(flags: Mapping[str, Any], backend: str) -> None:
    """Export runtime flags as environment variables before a model is built."""
    for key, value in flags.items():
        if isinstance(value, bool):
            value = int(value)
        os.environ[str(key)] = str(value)
    if backend.endswith("-cpu"):
        os.environ.setdefault("MEDIAPIPE_DISABLE_GPU", "1")
    elif backend.endswith("-gpu") and "MEDIAPIPE_DISABLE_GPU" not in flags:
        os.environ.pop("MEDIAPIPE_DISABLE_GPU", None)
    logger.debug("Applied %d runtime flags for backend %s", len(flags), backend)

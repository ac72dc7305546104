from __future__ import annotations

from pathlib import Path

import cv2
import mediapipe as mp
import numpy as np

from posematch.estimators.base import BasePoseEstimator, mirror_x
from posematch.pose import BLAZEPOSE_NAMES, Keypoint, Pose

MODEL_COMPLEXITY = {"lite": 0, "full": 1, "heavy": 2}


class MediaPipePoseEstimator(BasePoseEstimator):
    """
    BlazePose through MediaPipe.

    Runs every frame as an independent still image (no landmark smoothing or
    tracking), so the reference image and the camera stream can share one
    instance. Keypoints are returned in pixel space with ``visibility`` as
    the score.
    """

    name = "blazepose"

    def __init__(
        self,
        runtime: str = "solutions",
        model_type: str = "full",
        delegate: str = "cpu",
        min_detection_confidence: float = 0.5,
        task_model_path: str | None = None,
        num_poses: int = 1,
    ) -> None:
        if model_type not in MODEL_COMPLEXITY:
            raise ValueError(f"Unknown BlazePose model type: {model_type} (expected lite, full or heavy)")

        if runtime == "solutions":
            if not hasattr(mp, "solutions"):
                raise RuntimeError(
                    "Installed mediapipe package does not provide `solutions`. Use the tasks runtime."
                )
            self.backend = "solutions"
            self.pose = mp.solutions.pose.Pose(
                static_image_mode=True,
                model_complexity=MODEL_COMPLEXITY[model_type],
                smooth_landmarks=False,
                enable_segmentation=False,
                min_detection_confidence=min_detection_confidence,
            )
            return

        if runtime != "tasks":
            raise ValueError(f"Unknown BlazePose runtime: {runtime} (expected solutions or tasks)")

        self.backend = "tasks"
        self._init_tasks_backend(
            task_model_path=task_model_path,
            model_type=model_type,
            delegate=delegate,
            min_detection_confidence=min_detection_confidence,
            num_poses=num_poses,
        )

    def _init_tasks_backend(
        self,
        task_model_path: str | None,
        model_type: str,
        delegate: str,
        min_detection_confidence: float,
        num_poses: int,
    ) -> None:
        model_path = Path(task_model_path or f"models/mediapipe/pose_landmarker_{model_type}.task")
        if not model_path.exists():
            raise RuntimeError(
                f"MediaPipe Tasks model not found at: {model_path}. "
                "Download it first with scripts/download_pose_landmarker.py."
            )

        try:
            from mediapipe.tasks import python as mp_python
            from mediapipe.tasks.python import vision
        except ImportError as e:
            raise RuntimeError("Installed mediapipe package does not provide the tasks vision API.") from e

        mp_delegate = (
            mp_python.BaseOptions.Delegate.GPU if delegate == "gpu" else mp_python.BaseOptions.Delegate.CPU
        )
        options = vision.PoseLandmarkerOptions(
            base_options=mp_python.BaseOptions(
                model_asset_path=str(model_path),
                delegate=mp_delegate,
            ),
            running_mode=vision.RunningMode.IMAGE,
            num_poses=max(int(num_poses), 1),
            min_pose_detection_confidence=min_detection_confidence,
            min_pose_presence_confidence=min_detection_confidence,
        )
        self.pose = vision.PoseLandmarker.create_from_options(options)
        self._mp_image_cls = mp.Image
        self._mp_image_fmt = mp.ImageFormat

    def estimate(
        self,
        frame_bgr: np.ndarray,
        max_poses: int = 1,
        flip_horizontal: bool = False,
    ) -> list[Pose]:
        h, w = int(frame_bgr.shape[0]), int(frame_bgr.shape[1])
        frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)

        if self.backend == "solutions":
            results = self.pose.process(frame_rgb)
            if not results.pose_landmarks:
                return []
            landmark_sets = [results.pose_landmarks.landmark]
        else:
            mp_image = self._mp_image_cls(image_format=self._mp_image_fmt.SRGB, data=frame_rgb)
            results = self.pose.detect(mp_image)
            if not results.pose_landmarks:
                return []
            landmark_sets = list(results.pose_landmarks)

        poses = [self._to_pose(lm, w, h, flip_horizontal) for lm in landmark_sets]
        return poses[: max(max_poses, 1)]

    @staticmethod
    def _to_pose(landmarks, width: int, height: int, flip_horizontal: bool) -> Pose:
        keypoints = []
        for idx, lm in enumerate(landmarks):
            name = BLAZEPOSE_NAMES[idx] if idx < len(BLAZEPOSE_NAMES) else f"kp{idx}"
            keypoints.append(
                Keypoint(
                    name=name,
                    x=mirror_x(float(lm.x) * width, width, flip_horizontal),
                    y=float(lm.y) * height,
                    score=float(getattr(lm, "visibility", 1.0) or 0.0),
                )
            )
        score = float(np.mean([kp.score for kp in keypoints])) if keypoints else None
        return Pose(keypoints=tuple(keypoints), score=score)

    def close(self) -> None:
        if hasattr(self.pose, "close"):
            self.pose.close()

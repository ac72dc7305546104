from __future__ import annotations

import numpy as np

from posematch.estimators.base import BasePoseEstimator, mirror_x
from posematch.pose import COCO17_NAMES, Keypoint, Pose


class YoloPoseEstimator(BasePoseEstimator):
    name = "yolo-pose"

    def __init__(
        self,
        model_path: str = "yolo11n-pose.pt",
        conf_threshold: float = 0.25,
        iou_threshold: float = 0.45,
        imgsz: int = 640,
        device: str = "cpu",
    ) -> None:
        try:
            from ultralytics import YOLO
        except ImportError as e:
            raise RuntimeError(
                "YOLO-Pose backend requires ultralytics. Install with: pip install ultralytics"
            ) from e

        # Accepts a local weights file, a release name or an http(s) URL.
        self.model = YOLO(model_path)
        self.conf_threshold = conf_threshold
        self.iou_threshold = iou_threshold
        self.imgsz = imgsz
        self.device = device

    def estimate(
        self,
        frame_bgr: np.ndarray,
        max_poses: int = 1,
        flip_horizontal: bool = False,
    ) -> list[Pose]:
        results = self.model.predict(
            source=frame_bgr,
            conf=self.conf_threshold,
            iou=self.iou_threshold,
            imgsz=self.imgsz,
            device=self.device,
            max_det=max(max_poses, 1),
            verbose=False,
        )
        if not results:
            return []

        result = results[0]
        if result.keypoints is None or result.keypoints.xy is None or len(result.keypoints.xy) == 0:
            return []

        kxy_all = result.keypoints.xy.cpu().numpy()
        kcf_all = result.keypoints.conf
        kcf_all = None if kcf_all is None else kcf_all.cpu().numpy()
        box_conf = None
        if result.boxes is not None and result.boxes.conf is not None:
            box_conf = result.boxes.conf.cpu().numpy()

        width = int(frame_bgr.shape[1])
        poses = []
        for person_idx in self._person_order(kxy_all, kcf_all, box_conf):
            kxy = kxy_all[person_idx]
            kcf = np.ones((kxy.shape[0],), dtype=np.float32) if kcf_all is None else kcf_all[person_idx]
            keypoints = tuple(
                Keypoint(
                    name=COCO17_NAMES[i] if i < len(COCO17_NAMES) else f"kp{i}",
                    x=mirror_x(float(kxy[i][0]), width, flip_horizontal),
                    y=float(kxy[i][1]),
                    score=float(kcf[i]),
                )
                for i in range(kxy.shape[0])
            )
            score = float(box_conf[person_idx]) if box_conf is not None else float(np.mean(kcf))
            poses.append(Pose(keypoints=keypoints, score=score))
        return poses[: max(max_poses, 1)]

    @staticmethod
    def _person_order(kxy_all, kcf_all, box_conf) -> list[int]:
        num_people = len(kxy_all)
        if box_conf is not None and len(box_conf) == num_people:
            ranking = np.asarray(box_conf)
        elif kcf_all is not None:
            ranking = np.array([float(kcf_all[i].mean()) for i in range(num_people)])
        else:
            return list(range(num_people))
        return [int(i) for i in np.argsort(-ranking, kind="stable")]

    def close(self) -> None:
        self.model = None

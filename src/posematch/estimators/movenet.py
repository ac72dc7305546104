from __future__ import annotations

import hashlib
import logging
import urllib.request
from pathlib import Path

import cv2
import numpy as np

from posematch.estimators.base import BasePoseEstimator, mirror_x
from posematch.pose import COCO17_NAMES, Keypoint, Pose

logger = logging.getLogger(__name__)

MODEL_URLS = {
    "lightning": "https://tfhub.dev/google/lite-model/movenet/singlepose/lightning/tflite/float16/4?lite-format=tflite",
    "thunder": "https://tfhub.dev/google/lite-model/movenet/singlepose/thunder/tflite/float16/4?lite-format=tflite",
    "multipose": "https://tfhub.dev/google/lite-model/movenet/multipose/lightning/tflite/float16/1?lite-format=tflite",
}
INPUT_SIZES = {"lightning": 192, "thunder": 256, "multipose": 256}


def resolve_model_file(model_type: str, model_url: str | None, model_dir: str) -> Path:
    """
    Return a local ``.tflite`` path for the model, downloading it if needed.

    ``model_url`` may be a local file or an http(s) URL; without one the
    published model for ``model_type`` is used. Downloads are cached in
    ``model_dir``.
    """
    url = model_url or MODEL_URLS[model_type]
    if not url.startswith(("http://", "https://")):
        path = Path(url)
        if not path.exists():
            raise RuntimeError(f"MoveNet model file not found: {path}")
        return path

    if model_url is None:
        path = Path(model_dir) / f"movenet_{model_type}.tflite"
    else:
        digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:12]
        path = Path(model_dir) / f"movenet_custom_{digest}.tflite"
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading MoveNet model %s to %s", url, path)
        urllib.request.urlretrieve(url, path)
    return path


def box_iou(a: np.ndarray, b: np.ndarray) -> float:
    """IoU of two ``(ymin, xmin, ymax, xmax)`` boxes."""
    ymin, xmin = max(a[0], b[0]), max(a[1], b[1])
    ymax, xmax = min(a[2], b[2]), min(a[3], b[3])
    inter = max(0.0, ymax - ymin) * max(0.0, xmax - xmin)
    union = (a[2] - a[0]) * (a[3] - a[1]) + (b[2] - b[0]) * (b[3] - b[1]) - inter
    return float(inter / union) if union > 0 else 0.0


class PoseTracker:
    """Keeps person ids stable across frames by matching bounding boxes."""

    def __init__(self, max_tracks: int = 18, max_age: int = 30, min_similarity: float = 0.15) -> None:
        self.max_tracks = max_tracks
        self.max_age = max_age  # frames
        self.min_similarity = min_similarity
        self._tracks: dict[int, tuple[np.ndarray, int]] = {}
        self._next_id = 1
        self._frame = 0

    def assign(self, boxes: list[np.ndarray]) -> list[int]:
        self._frame += 1
        self._tracks = {
            tid: (box, seen) for tid, (box, seen) in self._tracks.items() if self._frame - seen <= self.max_age
        }
        free = sorted(self._tracks)
        ids = []
        for box in boxes:
            best, best_sim = None, 0.0
            for tid in free:
                sim = box_iou(box, self._tracks[tid][0])
                if sim >= self.min_similarity and (best is None or sim > best_sim):
                    best, best_sim = tid, sim
            if best is None:
                best = self._next_id
                self._next_id += 1
            else:
                free.remove(best)
            self._tracks[best] = (box, self._frame)
            ids.append(best)

        if len(self._tracks) > self.max_tracks:
            newest = sorted(self._tracks.items(), key=lambda item: item[1][1], reverse=True)
            self._tracks = dict(newest[: self.max_tracks])
        return ids


class MoveNetPoseEstimator(BasePoseEstimator):
    """
    MoveNet on a TFLite interpreter.

    ``lightning`` and ``thunder`` return one person; ``multipose`` returns up
    to six. Tracking only applies to ``multipose``, where it fills
    ``Pose.track_id``.
    """

    name = "movenet"

    def __init__(
        self,
        model_type: str = "lightning",
        model_url: str | None = None,
        enable_tracking: bool = False,
        model_dir: str = "models/movenet",
        min_pose_score: float = 0.25,
        num_threads: int | None = None,
        interpreter=None,
    ) -> None:
        if model_type not in INPUT_SIZES:
            raise ValueError(f"Unsupported MoveNet type: {model_type}. Use lightning, thunder or multipose.")
        self.model_type = model_type
        self.min_pose_score = min_pose_score
        self.input_size = INPUT_SIZES[model_type]
        self.tracker = PoseTracker() if enable_tracking and model_type == "multipose" else None

        if interpreter is None:
            try:
                from ai_edge_litert.interpreter import Interpreter
            except ImportError as e:
                raise RuntimeError(
                    "MoveNet backend requires ai-edge-litert. Install with: pip install ai-edge-litert"
                ) from e
            model_path = resolve_model_file(model_type, model_url, model_dir)
            interpreter = Interpreter(model_path=str(model_path), num_threads=num_threads)
        self.interpreter = interpreter

        input_detail = self.interpreter.get_input_details()[0]
        self._input_index = input_detail["index"]
        self._input_dtype = input_detail["dtype"]
        wanted = [1, self.input_size, self.input_size, 3]
        if list(input_detail["shape"]) != wanted:
            # Multipose models ship with a dynamic input shape.
            self.interpreter.resize_tensor_input(self._input_index, wanted)
        self.interpreter.allocate_tensors()
        self._output_index = self.interpreter.get_output_details()[0]["index"]

    def estimate(
        self,
        frame_bgr: np.ndarray,
        max_poses: int = 1,
        flip_horizontal: bool = False,
    ) -> list[Pose]:
        h, w = frame_bgr.shape[:2]
        side = max(h, w)
        pad_x, pad_y = (side - w) // 2, (side - h) // 2

        square = cv2.copyMakeBorder(
            frame_bgr, pad_y, side - h - pad_y, pad_x, side - w - pad_x, cv2.BORDER_CONSTANT, value=0
        )
        rgb = cv2.cvtColor(cv2.resize(square, (self.input_size, self.input_size)), cv2.COLOR_BGR2RGB)
        self.interpreter.set_tensor(self._input_index, rgb[np.newaxis].astype(self._input_dtype))
        self.interpreter.invoke()
        output = np.asarray(self.interpreter.get_tensor(self._output_index), dtype=np.float32)

        people = self._parse_output(output)
        if self.tracker is not None:
            track_ids = self.tracker.assign([box for _, box, _ in people])
        else:
            track_ids = [None] * len(people)

        poses = []
        for (kps, _, score), track_id in zip(people, track_ids):
            keypoints = tuple(
                Keypoint(
                    name=COCO17_NAMES[i],
                    x=mirror_x(float(kps[i, 1]) * side - pad_x, w, flip_horizontal),
                    y=float(kps[i, 0]) * side - pad_y,
                    score=float(kps[i, 2]),
                )
                for i in range(kps.shape[0])
            )
            poses.append(Pose(keypoints=keypoints, score=score, track_id=track_id))
        poses.sort(key=lambda p: p.score, reverse=True)
        return poses[: max(max_poses, 1)]

    def _parse_output(self, output: np.ndarray) -> list[tuple[np.ndarray, np.ndarray, float]]:
        """Split raw output into ``(keypoints[17, (y, x, score)], box, score)`` per person."""
        if output.shape[-1] == 3:
            kps = output.reshape(-1, 17, 3)[0]
            box = np.array([kps[:, 0].min(), kps[:, 1].min(), kps[:, 0].max(), kps[:, 1].max()])
            return [(kps, box, float(kps[:, 2].mean()))]

        people = []
        for row in output.reshape(-1, output.shape[-1]):
            score = float(row[55])
            if score < self.min_pose_score:
                continue
            people.append((row[:51].reshape(17, 3), row[51:55], score))
        return people

    def close(self) -> None:
        self.interpreter = None

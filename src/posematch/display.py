from __future__ import annotations

import logging

import cv2

from posematch.pose import Pose
from posematch.scheduler import FrameResult, PresentationSink

logger = logging.getLogger(__name__)

SKELETON_EDGES = (
    ("left_shoulder", "right_shoulder"),
    ("left_hip", "right_hip"),
    ("left_shoulder", "left_elbow"),
    ("left_elbow", "left_wrist"),
    ("right_shoulder", "right_elbow"),
    ("right_elbow", "right_wrist"),
    ("left_shoulder", "left_hip"),
    ("right_shoulder", "right_hip"),
    ("left_hip", "left_knee"),
    ("left_knee", "left_ankle"),
    ("right_hip", "right_knee"),
    ("right_knee", "right_ankle"),
    ("nose", "left_eye"),
    ("nose", "right_eye"),
    ("left_eye", "left_ear"),
    ("right_eye", "right_ear"),
)


def format_distance(distance: float | None) -> str:
    return "Distance = n/a" if distance is None else f"Distance = {distance:.3f}"


class OpenCVDisplaySink(PresentationSink):
    def __init__(self, window_name: str = "posematch", min_score: float = 0.3) -> None:
        self.window_name = window_name
        self.min_score = min_score
        self.fps: float | None = None
        self.last_error: str | None = None
        self._stop = False

    def on_frame(self, result: FrameResult) -> None:
        if result.frame is None:
            # Still pump the window so the q key keeps working while the model loads.
            if cv2.waitKey(1) & 0xFF == ord("q"):
                self._stop = True
            return

        frame = result.frame.copy()
        if result.poses:
            for pose in result.poses:
                self._draw_pose(frame, pose)

        cv2.putText(frame, format_distance(result.distance), (16, 28), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (255, 255, 255), 2)
        if self.fps is not None:
            cv2.putText(frame, f"FPS: {self.fps:.1f}", (16, 58), cv2.FONT_HERSHEY_SIMPLEX, 0.65, (255, 255, 0), 2)
        if self.last_error:
            cv2.putText(frame, self.last_error[:80], (16, 88), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 0, 255), 1)
        cv2.putText(frame, "Press q to stop", (16, frame.shape[0] - 16), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (200, 200, 200), 2)

        cv2.imshow(self.window_name, frame)
        if cv2.waitKey(1) & 0xFF == ord("q"):
            self._stop = True

    def on_fps(self, fps: float) -> None:
        self.fps = fps

    def on_error(self, error: Exception) -> None:
        super().on_error(error)
        self.last_error = f"{type(error).__name__}: {error}"

    def should_stop(self) -> bool:
        return self._stop

    def close(self) -> None:
        cv2.destroyAllWindows()

    def _draw_pose(self, frame, pose: Pose) -> None:
        points = {}
        for kp in pose.keypoints:
            if kp.score < self.min_score:
                continue
            xy = (int(kp.x), int(kp.y))
            points[kp.name] = xy
            cv2.circle(frame, xy, 4, (0, 255, 255), -1)

        for a, b in SKELETON_EDGES:
            if a in points and b in points:
                cv2.line(frame, points[a], points[b], (0, 255, 0), 2)


class LoggingSink(PresentationSink):
    """Headless sink: logs the latest distance with every FPS sample."""

    def __init__(self) -> None:
        self.last_result: FrameResult | None = None
        self.frames = 0
        self.scored = 0

    def on_frame(self, result: FrameResult) -> None:
        self.last_result = result
        self.frames += 1
        if result.distance is not None:
            self.scored += 1

    def on_fps(self, fps: float) -> None:
        distance = self.last_result.distance if self.last_result is not None else None
        logger.info("%s  fps=%.1f  scored=%d/%d", format_distance(distance), fps, self.scored, self.frames)

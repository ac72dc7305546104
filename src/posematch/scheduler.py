from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

import numpy as np

from posematch.errors import (
    DegenerateVectorError,
    DimensionMismatchError,
    EmptyPoseError,
    EstimationFailedError,
    EstimatorNotReadyError,
    UndefinedInputError,
)
from posematch.estimators.base import EstimatorConfig
from posematch.lifecycle import EstimatorLifecycle
from posematch.pose import Pose, first_pose
from posematch.scoring import SimilarityScorer
from posematch.sources import CameraSettings, CameraSource, ImageSource

logger = logging.getLogger(__name__)

SCORING_ERRORS = (EmptyPoseError, DegenerateVectorError, DimensionMismatchError, UndefinedInputError)


@dataclass(frozen=True, eq=False)
class FrameResult:
    tick: int
    poses: list[Pose] | None
    distance: float | None
    reference_poses: list[Pose] | None = None
    frame: np.ndarray | None = None


@dataclass(frozen=True)
class ConfigChange:
    estimator: EstimatorConfig | None = None
    camera: CameraSettings | None = None


class ConfigSource:
    """
    Latest-wins holder for configuration change requests.

    Requests may arrive from any thread; the scheduler polls once per tick.
    A newer request of the same kind replaces an unconsumed older one.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._estimator: EstimatorConfig | None = None
        self._camera: CameraSettings | None = None

    def request_estimator(self, config: EstimatorConfig) -> None:
        with self._lock:
            self._estimator = config

    def request_camera(self, settings: CameraSettings) -> None:
        with self._lock:
            self._camera = settings

    def has_pending_estimator(self) -> bool:
        with self._lock:
            return self._estimator is not None

    def poll(self) -> ConfigChange | None:
        with self._lock:
            if self._estimator is None and self._camera is None:
                return None
            change = ConfigChange(estimator=self._estimator, camera=self._camera)
            self._estimator = None
            self._camera = None
        return change


class InferenceStats:
    """Averages camera inference time and reports it as FPS about once per window."""

    def __init__(self, report_seconds: float = 1.0, clock: Callable[[], float] = time.perf_counter) -> None:
        self.report_seconds = report_seconds
        self._clock = clock
        self._start: float | None = None
        self._sum = 0.0
        self._count = 0
        self._last_report = clock()

    def begin(self) -> None:
        self._start = self._clock()

    def end(self) -> float | None:
        """Close the current measurement; returns an FPS sample when a window elapsed."""
        if self._start is None:
            return None
        now = self._clock()
        self._sum += now - self._start
        self._count += 1
        self._start = None

        if now - self._last_report < self.report_seconds:
            return None
        avg = self._sum / self._count
        self._sum = 0.0
        self._count = 0
        self._last_report = now
        if avg <= 0.0:
            return None
        return 1.0 / avg


class PresentationSink:
    def on_frame(self, result: FrameResult) -> None:
        return None

    def on_fps(self, fps: float) -> None:
        return None

    def on_error(self, error: Exception) -> None:
        logger.warning("%s: %s", type(error).__name__, error)

    def should_stop(self) -> bool:
        return False

    def close(self) -> None:
        return None


@dataclass
class MatchSession:
    """
    Everything one comparison run owns: the model lifecycle, both frame
    sources, the presentation sink and the per-run caches.
    """

    lifecycle: EstimatorLifecycle
    image_source: ImageSource
    camera_source: CameraSource
    sink: PresentationSink = field(default_factory=PresentationSink)
    config_source: ConfigSource = field(default_factory=ConfigSource)
    scorer: SimilarityScorer = field(default_factory=SimilarityScorer)
    stats: InferenceStats = field(default_factory=InferenceStats)
    max_poses: int = 1
    flip_horizontal: bool = False
    image_poses: list[Pose] | None = None
    image_revision: int = 0
    image_generation: int = -1

    def close(self) -> None:
        self.lifecycle.close()
        self.camera_source.close()
        self.sink.close()
        self.image_poses = None


class FrameScheduler:
    def __init__(self, session: MatchSession, idle_seconds: float = 0.0) -> None:
        self.session = session
        self.idle_seconds = idle_seconds
        self.tick_count = 0

    def tick(self) -> FrameResult:
        s = self.session
        self.tick_count += 1

        self._apply_config_changes()
        reference = self._reference_poses()
        poses, frame = self._camera_poses()

        distance = None
        ref_pose = first_pose(reference)
        cam_pose = first_pose(poses)
        if ref_pose is not None and cam_pose is not None:
            try:
                distance = s.scorer.score_poses(ref_pose, cam_pose)
            except SCORING_ERRORS as e:
                logger.debug("Frame %d not scored: %s", self.tick_count, e)

        result = FrameResult(
            tick=self.tick_count,
            poses=poses,
            distance=distance,
            reference_poses=reference,
            frame=frame,
        )
        s.sink.on_frame(result)
        return result

    def run(
        self,
        stop_event: threading.Event | None = None,
        max_ticks: int | None = None,
        duration_seconds: float | None = None,
    ) -> int:
        """Tick until stopped. Each tick starts only after the previous one returned."""
        start = time.monotonic()
        ticks = 0
        while True:
            if stop_event is not None and stop_event.is_set():
                break
            self.tick()
            ticks += 1
            if self.session.sink.should_stop():
                break
            if max_ticks is not None and ticks >= max_ticks:
                break
            if duration_seconds is not None and time.monotonic() - start >= duration_seconds:
                break
            time.sleep(self.idle_seconds)
        return ticks

    def _apply_config_changes(self) -> None:
        s = self.session
        change = s.config_source.poll()
        if change is None:
            return

        if change.camera is not None:
            try:
                s.camera_source.reopen(change.camera)
            except RuntimeError as e:
                logger.error("Camera reconfiguration failed: %s", e)
                s.sink.on_error(e)

        if change.estimator is not None:
            error = s.lifecycle.request_reconfigure(change.estimator)
            if error is not None:
                s.sink.on_error(error)

    def _reference_poses(self) -> list[Pose] | None:
        s = self.session
        lifecycle = s.lifecycle
        revision = s.image_source.revision
        stale = revision != s.image_revision or lifecycle.generation != s.image_generation
        if stale:
            # Cached poses belong to an old image or a replaced model.
            s.image_poses = None
        if not stale or not lifecycle.is_ready():
            return s.image_poses

        image = s.image_source.read()
        generation = lifecycle.generation
        s.image_revision = revision
        s.image_generation = generation
        if image is None:
            s.image_poses = None
            return None

        try:
            s.image_poses = lifecycle.estimate(image, max_poses=s.max_poses, flip_horizontal=False)
        except (EstimationFailedError, EstimatorNotReadyError) as e:
            s.image_poses = None
            s.sink.on_error(e)
        return s.image_poses

    def _camera_poses(self) -> tuple[list[Pose] | None, np.ndarray | None]:
        s = self.session
        lifecycle = s.lifecycle
        if not lifecycle.is_ready() or not s.camera_source.ready():
            return None, None

        frame = s.camera_source.read()
        if frame is None:
            return None, None

        generation = lifecycle.generation
        poses = None
        s.stats.begin()
        try:
            poses = lifecycle.estimate(frame, max_poses=s.max_poses, flip_horizontal=s.flip_horizontal)
        except (EstimationFailedError, EstimatorNotReadyError) as e:
            s.sink.on_error(e)
        finally:
            fps = s.stats.end()
            if fps is not None:
                s.sink.on_fps(fps)

        if poses is not None and (lifecycle.generation != generation or s.config_source.has_pending_estimator()):
            logger.debug("Discarding camera poses from a superseded model")
            poses = None
        return poses, frame

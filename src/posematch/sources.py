from __future__ import annotations

import logging
import platform
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CameraSettings:
    camera_id: int = 0
    width: int | None = 640
    height: int | None = 480
    fps: float | None = None


class ImageSource:
    """Read-only still image. ``revision`` changes whenever the image does."""

    revision = 0

    def read(self) -> np.ndarray | None:  # pragma: no cover - interface
        raise NotImplementedError


class CameraSource:
    def ready(self) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    def read(self) -> np.ndarray | None:  # pragma: no cover - interface
        raise NotImplementedError

    def reopen(self, settings: CameraSettings) -> None:
        return None

    def close(self) -> None:
        return None


class ImageFileSource(ImageSource):
    def __init__(self, path: Path | str | None = None) -> None:
        self.revision = 0
        self.path: Path | None = None
        self._image: np.ndarray | None = None
        if path is not None:
            self.load(path)

    def load(self, path: Path | str) -> None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Reference image not found: {path}")
        image = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if image is None:
            raise RuntimeError(f"Could not decode image: {path}")
        self.path = path
        self.set_image(image)

    def set_image(self, image: np.ndarray) -> None:
        self._image = image
        self.revision += 1
        logger.info("Reference image updated (revision %d)", self.revision)

    def read(self) -> np.ndarray | None:
        return self._image


class WebcamSource(CameraSource):
    def __init__(self, settings: CameraSettings | None = None) -> None:
        self.settings = settings or CameraSettings()
        self._cap = None

    def open(self) -> None:
        cam_id = self.settings.camera_id
        if platform.system() == "Darwin":
            cap = cv2.VideoCapture(cam_id, cv2.CAP_AVFOUNDATION)
        else:
            cap = cv2.VideoCapture(cam_id)
        if not cap.isOpened():
            raise RuntimeError(f"Could not open webcam camera_id={cam_id}")

        if self.settings.width:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, int(self.settings.width))
        if self.settings.height:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, int(self.settings.height))
        if self.settings.fps:
            cap.set(cv2.CAP_PROP_FPS, float(self.settings.fps))
        self._cap = cap
        logger.info(
            "Camera %d opened at %dx%d",
            cam_id,
            int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

    def ready(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def read(self) -> np.ndarray | None:
        if not self.ready():
            return None
        ok, frame = self._cap.read()
        return frame if ok else None

    def reopen(self, settings: CameraSettings) -> None:
        self.close()
        self.settings = settings
        self.open()

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None

from __future__ import annotations


class PoseMatchError(Exception):
    """Base class for every error raised by posematch."""


class ConfigurationError(PoseMatchError):
    """The pose model could not be constructed for the requested configuration."""


class EstimationFailedError(PoseMatchError):
    """The active pose model raised during an estimation call."""


class EstimatorNotReadyError(PoseMatchError):
    """An estimation was requested while no model is ready."""


class EmptyPoseError(PoseMatchError):
    pass


class DegenerateVectorError(PoseMatchError):
    pass


class DimensionMismatchError(PoseMatchError):
    def __init__(self, left: int, right: int) -> None:
        super().__init__(f"Cannot compare pose vectors of {left} and {right} keypoints")
        self.left = left
        self.right = right


class UndefinedInputError(PoseMatchError):
    """One side of a comparison is missing; the poses are not comparable yet."""

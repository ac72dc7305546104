from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, Mapping

import numpy as np

from posematch.errors import ConfigurationError, EstimationFailedError, EstimatorNotReadyError
from posematch.estimators.base import BasePoseEstimator, EstimatorConfig
from posematch.estimators.factory import apply_runtime_flags, build_estimator
from posematch.pose import Pose

logger = logging.getLogger(__name__)

EstimatorFactory = Callable[[EstimatorConfig], BasePoseEstimator]
FlagApplier = Callable[[Mapping[str, Any], str], None]


class LifecycleState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONFIGURING = "configuring"
    READY = "ready"
    FAILED = "failed"


class EstimatorLifecycle:
    """
    Owns the active pose model and rebuilds it when the configuration changes.

    States: UNINITIALIZED -> CONFIGURING -> READY, with READY -> CONFIGURING on
    reconfigure and READY|CONFIGURING -> FAILED on a construction or
    estimation error. FAILED is left by the next reconfigure.

    A model replaced while one of its estimate calls is running is closed only
    after that call returns. ``generation`` increases every time the active
    model is replaced or dropped, so callers can tell a result came from a
    superseded model.
    """

    def __init__(
        self,
        factory: EstimatorFactory = build_estimator,
        apply_flags: FlagApplier = apply_runtime_flags,
    ) -> None:
        self._factory = factory
        self._apply_flags = apply_flags
        self._lock = threading.Lock()
        self._estimator: BasePoseEstimator | None = None
        self._config: EstimatorConfig | None = None
        self._applied_runtime: tuple[str, dict] | None = None
        self._state = LifecycleState.UNINITIALIZED
        self._generation = 0
        self._active_calls: dict[int, int] = {}
        self._retired: dict[int, BasePoseEstimator] = {}
        self.last_error: Exception | None = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def config(self) -> EstimatorConfig | None:
        return self._config

    def is_ready(self) -> bool:
        return self._state is LifecycleState.READY

    def request_reconfigure(self, config: EstimatorConfig) -> ConfigurationError | None:
        """
        Replace the active model with one built from ``config``.

        Returns the ConfigurationError when construction fails instead of
        raising it; the lifecycle is then FAILED until the next request.
        """
        with self._lock:
            if config == self._config and self._state in (LifecycleState.READY, LifecycleState.CONFIGURING):
                return None
            previous = self._estimator
            self._estimator = None
            self._config = config
            self._state = LifecycleState.CONFIGURING
            self._generation += 1

        if previous is not None:
            self._release(previous)

        logger.info("Configuring %s estimator (backend=%s)", config.model.value, config.backend)
        try:
            runtime = (config.backend, dict(config.runtime_flags))
            if runtime != self._applied_runtime:
                self._apply_flags(config.runtime_flags, config.backend)
                self._applied_runtime = runtime
            estimator = self._factory(config)
        except Exception as e:
            if isinstance(e, ConfigurationError):
                error = e
            else:
                error = ConfigurationError(f"Could not build {config.model.value} estimator: {e}")
                error.__cause__ = e
            with self._lock:
                if self._config is config:
                    self._state = LifecycleState.FAILED
                    self.last_error = error
            logger.error("Estimator configuration failed: %s", error)
            return error

        with self._lock:
            superseded = self._config is not config
            if not superseded:
                self._estimator = estimator
                self._state = LifecycleState.READY
                self.last_error = None
        if superseded:
            self._close(estimator)
            return None

        logger.info("Estimator ready: %s", getattr(estimator, "name", type(estimator).__name__))
        return None

    def estimate(
        self,
        source: np.ndarray,
        max_poses: int = 1,
        flip_horizontal: bool = False,
    ) -> list[Pose]:
        with self._lock:
            estimator = self._estimator
            if self._state is not LifecycleState.READY or estimator is None:
                raise EstimatorNotReadyError(f"Estimator is {self._state.value}")
            key = id(estimator)
            self._active_calls[key] = self._active_calls.get(key, 0) + 1

        try:
            return list(estimator.estimate(source, max_poses=max_poses, flip_horizontal=flip_horizontal))
        except Exception as e:
            error = EstimationFailedError(f"{getattr(estimator, 'name', 'estimator')} failed: {e}")
            with self._lock:
                drop = self._estimator is estimator
                if drop:
                    self._estimator = None
                    self._state = LifecycleState.FAILED
                    self._generation += 1
                    self.last_error = error
            if drop:
                logger.error("Estimation failed, disposing model: %s", e)
                self._retire(estimator)
            raise error from e
        finally:
            self._end_call(estimator)

    def close(self) -> None:
        with self._lock:
            estimator = self._estimator
            self._estimator = None
            self._config = None
            self._state = LifecycleState.UNINITIALIZED
            self._generation += 1
        if estimator is not None:
            self._release(estimator)

    def _release(self, estimator: BasePoseEstimator) -> None:
        with self._lock:
            busy = self._active_calls.get(id(estimator), 0) > 0
            if busy:
                self._retired[id(estimator)] = estimator
        if not busy:
            self._close(estimator)

    def _retire(self, estimator: BasePoseEstimator) -> None:
        # Called from inside an estimate call; _end_call does the close.
        with self._lock:
            self._retired[id(estimator)] = estimator

    def _end_call(self, estimator: BasePoseEstimator) -> None:
        key = id(estimator)
        with self._lock:
            remaining = self._active_calls.get(key, 0) - 1
            if remaining > 0:
                self._active_calls[key] = remaining
                return
            self._active_calls.pop(key, None)
            retired = self._retired.pop(key, None)
        if retired is not None:
            self._close(retired)

    @staticmethod
    def _close(estimator: BasePoseEstimator) -> None:
        try:
            estimator.close()
        except Exception:
            logger.warning("Error while disposing %s", type(estimator).__name__, exc_info=True)

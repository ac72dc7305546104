import threading
import unittest

from posematch.errors import ConfigurationError, EstimationFailedError, EstimatorNotReadyError
from posematch.estimators.base import EstimatorConfig, PoseModel
from posematch.lifecycle import EstimatorLifecycle, LifecycleState

from fakes import CAMERA_FRAME, FakeFactory, no_flags


def blazepose(**options) -> EstimatorConfig:
    return EstimatorConfig(model=PoseModel.BLAZEPOSE, backend="solutions-cpu", model_options=options)


class LifecycleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.factory = FakeFactory()
        self.applied = []
        self.lifecycle = EstimatorLifecycle(
            factory=self.factory,
            apply_flags=lambda flags, backend: self.applied.append((dict(flags), backend)),
        )

    def test_starts_uninitialized(self) -> None:
        self.assertIs(self.lifecycle.state, LifecycleState.UNINITIALIZED)
        self.assertFalse(self.lifecycle.is_ready())
        with self.assertRaises(EstimatorNotReadyError):
            self.lifecycle.estimate(CAMERA_FRAME)

    def test_identical_config_builds_once(self) -> None:
        self.assertIsNone(self.lifecycle.request_reconfigure(blazepose(type="full")))
        self.assertIsNone(self.lifecycle.request_reconfigure(blazepose(type="full")))
        self.assertEqual(len(self.factory.built), 1)
        self.assertIs(self.lifecycle.state, LifecycleState.READY)
        self.assertEqual(self.lifecycle.generation, 1)

    def test_new_config_disposes_previous_once(self) -> None:
        self.lifecycle.request_reconfigure(blazepose(type="full"))
        first = self.factory.built[0]
        self.lifecycle.request_reconfigure(blazepose(type="lite"))
        self.assertEqual(first.close_count, 1)
        self.assertEqual(len(self.factory.built), 2)
        self.assertEqual(self.factory.built[1].close_count, 0)
        self.assertTrue(self.lifecycle.is_ready())

    def test_runtime_flags_applied_only_on_change(self) -> None:
        self.lifecycle.request_reconfigure(blazepose(type="full"))
        self.lifecycle.request_reconfigure(blazepose(type="lite"))
        self.assertEqual(len(self.applied), 1)
        self.lifecycle.request_reconfigure(
            EstimatorConfig(model=PoseModel.BLAZEPOSE, backend="tasks-gpu", runtime_flags={"OMP_NUM_THREADS": 2})
        )
        self.assertEqual(self.applied[-1], ({"OMP_NUM_THREADS": 2}, "tasks-gpu"))

    def test_construction_error_is_returned(self) -> None:
        self.factory.fail_with = RuntimeError("weights not found")
        error = self.lifecycle.request_reconfigure(blazepose())
        self.assertIsInstance(error, ConfigurationError)
        self.assertIsInstance(error.__cause__, RuntimeError)
        self.assertIs(self.lifecycle.state, LifecycleState.FAILED)
        self.assertIs(self.lifecycle.last_error, error)
        with self.assertRaises(EstimatorNotReadyError):
            self.lifecycle.estimate(CAMERA_FRAME)

    def test_failed_recovers_on_next_reconfigure(self) -> None:
        self.factory.fail_with = RuntimeError("unreachable model url")
        self.lifecycle.request_reconfigure(blazepose())
        self.factory.fail_with = None
        self.assertIsNone(self.lifecycle.request_reconfigure(blazepose()))
        self.assertTrue(self.lifecycle.is_ready())
        self.assertIsNone(self.lifecycle.last_error)

    def test_estimation_error_disposes_and_fails(self) -> None:
        self.lifecycle.request_reconfigure(blazepose())
        estimator = self.factory.built[0]
        estimator.fail_next = True
        generation = self.lifecycle.generation

        with self.assertRaises(EstimationFailedError) as ctx:
            self.lifecycle.estimate(CAMERA_FRAME)
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        self.assertIs(self.lifecycle.state, LifecycleState.FAILED)
        self.assertEqual(estimator.close_count, 1)
        self.assertGreater(self.lifecycle.generation, generation)

        with self.assertRaises(EstimatorNotReadyError):
            self.lifecycle.estimate(CAMERA_FRAME)
        self.assertEqual(estimator.calls, ["camera"])

        # Same config is rebuilt after a failure.
        self.assertIsNone(self.lifecycle.request_reconfigure(blazepose()))
        self.assertEqual(len(self.factory.built), 2)
        self.assertEqual(len(self.lifecycle.estimate(CAMERA_FRAME)), 1)

    def test_disposal_waits_for_in_flight_call(self) -> None:
        self.lifecycle.request_reconfigure(blazepose(type="full"))
        old = self.factory.built[0]
        old.gate = threading.Event()
        results = []

        worker = threading.Thread(target=lambda: results.append(self.lifecycle.estimate(CAMERA_FRAME)))
        worker.start()
        self.assertTrue(old.entered.wait(timeout=5.0))

        self.lifecycle.request_reconfigure(blazepose(type="lite"))
        self.assertTrue(self.lifecycle.is_ready())
        self.assertEqual(old.close_count, 0)

        old.gate.set()
        worker.join(timeout=5.0)
        self.assertFalse(worker.is_alive())
        self.assertEqual(len(results), 1)
        self.assertEqual(old.close_count, 1)
        self.assertEqual(self.factory.built[1].close_count, 0)

    def test_close(self) -> None:
        self.lifecycle.request_reconfigure(blazepose())
        self.lifecycle.close()
        self.assertIs(self.lifecycle.state, LifecycleState.UNINITIALIZED)
        self.assertEqual(self.factory.built[0].close_count, 1)
        self.lifecycle.close()
        self.assertEqual(self.factory.built[0].close_count, 1)

    def test_default_factory_errors_are_returned(self) -> None:
        lifecycle = EstimatorLifecycle(apply_flags=no_flags)
        config = EstimatorConfig(model="movenet", backend="tflite-cpu", model_options={"type": "posenet"})
        error = lifecycle.request_reconfigure(config)
        self.assertIsInstance(error, ConfigurationError)
        self.assertIs(lifecycle.state, LifecycleState.FAILED)


if __name__ == "__main__":
    unittest.main()

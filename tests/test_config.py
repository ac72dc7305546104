import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from posematch.config import load_estimator_config, load_model_config, load_session_config
from posematch.estimators.base import (
    BlazePoseConfig,
    EstimatorConfig,
    MoveNetConfig,
    PoseModel,
    YoloPoseConfig,
)
from posematch.estimators.factory import apply_runtime_flags, build_estimator

CONFIG_YAML = """
session:
  metric: weighted
  max_poses: 2
  fps_report_seconds: 0.5
  runtime_flags:
    OMP_NUM_THREADS: 3
models:
  blazepose:
    backend: tasks-gpu
    type: heavy
  yolo-pose:
    model_path: yolo11s-pose.pt
    imgsz: 320
"""


class ConfigLoadingTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "models.yaml"
        self.path.write_text(CONFIG_YAML, encoding="utf-8")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_missing_file_gives_defaults(self) -> None:
        missing = Path(self._tmp.name) / "nope.yaml"
        self.assertEqual(load_model_config(missing, "blazepose"), {})
        self.assertEqual(load_session_config(missing).metric, "cosine")
        cfg = load_estimator_config(missing, "yolo-pose")
        self.assertEqual(cfg.backend, "cpu")
        self.assertEqual(cfg.model, PoseModel.YOLO_POSE)

    def test_session_section(self) -> None:
        session = load_session_config(self.path)
        self.assertEqual(session.metric, "weighted")
        self.assertEqual(session.max_poses, 2)
        self.assertEqual(session.fps_report_seconds, 0.5)
        self.assertEqual(session.runtime_flags, {"OMP_NUM_THREADS": 3})

    def test_estimator_config_from_yaml(self) -> None:
        cfg = load_estimator_config(self.path, "blazepose")
        self.assertEqual(cfg.backend, "tasks-gpu")
        self.assertEqual(cfg.runtime_flags, {"OMP_NUM_THREADS": 3})
        variant = cfg.model_config()
        self.assertIsInstance(variant, BlazePoseConfig)
        self.assertEqual(variant.runtime, "tasks")
        self.assertEqual(variant.delegate, "gpu")
        self.assertEqual(variant.model_type, "heavy")
        self.assertEqual(variant.num_poses, 2)

    def test_backend_override(self) -> None:
        cfg = load_estimator_config(self.path, "blazepose", backend="solutions-cpu")
        self.assertEqual(cfg.model_config().runtime, "solutions")

    def test_unknown_model(self) -> None:
        with self.assertRaises(ValueError):
            load_estimator_config(self.path, "openpose")


class EstimatorConfigTests(unittest.TestCase):
    def test_value_equality(self) -> None:
        a = EstimatorConfig(model="yolo-pose", backend="cpu", model_options={"imgsz": 320})
        b = EstimatorConfig(model=PoseModel.YOLO_POSE, backend="cpu", model_options={"imgsz": 320})
        self.assertEqual(a, b)
        self.assertNotEqual(a, EstimatorConfig(model="yolo-pose", backend="cuda:0", model_options={"imgsz": 320}))

    def test_options_are_copied(self) -> None:
        options = {"type": "full"}
        cfg = EstimatorConfig(model_options=options)
        options["type"] = "lite"
        self.assertEqual(cfg.model_options["type"], "full")

    def test_yolo_variant_prefers_custom_model(self) -> None:
        cfg = EstimatorConfig(
            model="yolo-pose",
            backend="cuda:0",
            model_options={"model_path": "yolo11n-pose.pt", "custom_model": "weights/mine.pt"},
        )
        variant = cfg.model_config()
        self.assertIsInstance(variant, YoloPoseConfig)
        self.assertEqual(variant.model_path, "weights/mine.pt")
        self.assertEqual(variant.device, "cuda:0")

    def test_movenet_variant(self) -> None:
        cfg = EstimatorConfig(
            model="movenet",
            backend="tflite-cpu",
            model_options={"type": "multipose", "custom_model": "weights/movenet.tflite", "enable_tracking": True},
        )
        variant = cfg.model_config()
        self.assertIsInstance(variant, MoveNetConfig)
        self.assertEqual(variant.model_type, "multipose")
        self.assertEqual(variant.model_url, "weights/movenet.tflite")
        self.assertTrue(variant.enable_tracking)
        self.assertIsNone(variant.num_threads)

    def test_unknown_movenet_type_rejected(self) -> None:
        cfg = EstimatorConfig(model="movenet", backend="tflite-cpu", model_options={"type": "posenet"})
        with self.assertRaises(ValueError):
            build_estimator(cfg)


class RuntimeFlagsTests(unittest.TestCase):
    def test_flags_exported_to_environment(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=False):
            apply_runtime_flags({"POSEMATCH_TEST_FLAG": True, "OMP_NUM_THREADS": 2}, "solutions-cpu")
            self.assertEqual(os.environ["POSEMATCH_TEST_FLAG"], "1")
            self.assertEqual(os.environ["OMP_NUM_THREADS"], "2")
            self.assertIn("MEDIAPIPE_DISABLE_GPU", os.environ)

    def test_gpu_backend_clears_cpu_only_flag(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=False):
            os.environ.pop("MEDIAPIPE_DISABLE_GPU", None)
            apply_runtime_flags({}, "solutions-cpu")
            self.assertEqual(os.environ["MEDIAPIPE_DISABLE_GPU"], "1")
            apply_runtime_flags({}, "tasks-gpu")
            self.assertNotIn("MEDIAPIPE_DISABLE_GPU", os.environ)

    def test_explicit_flag_survives_gpu_backend(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=False):
            apply_runtime_flags({"MEDIAPIPE_DISABLE_GPU": 1}, "tasks-gpu")
            self.assertEqual(os.environ["MEDIAPIPE_DISABLE_GPU"], "1")


if __name__ == "__main__":
    unittest.main()

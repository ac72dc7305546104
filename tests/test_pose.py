import unittest

import numpy as np

from posematch.display import LoggingSink, format_distance
from posematch.estimators.base import mirror_x
from posematch.estimators.yolo_pose import YoloPoseEstimator
from posematch.pose import COCO17_NAMES, Pose, first_pose
from posematch.scheduler import FrameResult


class PoseTests(unittest.TestCase):
    def test_from_points_keeps_order_and_names(self) -> None:
        pose = Pose.from_points([(1, 2, 0.5), (3, 4, 0.25)], names=COCO17_NAMES)
        self.assertEqual(len(pose), 2)
        self.assertEqual([kp.name for kp in pose.keypoints], ["nose", "left_eye"])
        self.assertEqual(pose.keypoints[1].x, 3.0)
        self.assertIsNone(pose.track_id)

    def test_unnamed_points(self) -> None:
        pose = Pose.from_points([(0, 0, 1.0)])
        self.assertEqual(pose.keypoints[0].name, "kp0")

    def test_first_pose(self) -> None:
        a, b = Pose(), Pose(score=0.1)
        self.assertIs(first_pose([a, b]), a)
        self.assertIsNone(first_pose([]))
        self.assertIsNone(first_pose(None))

    def test_mirror_x(self) -> None:
        self.assertEqual(mirror_x(10.0, 640, True), 630.0)
        self.assertEqual(mirror_x(10.0, 640, False), 10.0)


class YoloOrderingTests(unittest.TestCase):
    def test_orders_by_box_confidence(self) -> None:
        kxy = np.zeros((3, 17, 2))
        order = YoloPoseEstimator._person_order(kxy, None, np.array([0.2, 0.9, 0.5]))
        self.assertEqual(order, [1, 2, 0])

    def test_falls_back_to_keypoint_confidence(self) -> None:
        kxy = np.zeros((2, 17, 2))
        kcf = np.stack([np.full(17, 0.3), np.full(17, 0.8)])
        self.assertEqual(YoloPoseEstimator._person_order(kxy, kcf, None), [1, 0])


class PresentationTests(unittest.TestCase):
    def test_format_distance(self) -> None:
        self.assertEqual(format_distance(None), "Distance = n/a")
        self.assertEqual(format_distance(0.12345), "Distance = 0.123")

    def test_logging_sink_counts_scored_frames(self) -> None:
        sink = LoggingSink()
        sink.on_frame(FrameResult(tick=1, poses=None, distance=None))
        sink.on_frame(FrameResult(tick=2, poses=[], distance=0.5))
        with self.assertLogs("posematch.display", level="INFO") as logs:
            sink.on_fps(30.0)
        self.assertEqual((sink.frames, sink.scored), (2, 1))
        self.assertIn("Distance = 0.500", logs.output[0])


if __name__ == "__main__":
    unittest.main()

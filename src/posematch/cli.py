from __future__ import annotations

import argparse
import logging
from pathlib import Path


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="posematch CLI")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    sub = parser.add_subparsers(dest="command", required=True)

    cmp_ = sub.add_parser("compare", help="Score the live webcam pose against a reference image")
    cmp_.add_argument("--image", required=True, help="Reference image path")
    cmp_.add_argument("--model", default="blazepose", help="Model name (blazepose, yolo-pose, movenet)")
    cmp_.add_argument("--backend", default=None, help="Backend override (e.g. tasks-gpu, cuda:0)")
    cmp_.add_argument("--metric", default=None, help="Distance metric: cosine or weighted")
    cmp_.add_argument("--camera-id", type=int, default=0, help="Webcam device id")
    cmp_.add_argument("--width", type=int, default=640, help="Requested camera width")
    cmp_.add_argument("--height", type=int, default=480, help="Requested camera height")
    cmp_.add_argument("--fps", type=float, default=None, help="Requested camera frame rate")
    cmp_.add_argument("--max-ticks", type=int, default=None, help="Stop after N frames")
    cmp_.add_argument("--duration-seconds", type=float, default=None, help="Stop automatically after N seconds")
    cmp_.add_argument("--no-display", action="store_true", help="Run headless and log scores instead")
    cmp_.add_argument("--config", default="configs/models.yaml", help="Model config YAML")

    score = sub.add_parser("score-images", help="Score the pose in one image against another")
    score.add_argument("reference", help="Reference image path")
    score.add_argument("candidate", help="Candidate image path")
    score.add_argument("--model", default="blazepose", help="Model name (blazepose, yolo-pose, movenet)")
    score.add_argument("--backend", default=None, help="Backend override")
    score.add_argument("--metric", default=None, help="Distance metric: cosine or weighted")
    score.add_argument("--config", default="configs/models.yaml", help="Model config YAML")

    return parser.parse_args(argv)


def compare(args: argparse.Namespace) -> int:
    from posematch.config import load_estimator_config, load_session_config
    from posematch.display import LoggingSink, OpenCVDisplaySink
    from posematch.lifecycle import EstimatorLifecycle
    from posematch.scheduler import FrameScheduler, InferenceStats, MatchSession
    from posematch.scoring import SimilarityScorer
    from posematch.sources import CameraSettings, ImageFileSource, WebcamSource

    config_path = Path(args.config)
    session_cfg = load_session_config(config_path)
    estimator_cfg = load_estimator_config(config_path, args.model, backend=args.backend)

    try:
        image = ImageFileSource(args.image)
    except (FileNotFoundError, RuntimeError) as e:
        print(f"Reference image error: {e}")
        return 2

    camera = WebcamSource(
        CameraSettings(camera_id=args.camera_id, width=args.width, height=args.height, fps=args.fps)
    )
    try:
        camera.open()
    except RuntimeError as e:
        print(f"Camera error: {e}")
        return 2

    sink = LoggingSink() if args.no_display else OpenCVDisplaySink()
    session = MatchSession(
        lifecycle=EstimatorLifecycle(),
        image_source=image,
        camera_source=camera,
        sink=sink,
        scorer=SimilarityScorer(args.metric or session_cfg.metric),
        stats=InferenceStats(report_seconds=session_cfg.fps_report_seconds),
        max_poses=session_cfg.max_poses,
        flip_horizontal=session_cfg.flip_horizontal,
    )
    session.config_source.request_estimator(estimator_cfg)
    scheduler = FrameScheduler(session)

    print(f"Comparing camera_id={args.camera_id} against {args.image} ({estimator_cfg.model.value}, {session.scorer.metric_name})")
    try:
        ticks = scheduler.run(max_ticks=args.max_ticks, duration_seconds=args.duration_seconds)
    except KeyboardInterrupt:
        ticks = scheduler.tick_count
    finally:
        session.close()

    print(f"Session complete: {ticks} frames")
    return 0


def score_images(args: argparse.Namespace) -> int:
    from posematch.config import load_estimator_config, load_session_config
    from posematch.display import format_distance
    from posematch.errors import PoseMatchError
    from posematch.lifecycle import EstimatorLifecycle
    from posematch.pose import first_pose
    from posematch.scoring import SimilarityScorer
    from posematch.sources import ImageFileSource

    config_path = Path(args.config)
    session_cfg = load_session_config(config_path)
    estimator_cfg = load_estimator_config(config_path, args.model, backend=args.backend)
    scorer = SimilarityScorer(args.metric or session_cfg.metric)

    lifecycle = EstimatorLifecycle()
    error = lifecycle.request_reconfigure(estimator_cfg)
    if error is not None:
        print(f"Model error: {error}")
        return 2

    try:
        poses = []
        for path in (args.reference, args.candidate):
            image = ImageFileSource(path).read()
            pose = first_pose(lifecycle.estimate(image, max_poses=1))
            if pose is None:
                print(f"No pose detected in {path}")
                return 1
            poses.append(pose)
        distance = scorer.score_poses(poses[0], poses[1])
    except FileNotFoundError as e:
        print(e)
        return 2
    except (PoseMatchError, RuntimeError) as e:
        print(f"Could not score images: {e}")
        return 1
    finally:
        lifecycle.close()

    print(f"{format_distance(distance)} ({scorer.metric_name})")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command == "compare":
        return compare(args)
    if args.command == "score-images":
        return score_images(args)
    raise ValueError(f"Unknown command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())

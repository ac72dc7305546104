#!/usr/bin/env python3
from __future__ import annotations

import argparse
from pathlib import Path
import urllib.request


MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/pose_landmarker/"
    "pose_landmarker_{variant}/float16/latest/pose_landmarker_{variant}.task"
)
OUT_DIR = Path("models/mediapipe")


def main() -> int:
    parser = argparse.ArgumentParser(description="Download a MediaPipe pose landmarker model")
    parser.add_argument("variant", nargs="?", default="full", choices=["lite", "full", "heavy"])
    args = parser.parse_args()

    out_path = OUT_DIR / f"pose_landmarker_{args.variant}.task"
    out_path.parent.mkdir(parents=True, exist_ok=True)
    print(f"Downloading pose model to {out_path} ...")
    urllib.request.urlretrieve(MODEL_URL.format(variant=args.variant), out_path)
    print("Done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

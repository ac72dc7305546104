from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from posematch.estimators.base import EstimatorConfig, PoseModel

DEFAULT_BACKENDS = {
    PoseModel.BLAZEPOSE: "solutions-cpu",
    PoseModel.YOLO_POSE: "cpu",
    PoseModel.MOVENET: "tflite-cpu",
}


@dataclass(frozen=True)
class SessionConfig:
    metric: str = "cosine"
    max_poses: int = 1
    flip_horizontal: bool = False
    fps_report_seconds: float = 1.0
    backend: str | None = None
    runtime_flags: dict[str, Any] = field(default_factory=dict)


def _load_doc(config_path: Path) -> dict:
    if not config_path.exists():
        return {}

    with config_path.open("r", encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}
    if not isinstance(doc, dict):
        raise ValueError(f"Config root must be a mapping: {config_path}")
    return doc


def load_model_config(config_path: Path, model_name: str) -> dict:
    models = _load_doc(config_path).get("models", {}) or {}
    return dict(models.get(model_name, {}) or {})


def load_session_config(config_path: Path) -> SessionConfig:
    raw = _load_doc(config_path).get("session", {}) or {}
    return SessionConfig(
        metric=str(raw.get("metric", "cosine")),
        max_poses=int(raw.get("max_poses", 1)),
        flip_horizontal=bool(raw.get("flip_horizontal", False)),
        fps_report_seconds=float(raw.get("fps_report_seconds", 1.0)),
        backend=raw.get("backend"),
        runtime_flags=dict(raw.get("runtime_flags", {}) or {}),
    )


def load_estimator_config(
    config_path: Path,
    model_name: str,
    backend: str | None = None,
) -> EstimatorConfig:
    """Build an EstimatorConfig; an explicit ``backend`` wins over the YAML one."""
    model = PoseModel.parse(model_name)
    session = load_session_config(config_path)
    options = load_model_config(config_path, model.value)
    yaml_backend = options.pop("backend", None)
    chosen = backend or yaml_backend or session.backend or DEFAULT_BACKENDS[model]
    options.setdefault("max_poses", session.max_poses)
    return EstimatorConfig(
        model=model,
        backend=str(chosen),
        runtime_flags=session.runtime_flags,
        model_options=options,
    )

from __future__ import annotations

import json
import logging
import math
import numbers
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional


MIN_CONFIDENCE = 0.01
MAX_CONFIDENCE = 0.9
CONFIDENCE_STEP = 0.01


def clamp_confidence(value: float) -> float:
    """
    Slider semantics: clamp to [0.01, 0.9] and snap to the 0.01 step.
    """

    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ValueError("confidence threshold must be a number")
    v = float(value)
    if math.isnan(v):
        raise ValueError("confidence threshold must not be NaN")
    v = min(max(v, MIN_CONFIDENCE), MAX_CONFIDENCE)
    return round(round(v / CONFIDENCE_STEP) * CONFIDENCE_STEP, 2)


@dataclass(frozen=True)
class DetectConfig:
    model_name: str = "yolo11n"
    models_root: Optional[str] = None
    confidence_threshold: float = 0.45
    iou_threshold: float = 0.45
    max_detections: int = 100
    pad_value: int = 114
    refresh_hz: float = 60.0
    table_rows: int = 5
    show_score: bool = True
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.model_name:
            raise ValueError("model_name must not be empty")
        if not MIN_CONFIDENCE <= self.confidence_threshold <= MAX_CONFIDENCE:
            raise ValueError(f"confidence_threshold must be in [{MIN_CONFIDENCE}, {MAX_CONFIDENCE}]")
        if not 0.0 < self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in (0, 1]")
        if self.max_detections < 1:
            raise ValueError("max_detections must be >= 1")
        if not 0 <= self.pad_value <= 255:
            raise ValueError("pad_value must be in [0, 255]")
        if self.refresh_hz <= 0:
            raise ValueError("refresh_hz must be > 0")
        if self.table_rows < 1:
            raise ValueError("table_rows must be >= 1")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log_level: {self.log_level}")

    @property
    def pad_color(self):
        return (self.pad_value, self.pad_value, self.pad_value)

    @property
    def frame_interval(self) -> float:
        return 1.0 / self.refresh_hz

    def with_overrides(self, **overrides: Any) -> "DetectConfig":
        """Apply non-None overrides (e.g. CLI flags) on top of this config."""

        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


_TYPES = {
    "model_name": str,
    "models_root": str,
    "confidence_threshold": float,
    "iou_threshold": float,
    "max_detections": int,
    "pad_value": int,
    "refresh_hz": float,
    "table_rows": int,
    "show_score": bool,
    "log_level": str,
}


def _coerce(key: str, value: Any) -> Any:
    expected = _TYPES[key]
    if expected is bool:
        if not isinstance(value, bool):
            raise ValueError(f"{key} must be a boolean")
        return value
    if expected is str:
        if not isinstance(value, str):
            raise ValueError(f"{key} must be a string")
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    if expected is int:
        if not isinstance(value, int):
            raise ValueError(f"{key} must be an integer")
        return int(value)
    return float(value)


def load_detect_config(path: Path) -> DetectConfig:
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Config must be a JSON object")

    allowed = {f.name for f in fields(DetectConfig)}
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown config keys: {unknown}")

    values: Dict[str, Any] = {}
    for key, value in payload.items():
        if value is None and key == "models_root":
            continue
        values[key] = _coerce(key, value)
    return DetectConfig(**values)

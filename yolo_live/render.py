from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

import numpy as np

from .postprocess import canvas_ratio
from .types import Detection


logger = logging.getLogger(__name__)

_HEX = (
    "FF3838", "FF9D97", "FF701F", "FFB21D", "CFD231", "48F90A", "92CC17", "3DDB86", "1A9334", "00D4BB",
    "2C99A8", "00C2FF", "344593", "6473FF", "0018EC", "8438FF", "520085", "CB38FF", "FF95C8", "FF37C7",
)


def _hex_to_bgr(h: str) -> Tuple[int, int, int]:
    r, g, b = (int(h[i : i + 2], 16) for i in (0, 2, 4))
    return b, g, r


# Ultralytics class colors, RGB hex.
_PALETTE = [_hex_to_bgr(h) for h in _HEX]


def color_for_class_id(class_id: Optional[int]) -> Tuple[int, int, int]:
    """
    Deterministic BGR color for a class id (OpenCV expects BGR).
    """

    if class_id is None:
        return (0, 255, 255)
    if 0 <= class_id < len(_PALETTE):
        return _PALETTE[class_id]

    rng = np.random.default_rng(int(class_id))
    bgr = rng.integers(0, 256, size=3, dtype=np.uint8)
    return int(bgr[0]), int(bgr[1]), int(bgr[2])


def draw_detections(
    image_bgr: np.ndarray,
    detections: Iterable[Detection],
    *,
    scale: Tuple[float, float] = (1.0, 1.0),
    show_score: bool = True,
    box_thickness: int = 2,
    font_scale: float = 0.5,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Draw boxes + labels in place on `image_bgr` and return it.

    Detections are in source-frame pixels; `scale` = (sx, sy) maps them onto
    `image_bgr` when it has a different resolution.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    h, w = image_bgr.shape[:2]
    sx, sy = scale

    for det in detections:
        x1, y1, x2, y2 = det.as_xyxy()
        x1i = int(np.clip(round(x1 * sx), 0, w - 1))
        y1i = int(np.clip(round(y1 * sy), 0, h - 1))
        x2i = int(np.clip(round(x2 * sx), 0, w - 1))
        y2i = int(np.clip(round(y2 * sy), 0, h - 1))

        color = color_for_class_id(det.class_id)
        cv2.rectangle(image_bgr, (x1i, y1i), (x2i, y2i), color, thickness=box_thickness)

        label = det.label or ("object" if det.class_id is None else str(det.class_id))
        if show_score:
            label = f"{label} {det.score * 100:.1f}%"

        (tw, th), baseline = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, font_thickness)
        y_text_top = y1i - th - baseline
        if y_text_top < 0:
            y_text_top = y1i

        x_text_right = min(x1i + tw, w - 1)
        y_text_bottom = min(y_text_top + th + baseline, h - 1)

        cv2.rectangle(image_bgr, (x1i, y_text_top), (x_text_right, y_text_bottom), color, thickness=-1)
        cv2.putText(
            image_bgr,
            label,
            (x1i, min(y_text_top + th, h - 1)),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            (255, 255, 255),
            thickness=font_thickness,
            lineType=cv2.LINE_AA,
        )

    return image_bgr


class Canvas:
    """
    The single draw surface, sized to the model's input edge.

    Only the active detection cycle calls `render()`; `render_count` lets
    callers (and tests) observe every draw that reached the surface.
    """

    def __init__(self, width: int, height: Optional[int] = None, *, show_score: bool = True):
        self.show_score = show_score
        self.render_count = 0
        self.resize(width, height if height is not None else width)

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def resize(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Canvas size must be positive, got {width}x{height}")
        self.width = int(width)
        self.height = int(height)
        self.image = np.zeros((self.height, self.width, 3), dtype=np.uint8)

    def clear(self) -> None:
        self.image[...] = 0

    def render(self, frame_bgr: np.ndarray, detections: Iterable[Detection]) -> np.ndarray:
        import cv2  # type: ignore

        frame_h, frame_w = frame_bgr.shape[:2]
        if (frame_w, frame_h) == self.size:
            np.copyto(self.image, frame_bgr)
        else:
            self.image[...] = cv2.resize(frame_bgr, self.size, interpolation=cv2.INTER_LINEAR)

        draw_detections(
            self.image,
            detections,
            scale=canvas_ratio((frame_w, frame_h), self.size),
            show_score=self.show_score,
        )
        self.render_count += 1
        return self.image

    def snapshot(self) -> np.ndarray:
        return self.image.copy()

    def save(self, path: Union[str, Path]) -> None:
        import cv2  # type: ignore

        if not cv2.imwrite(str(path), self.image):
            raise RuntimeError(f"Failed to write canvas image: {path}")
        logger.info("Saved canvas to %s", path)

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np


class SourceKind(str, Enum):
    IMAGE = "image"
    CAMERA = "camera"
    VIDEO = "video"

    @property
    def streaming(self) -> bool:
        return self is not SourceKind.IMAGE


@dataclass(frozen=True)
class Frame:
    """
    One pixel buffer pulled from the active source (BGR, OpenCV-style).
    """

    image: np.ndarray
    index: int = 0

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height


@dataclass(frozen=True)
class LetterboxTransform:
    """
    Parameters needed to map model-input coordinates back to the source frame.

    pad_x/pad_y are the left/top borders actually written into the padded image.
    """

    scale: float
    pad_x: float
    pad_y: float
    input_size: Tuple[int, int]
    frame_size: Tuple[int, int]


@dataclass
class Candidates:
    """
    Post-argmax candidates in model-input pixel space, kept as parallel arrays.
    """

    boxes: np.ndarray  # (N, 4) xyxy
    scores: np.ndarray  # (N,)
    class_ids: np.ndarray  # (N,)

    @classmethod
    def empty(cls) -> "Candidates":
        return cls(
            boxes=np.empty((0, 4), dtype=np.float32),
            scores=np.empty((0,), dtype=np.float32),
            class_ids=np.empty((0,), dtype=np.int64),
        )

    def __len__(self) -> int:
        return int(self.scores.shape[0])

    def take(self, idx: np.ndarray) -> "Candidates":
        return Candidates(boxes=self.boxes[idx], scores=self.scores[idx], class_ids=self.class_ids[idx])


@dataclass
class Detection:
    """
    Final detection in original-frame pixel coordinates.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    class_id: Optional[int] = None
    label: str = ""

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2, self.y2


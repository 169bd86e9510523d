from dataclasses import dataclass
from typing import List

import numpy as np

from .types import Candidates


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    max_detections: int = 100

    def __post_init__(self) -> None:
        if not 0.0 < self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in (0, 1]")
        if self.max_detections < 1:
            raise ValueError("max_detections must be >= 1")


def box_iou(box: np.ndarray, boxes: np.ndarray) -> np.ndarray:
    """
    IoU of one xyxy box against (N, 4) xyxy boxes.
    """

    xx1 = np.maximum(box[0], boxes[:, 0])
    yy1 = np.maximum(box[1], boxes[:, 1])
    xx2 = np.minimum(box[2], boxes[:, 2])
    yy2 = np.minimum(box[3], boxes[:, 3])

    inter = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)
    area = max(0.0, float(box[2] - box[0])) * max(0.0, float(box[3] - box[1]))
    areas = np.maximum(0.0, boxes[:, 2] - boxes[:, 0]) * np.maximum(0.0, boxes[:, 3] - boxes[:, 1])
    union = area + areas - inter
    return inter / np.maximum(union, 1e-6)


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NumPy NMS over one class. Expects boxes shape (N,4) in xyxy and scores shape (N,).
    Returns indices of boxes to keep, highest score first.

    Equal scores keep their input order (first seen wins), so results are deterministic.
    A box is dropped only when its IoU with a keeper is strictly above the threshold.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    order = np.argsort(-scores, kind="stable")
    keep: List[int] = []

    while order.size > 0 and len(keep) < cfg.max_detections:
        i = order[0]
        keep.append(int(i))
        if order.size == 1:
            break
        rest = order[1:]
        iou = box_iou(boxes[i], boxes[rest])
        order = rest[iou <= cfg.iou_threshold]

    return np.array(keep, dtype=np.int64)


def batched_nms(candidates: Candidates, cfg: NMSConfig) -> Candidates:
    """
    Per-class NMS: boxes of different classes never suppress each other.

    Survivors are merged and ordered by descending score, capped at `max_detections`.
    """

    if len(candidates) == 0:
        return Candidates.empty()

    kept: List[int] = []
    for cls in np.unique(candidates.class_ids):
        idx = np.flatnonzero(candidates.class_ids == cls)
        keep_local = nms(candidates.boxes[idx], candidates.scores[idx], cfg)
        kept.extend(idx[keep_local].tolist())

    kept_arr = np.array(sorted(kept), dtype=np.int64)
    order = np.argsort(-candidates.scores[kept_arr], kind="stable")
    kept_arr = kept_arr[order][: cfg.max_detections]
    return candidates.take(kept_arr)

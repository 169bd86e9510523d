from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .arena import TensorArena
from .nms import NMSConfig, batched_nms
from .types import Candidates, Detection, LetterboxTransform


class TensorLayout(str, Enum):
    """
    Column layout of one candidate row in the raw model output.

    - WITH_OBJECTNESS:    [cx, cy, w, h, obj, class_scores...]  (4 + 1 + C)
    - CLASS_SCORES_ONLY:  [cx, cy, w, h, class_scores...]       (4 + C)
    """

    WITH_OBJECTNESS = "with_objectness"
    CLASS_SCORES_ONLY = "class_scores_only"

    @property
    def score_offset(self) -> int:
        return 5 if self is TensorLayout.WITH_OBJECTNESS else 4


@dataclass(frozen=True)
class TensorFormat:
    """
    How to read the raw output of the loaded model. Resolved once at load time.

    channels_first: rows and columns are swapped, e.g. (84, 8400) for YOLOv8/11 exports.
    normalized_boxes: box geometry is in [0, 1] relative to the input edge.
    """

    layout: TensorLayout = TensorLayout.CLASS_SCORES_ONLY
    channels_first: bool = True
    normalized_boxes: bool = False
    input_size: int = 640


def resolve_tensor_format(
    output_shape: Sequence[object],
    *,
    input_size: int,
    layout: Optional[TensorLayout] = None,
    num_classes: Optional[int] = None,
    normalized_boxes: bool = False,
) -> TensorFormat:
    """
    Work out layout and orientation from the model's declared output shape.

    Dynamic dimensions (None / symbolic names) are tolerated; when the shape
    cannot decide, YOLOv8-style channels-first without objectness is assumed.
    """

    dims = list(output_shape)
    if len(dims) == 3:
        dims = dims[1:]
    if len(dims) != 2:
        raise ValueError(f"Unsupported YOLO output shape: {tuple(output_shape)}")

    rows, cols = (d if isinstance(d, int) and d > 0 else None for d in dims)

    def _width(lay: TensorLayout) -> Optional[int]:
        return None if num_classes is None else lay.score_offset + num_classes

    layouts = [layout] if layout is not None else [TensorLayout.CLASS_SCORES_ONLY, TensorLayout.WITH_OBJECTNESS]
    for lay in layouts:
        width = _width(lay)
        if width is None:
            continue
        if rows == width and cols != width:
            return TensorFormat(lay, True, normalized_boxes, input_size)
        if cols == width and rows != width:
            return TensorFormat(lay, False, normalized_boxes, input_size)

    chosen = layout or TensorLayout.CLASS_SCORES_ONLY
    if rows is not None and cols is not None:
        # Channel axis is the short one (<= a few hundred), candidate axis the long one.
        return TensorFormat(chosen, rows <= cols, normalized_boxes, input_size)
    return TensorFormat(chosen, cols is None, normalized_boxes, input_size)


@dataclass(frozen=True)
class YoloPostConfig:
    """
    Post-processing knobs that stay fixed for a loaded model.
    The confidence threshold is not here; it is read live for every cycle.
    """

    iou_threshold: float = 0.45
    max_detections: int = 100


def decode(
    preds: np.ndarray,
    fmt: TensorFormat,
    conf_threshold: float,
    arena: Optional[TensorArena] = None,
) -> Candidates:
    """
    Raw output -> Candidates in model-input pixel space (xyxy), best score first.

    Rows whose best class score falls below `conf_threshold` are discarded here,
    before NMS sees them.
    """

    p = np.asarray(preds)
    if p.ndim == 3:
        if p.shape[0] != 1:
            raise ValueError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
        p = p[0]
    if p.ndim != 2:
        raise ValueError(f"Unsupported YOLO output shape: {p.shape}")
    if fmt.channels_first:
        p = p.T

    offset = fmt.layout.score_offset
    if p.shape[1] <= offset:
        raise ValueError(f"Output rows have {p.shape[1]} columns; layout {fmt.layout.value} needs more than {offset}.")

    class_scores = p[:, offset:]
    class_ids = np.argmax(class_scores, axis=1)
    scores = class_scores[np.arange(class_scores.shape[0]), class_ids]
    if fmt.layout is TensorLayout.WITH_OBJECTNESS:
        scores = scores * p[:, 4]

    keep = np.flatnonzero(scores >= conf_threshold)
    if keep.size == 0:
        return Candidates.empty()

    # Sorting here lets NMS consume candidates greedily; ties keep row order.
    keep = keep[np.argsort(-scores[keep], kind="stable")]
    cx, cy, w_box, h_box = p[keep, :4].astype(np.float32).T
    boxes = np.stack([cx - w_box / 2, cy - h_box / 2, cx + w_box / 2, cy + h_box / 2], axis=1)
    if fmt.normalized_boxes:
        boxes *= float(fmt.input_size)

    out = Candidates(
        boxes=boxes,
        scores=scores[keep].astype(np.float32),
        class_ids=class_ids[keep].astype(np.int64),
    )
    if arena is not None:
        arena.track(out.boxes)
        arena.track(out.scores)
        arena.track(out.class_ids)
    return out


def remap_boxes(boxes: np.ndarray, transform: LetterboxTransform) -> np.ndarray:
    """
    Map boxes from letterboxed model input back to the original frame.

    Results are clamped to [0, width] x [0, height] to absorb floating-point overshoot.
    """

    out = np.array(boxes, dtype=np.float32, copy=True).reshape(-1, 4)
    out[:, [0, 2]] = (out[:, [0, 2]] - transform.pad_x) / transform.scale
    out[:, [1, 3]] = (out[:, [1, 3]] - transform.pad_y) / transform.scale

    orig_w, orig_h = transform.frame_size
    out[:, [0, 2]] = np.clip(out[:, [0, 2]], 0, orig_w)
    out[:, [1, 3]] = np.clip(out[:, [1, 3]], 0, orig_h)
    return out


def canvas_ratio(frame_size: Tuple[int, int], canvas_size: Tuple[int, int]) -> Tuple[float, float]:
    """(sx, sy) turning original-frame pixels into draw-surface pixels."""

    fw, fh = frame_size
    cw, ch = canvas_size
    return cw / float(fw), ch / float(fh)


class YoloPostprocessor:
    """
    decode -> per-class NMS -> remap, for one image at a time.

    Layouts handled (see TensorFormat):
    - (N, 4 + C) / (4 + C, N)
    - (N, 5 + C) / (5 + C, N) with objectness
    each optionally with a leading batch axis of 1.
    """

    def __init__(self, cfg: YoloPostConfig, fmt: TensorFormat, class_names: Optional[Dict[int, str]] = None):
        self.cfg = cfg
        self.fmt = fmt
        self.class_names = class_names or {}
        self._nms_cfg = NMSConfig(iou_threshold=cfg.iou_threshold, max_detections=cfg.max_detections)

    def label_for(self, class_id: int) -> str:
        return self.class_names.get(class_id, str(class_id))

    def candidates(self, preds: np.ndarray, conf_threshold: float, arena: Optional[TensorArena] = None) -> Candidates:
        """Decoded and suppressed candidates, still in model-input space."""

        decoded = decode(preds, self.fmt, conf_threshold, arena)
        return batched_nms(decoded, self._nms_cfg)

    def process(
        self,
        preds: np.ndarray,
        transform: LetterboxTransform,
        conf_threshold: float,
        arena: Optional[TensorArena] = None,
    ) -> List[Detection]:
        kept = self.candidates(preds, conf_threshold, arena)
        if len(kept) == 0:
            return []

        boxes = remap_boxes(kept.boxes, transform)
        if arena is not None:
            arena.track(boxes)

        return [
            Detection(
                x1=float(x1),
                y1=float(y1),
                x2=float(x2),
                y2=float(y2),
                score=float(score),
                class_id=int(cls_id),
                label=self.label_for(int(cls_id)),
            )
            for (x1, y1, x2, y2), score, cls_id in zip(boxes, kept.scores, kept.class_ids)
        ]

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .arena import TensorArena
from .letterbox import letterbox, to_blob
from .model import ModelState
from .postprocess import YoloPostConfig, YoloPostprocessor
from .types import Detection, LetterboxTransform


@dataclass(frozen=True)
class PreprocessResult:
    blob: np.ndarray
    transform: LetterboxTransform


class DetectionPipeline:
    """
    preprocess (letterbox) -> inference -> postprocess (decode, NMS, remap).

    The steps are exposed separately so the controller can check for
    cancellation right after `infer()` resumes. Every buffer a step allocates
    goes into the `arena` passed in, when one is given.

    Input images are BGR `np.ndarray` (OpenCV-style); detections come back in
    original image coordinates.
    """

    def __init__(
        self,
        model: ModelState,
        *,
        post_cfg: YoloPostConfig = YoloPostConfig(),
        pad_color: Tuple[int, int, int] = (114, 114, 114),
    ):
        self.model = model
        self.pad_color = pad_color
        self.post = YoloPostprocessor(post_cfg, model.tensor_format, model.class_names)

    def preprocess(self, image_bgr: np.ndarray, arena: Optional[TensorArena] = None) -> PreprocessResult:
        if image_bgr is None or not hasattr(image_bgr, "shape"):
            raise TypeError("image_bgr must be a NumPy array (BGR).")
        if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
            raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

        padded, transform = letterbox(image_bgr, size=self.model.input_size, color=self.pad_color)
        if arena is not None:
            arena.track(padded)
        blob = to_blob(padded, channels_last=self.model.channels_last, arena=arena)
        return PreprocessResult(blob=blob, transform=transform)

    async def infer(self, blob: np.ndarray, arena: Optional[TensorArena] = None) -> np.ndarray:
        raw = await self.model.infer(blob)
        if arena is not None:
            arena.track(raw, getattr(self.model.net, "release", None))
        return raw

    def postprocess(
        self,
        raw: np.ndarray,
        transform: LetterboxTransform,
        conf_threshold: float,
        arena: Optional[TensorArena] = None,
    ) -> List[Detection]:
        return self.post.process(raw, transform, conf_threshold, arena)


from typing import Optional, Tuple

import numpy as np

from .arena import TensorArena
from .types import LetterboxTransform


def letterbox(
    image: np.ndarray,
    size: int = 640,
    color: Tuple[int, int, int] = (114, 114, 114),
) -> Tuple[np.ndarray, LetterboxTransform]:
    """
    Resize the longer edge to `size` and pad the shorter one symmetrically to a square.

    When the total padding is odd, the extra pixel goes to the right/bottom border.
    The returned transform records the left/top borders exactly as written, so
    `remap_boxes` can invert the mapping without a half-pixel drift.

    Returns:
        padded: (size, size, C) image
        transform: LetterboxTransform for the inverse mapping
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e

    if image is None or not hasattr(image, "shape") or image.ndim < 2:
        raise TypeError("image must be a NumPy array shaped (H, W[, C]).")
    h, w = image.shape[:2]
    if w <= 0 or h <= 0:
        raise ValueError(f"Cannot letterbox a zero-area frame (got {w}x{h}).")
    if size <= 0:
        raise ValueError(f"size must be > 0 (got {size}).")

    r = size / max(w, h)
    # Degenerate strips still keep one row/column of real pixels.
    resized_w = min(size, max(1, int(round(w * r))))
    resized_h = min(size, max(1, int(round(h * r))))

    if (w, h) != (resized_w, resized_h):
        interpolation = cv2.INTER_AREA if r < 1.0 else cv2.INTER_LINEAR
        image = cv2.resize(image, (resized_w, resized_h), interpolation=interpolation)

    dw, dh = size - resized_w, size - resized_h
    left, top = dw // 2, dh // 2
    right, bottom = dw - left, dh - top
    padded = cv2.copyMakeBorder(image, top, bottom, left, right, cv2.BORDER_CONSTANT, value=color)

    transform = LetterboxTransform(
        scale=float(r),
        pad_x=float(left),
        pad_y=float(top),
        input_size=(size, size),
        frame_size=(int(w), int(h)),
    )
    return padded, transform


def to_blob(
    padded_bgr: np.ndarray,
    *,
    channels_last: bool = False,
    arena: Optional[TensorArena] = None,
) -> np.ndarray:
    """
    BGR uint8 -> RGB float32 in [0, 1] with a batch axis.

    channels_last=True gives NHWC (web exports), otherwise NCHW (ONNX/Torch exports).
    """

    blob = padded_bgr[:, :, ::-1].astype(np.float32) / 255.0
    if channels_last:
        blob = np.ascontiguousarray(blob[None, ...])
    else:
        blob = np.ascontiguousarray(np.transpose(blob, (2, 0, 1))[None, ...])
    if arena is not None:
        arena.track(blob)
    return blob

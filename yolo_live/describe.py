"""
Boundary of the image-description collaborator.

Builds the request payload (prompt + base64 image) and interprets the reply.
The HTTP call itself belongs to the host application.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np

from .errors import DescriptionError


logger = logging.getLogger(__name__)

MAX_DIMENSION = 512
JPEG_QUALITY = 90

_MIME_BY_SUFFIX = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


@dataclass(frozen=True)
class DescriptionRequest:
    prompt: str
    image_base64: str
    mime_type: str

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.image_base64}"


def guess_mime_type(file_name: Union[str, Path]) -> str:
    return _MIME_BY_SUFFIX.get(Path(file_name).suffix.lower(), "image/jpeg")


def is_media_file(file_name: Union[str, Path]) -> bool:
    return Path(file_name).suffix.lower() in _MIME_BY_SUFFIX


def fit_within(width: int, height: int, max_dimension: int = MAX_DIMENSION):
    """Target (w, h) with the longer edge at most `max_dimension`, aspect preserved."""

    if width <= max_dimension and height <= max_dimension:
        return width, height
    if width > height:
        return max_dimension, max(1, int(round(height * max_dimension / width)))
    return max(1, int(round(width * max_dimension / height))), max_dimension


def build_description_request(
    prompt: str,
    image: Union[bytes, np.ndarray, None],
    mime_type: str,
) -> DescriptionRequest:
    """
    Validate and encode one description request.

    `image` is either the encoded file bytes or a decoded BGR array. Images whose
    longer edge exceeds 512 px are downsized and re-encoded as JPEG; smaller
    encoded images are sent as-is. Videos are refused before anything is encoded.
    """

    missing = []
    if not prompt or not prompt.strip():
        missing.append("prompt")
    if image is None or (isinstance(image, (bytes, bytearray)) and not image):
        missing.append("image")
    if missing:
        raise ValueError(f"Missing: {', '.join(missing)}")
    if mime_type.startswith("video/"):
        raise ValueError("Video description is not supported; select an image.")
    if not mime_type.startswith("image/"):
        raise ValueError(f"Unsupported media type: {mime_type}")

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required to encode images. Install with `pip install opencv-python`.") from e

    if isinstance(image, np.ndarray):
        decoded = image
        original: Optional[bytes] = None
    else:
        original = bytes(image)
        decoded = cv2.imdecode(np.frombuffer(original, dtype=np.uint8), cv2.IMREAD_COLOR)
        if decoded is None:
            raise ValueError("Could not decode image data")

    h, w = decoded.shape[:2]
    new_w, new_h = fit_within(w, h)
    if original is not None and (new_w, new_h) == (w, h):
        return DescriptionRequest(prompt=prompt, image_base64=base64.b64encode(original).decode("ascii"), mime_type=mime_type)

    if (new_w, new_h) != (w, h):
        logger.info("Resizing image for description from %dx%d to %dx%d", w, h, new_w, new_h)
        decoded = cv2.resize(decoded, (new_w, new_h), interpolation=cv2.INTER_AREA)
    ok, buf = cv2.imencode(".jpg", decoded, [int(cv2.IMWRITE_JPEG_QUALITY), JPEG_QUALITY])
    if not ok:
        raise ValueError("JPEG encoding failed")
    return DescriptionRequest(
        prompt=prompt,
        image_base64=base64.b64encode(buf.tobytes()).decode("ascii"),
        mime_type="image/jpeg",
    )


def parse_description_response(status: int, body: str) -> str:
    """
    Message content of a chat-completion reply, or DescriptionError with the
    API's own error message.
    """

    if not 200 <= status < 300:
        try:
            payload: Any = json.loads(body)
        except json.JSONDecodeError:
            payload = {"error": {"message": body}}
        message = None
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            message = payload["error"].get("message")
        raise DescriptionError(message or f"HTTP {status}", status=status)

    try:
        data: Dict[str, Any] = json.loads(body)
    except json.JSONDecodeError as exc:
        raise DescriptionError("Invalid JSON response from API", status=status) from exc
    try:
        return data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise DescriptionError("Unexpected response structure from API", status=status) from exc

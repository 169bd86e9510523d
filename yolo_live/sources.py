from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np

from .errors import AcquisitionError
from .types import Frame, SourceKind


logger = logging.getLogger(__name__)


class MediaSource(ABC):
    """
    One image, video file or camera. `read()` returns None once exhausted.
    """

    kind: SourceKind

    @property
    def name(self) -> str:
        return self.kind.value

    def open(self) -> None:
        """Acquire the device/file. Raises AcquisitionError when unavailable."""

    @abstractmethod
    def read(self) -> Optional[Frame]:
        ...

    def close(self) -> None:
        """Release the device/file. Safe to call twice."""


class ImageSource(MediaSource):
    """A still image: yields exactly one frame."""

    kind = SourceKind.IMAGE

    def __init__(self, image: Union[str, Path, np.ndarray]):
        self._path: Optional[Path] = None
        self._image: Optional[np.ndarray] = None
        if isinstance(image, np.ndarray):
            self._image = image
        else:
            self._path = Path(image)
        self._consumed = False

    @property
    def name(self) -> str:
        return str(self._path) if self._path is not None else "image"

    def open(self) -> None:
        if self._image is not None:
            return
        try:
            import cv2  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("OpenCV is required to read images. Install with `pip install opencv-python`.") from e

        img = cv2.imread(str(self._path))
        if img is None:
            raise AcquisitionError(f"Could not read image at path: {self._path}")
        self._image = img

    def read(self) -> Optional[Frame]:
        if self._image is None:
            raise AcquisitionError("Image source is not open")
        if self._consumed:
            return None
        self._consumed = True
        return Frame(image=self._image, index=0)

    def close(self) -> None:
        if self._path is not None:
            self._image = None


@dataclass(frozen=True)
class CaptureInfo:
    fps: Optional[float]
    width: Optional[int]
    height: Optional[int]


class CaptureSource(MediaSource):
    """cv2.VideoCapture wrapper shared by video files and cameras."""

    def __init__(self, target: Union[str, int]):
        self.target = target
        self._cap: Any = None
        self._index = 0

    @property
    def name(self) -> str:
        return f"{self.kind.value}:{self.target}"

    def open(self) -> None:
        try:
            import cv2  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("OpenCV is required for video capture. Install with `pip install opencv-python`.") from e

        cap = cv2.VideoCapture(self.target)
        if not cap.isOpened():
            cap.release()
            raise AcquisitionError(f"Could not open {self.kind.value} source: {self.target}")
        self._cap = cap
        info = self.info()
        logger.info("Opened %s (%sx%s @ %s fps)", self.name, info.width, info.height, info.fps)

    def info(self) -> CaptureInfo:
        import cv2  # type: ignore

        if self._cap is None:
            return CaptureInfo(fps=None, width=None, height=None)
        fps = self._cap.get(cv2.CAP_PROP_FPS)
        w = self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)
        h = self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)
        return CaptureInfo(
            fps=float(fps) if fps and fps > 0 else None,
            width=int(w) if w and w > 0 else None,
            height=int(h) if h and h > 0 else None,
        )

    def read(self) -> Optional[Frame]:
        if self._cap is None:
            raise AcquisitionError(f"{self.name} is not open")
        ok, image = self._cap.read()
        if not ok or image is None:
            return None
        frame = Frame(image=image, index=self._index)
        self._index += 1
        return frame

    def close(self) -> None:
        cap, self._cap = self._cap, None
        if cap is not None:
            cap.release()


class VideoSource(CaptureSource):
    kind = SourceKind.VIDEO

    def __init__(self, path: Union[str, Path]):
        super().__init__(str(path))


class CameraSource(CaptureSource):
    kind = SourceKind.CAMERA

    def __init__(self, index: int = 0):
        super().__init__(int(index))

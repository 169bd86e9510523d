"""Error taxonomy for the detection app."""

from __future__ import annotations

from typing import Optional


class YoloLiveError(Exception):
    """Base class for errors surfaced to the user."""


class AcquisitionError(YoloLiveError):
    """A media source (file, camera, video) could not be opened or read."""


class SourceBusyError(AcquisitionError):
    def __init__(self, active: str, requested: Optional[str] = None) -> None:
        self.active = active
        self.requested = requested
        super().__init__(f"Cannot handle more than one source at a time. Current source: {active}")


class ModelLoadError(YoloLiveError):
    """Manifest or weights could not be fetched/parsed; nothing was installed."""


class InferenceError(YoloLiveError):
    """The runtime failed during one cycle. Only that cycle is lost."""


class DescriptionError(YoloLiveError):
    """The description API answered with an error; `message` is shown verbatim."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        self.message = message
        self.status = status
        super().__init__(message)

"""Inbound events consumed by the detection controller, in arrival order."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .sources import MediaSource
from .types import Frame, SourceKind


@dataclass(frozen=True)
class Opened:
    """A source became available. `replace=True` closes the current one first."""

    source: MediaSource
    replace: bool = False


@dataclass(frozen=True)
class FrameReady:
    """A frame pushed by the host for the active source (one cycle)."""

    kind: SourceKind
    frame: Frame


@dataclass(frozen=True)
class Closed:
    kind: SourceKind
    reason: Optional[str] = None


@dataclass(frozen=True)
class ModelSelected:
    model_name: str


@dataclass(frozen=True)
class ThresholdChanged:
    value: float


@dataclass(frozen=True)
class Shutdown:
    reason: Optional[str] = None


Event = Union[Opened, FrameReady, Closed, ModelSelected, ThresholdChanged, Shutdown]

"""
Controller state machine.

    Idle -> Loading(progress) -> Ready -> Detecting(source) -> Idle (source closed)
    Ready -> Detecting(new source) without a reload

Transitions are pure functions returning a new ControllerState; the controller
holds the only live instance and publishes every change to its subscribers.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from .errors import SourceBusyError
from .types import SourceKind


class Phase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    DETECTING = "detecting"


@dataclass(frozen=True)
class ControllerState:
    phase: Phase = Phase.IDLE
    progress: float = 0.0
    source: Optional[SourceKind] = None
    model_name: Optional[str] = None
    loading_model: Optional[str] = None

    @property
    def has_model(self) -> bool:
        return self.model_name is not None

    @property
    def detecting(self) -> bool:
        return self.phase is Phase.DETECTING


def _settled_phase(state: ControllerState) -> Phase:
    if not state.has_model:
        return Phase.IDLE
    return Phase.DETECTING if state.source is not None else Phase.READY


def begin_loading(state: ControllerState, model_name: str) -> ControllerState:
    """Loading excludes Detecting; the source stays open and resumes once loaded."""

    return replace(state, phase=Phase.LOADING, progress=0.0, loading_model=model_name)


def loading_progress(state: ControllerState, fraction: float) -> ControllerState:
    if state.phase is not Phase.LOADING:
        raise ValueError(f"Progress reported while {state.phase.value}")
    return replace(state, progress=min(max(float(fraction), 0.0), 1.0))


def loading_finished(state: ControllerState, model_name: str) -> ControllerState:
    if state.phase is not Phase.LOADING:
        raise ValueError(f"Load finished while {state.phase.value}")
    done = replace(state, progress=1.0, model_name=model_name, loading_model=None)
    return replace(done, phase=_settled_phase(done))


def loading_failed(state: ControllerState) -> ControllerState:
    """Nothing was installed: fall back to whatever the previous model allows."""

    failed = replace(state, progress=0.0, loading_model=None)
    return replace(failed, phase=_settled_phase(failed))


def source_opened(state: ControllerState, kind: SourceKind) -> ControllerState:
    if state.source is not None:
        raise SourceBusyError(active=state.source.value, requested=kind.value)
    opened = replace(state, source=kind)
    if state.phase is Phase.LOADING:
        return opened
    return replace(opened, phase=_settled_phase(opened))


def source_closed(state: ControllerState) -> ControllerState:
    closed = replace(state, source=None)
    if state.phase is Phase.LOADING:
        return closed
    return replace(closed, phase=Phase.IDLE)

"""Detection loop controller: owns the per-frame cycle, the live model and the active source."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import numpy as np

from .arena import TensorArena
from .config import DetectConfig, clamp_confidence
from .errors import AcquisitionError, InferenceError, ModelLoadError, SourceBusyError, YoloLiveError
from .events import Closed, Event, FrameReady, ModelSelected, Opened, Shutdown, ThresholdChanged
from .model import ModelState
from .postprocess import YoloPostConfig
from .render import Canvas
from .runtime import DetectionPipeline
from .sources import MediaSource
from .state import (
    ControllerState,
    begin_loading,
    loading_failed,
    loading_finished,
    loading_progress,
    source_closed,
    source_opened,
)
from .summary import DetectionCounts, count_detections
from .types import Detection, Frame, LetterboxTransform, SourceKind


logger = logging.getLogger(__name__)

StateListener = Callable[[ControllerState], None]
CountsListener = Callable[[DetectionCounts], None]
ErrorListener = Callable[[str], None]


class CycleToken:
    """Cancellation flag shared by one loop; checked right after inference resumes."""

    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class _CachedOutput:
    frame: Frame
    raw: np.ndarray
    transform: LetterboxTransform
    arena: TensorArena


class DetectionController:
    """
    acquire frame -> preprocess -> infer -> decode -> suppress -> remap -> render/aggregate.

    Events (Opened, FrameReady, Closed, ModelSelected, ThresholdChanged, Shutdown)
    arrive through one queue and are handled in order by `run()`. Still images run
    one cycle; cameras and videos reschedule a cycle after each render until the
    source is closed or swapped. At most one loop writes to the canvas at a time.
    """

    def __init__(
        self,
        repository: Any,
        *,
        config: DetectConfig = DetectConfig(),
        canvas: Optional[Canvas] = None,
    ) -> None:
        self.repository = repository
        self.config = config
        self.canvas = canvas
        self.events: "asyncio.Queue[Event]" = asyncio.Queue()

        self._state = ControllerState()
        self._threshold = clamp_confidence(config.confidence_threshold)
        self._post_cfg = YoloPostConfig(iou_threshold=config.iou_threshold, max_detections=config.max_detections)

        self._model: Optional[ModelState] = None
        self._pipeline: Optional[DetectionPipeline] = None
        self._source: Optional[MediaSource] = None
        self._still: Optional[Frame] = None
        self._task: Optional["asyncio.Task[None]"] = None
        self._token: Optional[CycleToken] = None
        self._cache: Optional[_CachedOutput] = None

        self._state_listeners: List[StateListener] = []
        self._counts_listeners: List[CountsListener] = []
        self._error_listeners: List[ErrorListener] = []

        self.last_detections: List[Detection] = []
        self.last_counts: DetectionCounts = {}
        self.cycles_rendered = 0
        self.cycles_discarded = 0
        self.cycles_failed = 0

    # ------------------------------------------------------------------ #
    # Public surface
    # ------------------------------------------------------------------ #
    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def model(self) -> Optional[ModelState]:
        return self._model

    @property
    def active_source(self) -> Optional[MediaSource]:
        return self._source

    @property
    def loop_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(
        self,
        on_state: Optional[StateListener] = None,
        on_counts: Optional[CountsListener] = None,
        on_error: Optional[ErrorListener] = None,
    ) -> None:
        if on_state is not None:
            self._state_listeners.append(on_state)
        if on_counts is not None:
            self._counts_listeners.append(on_counts)
        if on_error is not None:
            self._error_listeners.append(on_error)

    def post(self, event: Event) -> None:
        self.events.put_nowait(event)

    async def run(self) -> None:
        """Consume events until Shutdown."""

        while True:
            event = await self.events.get()
            try:
                await self.dispatch(event)
            finally:
                self.events.task_done()
            if isinstance(event, Shutdown):
                return

    async def dispatch(self, event: Event) -> None:
        try:
            if isinstance(event, Opened):
                await self.open_source(event.source, replace=event.replace)
            elif isinstance(event, FrameReady):
                await self._on_frame_ready(event)
            elif isinstance(event, Closed):
                await self._on_closed(event)
            elif isinstance(event, ModelSelected):
                await self.select_model(event.model_name)
            elif isinstance(event, ThresholdChanged):
                await self.set_threshold(event.value)
            elif isinstance(event, Shutdown):
                await self.shutdown()
            else:
                raise TypeError(f"Unknown event: {event!r}")
        except (YoloLiveError, ValueError, TypeError) as exc:
            self._report(exc)

    # ------------------------------------------------------------------ #
    # Model lifecycle
    # ------------------------------------------------------------------ #
    async def select_model(self, model_name: str) -> None:
        # The old loop must be gone before the new model can write to the canvas.
        await self._stop_loop()
        self._release_cache()
        self._set_state(begin_loading(self._state, model_name))
        logger.info("Loading model %s", model_name)

        try:
            model = await self.repository.load(model_name, progress=self._on_progress)
        except ModelLoadError:
            self._set_state(loading_failed(self._state))
            await self._start_detection()
            raise

        old = self._model
        if old is not None:
            old.dispose()
        self._model = model
        self._pipeline = DetectionPipeline(model, post_cfg=self._post_cfg, pad_color=self.config.pad_color)

        size = model.input_size
        if self.canvas is None:
            self.canvas = Canvas(size, size, show_score=self.config.show_score)
        elif self.canvas.size != (size, size):
            self.canvas.resize(size, size)

        self._set_state(loading_finished(self._state, model_name))
        await self._start_detection()

    def _on_progress(self, fraction: float) -> None:
        self._set_state(loading_progress(self._state, fraction))

    # ------------------------------------------------------------------ #
    # Source lifecycle
    # ------------------------------------------------------------------ #
    async def open_source(self, source: MediaSource, *, replace: bool = False) -> None:
        if self._state.source is not None:
            if not replace:
                logger.warning("Rejected %s: %s is already active", source.kind.value, self._state.source.value)
                raise SourceBusyError(active=self._state.source.value, requested=source.kind.value)
            await self.close_source(reason="replaced")

        source.open()
        still = None
        if source.kind is SourceKind.IMAGE:
            still = source.read()
            if still is None:
                source.close()
                raise YoloLiveError(f"{source.name} produced no frame")

        self._set_state(source_opened(self._state, source.kind))
        self._source = source
        self._still = still
        logger.info("Opened %s", source.name)
        await self._start_detection()

    async def close_source(self, reason: Optional[str] = None) -> None:
        await self._stop_loop()
        self._release_cache()

        source, self._source = self._source, None
        self._still = None
        if source is not None:
            source.close()
            logger.info("Closed %s%s", source.name, f" ({reason})" if reason else "")
        self._set_state(source_closed(self._state))

        if self.canvas is not None:
            self.canvas.clear()
        self.last_detections = []
        self._publish_counts({})

    async def _on_closed(self, event: Closed) -> None:
        if self._state.source is not event.kind:
            logger.debug("Ignoring close of inactive source %s", event.kind.value)
            return
        await self.close_source(reason=event.reason)

    async def _on_frame_ready(self, event: FrameReady) -> None:
        if self._state.source is not event.kind:
            logger.debug("Dropping frame for inactive source %s", event.kind.value)
            return
        if self._state.source.streaming:
            # Streaming sources are pulled by their own loop; a pushed frame only restarts a stopped one.
            if self.loop_running:
                logger.warning("Dropping pushed frame: %s loop is pulling frames", event.kind.value)
            else:
                await self._start_detection()
            return
        await self._stop_loop()
        self._release_cache()
        self._still = event.frame
        await self._start_detection()

    # ------------------------------------------------------------------ #
    # Threshold
    # ------------------------------------------------------------------ #
    async def set_threshold(self, value: float) -> None:
        self._threshold = clamp_confidence(value)
        logger.debug("Confidence threshold set to %.2f", self._threshold)

        if not self._state.detecting or self._still is None:
            # Streaming loops pick the new value up on their next cycle.
            return
        if self.loop_running:
            # The in-flight cycle reads the threshold after inference.
            return
        if self._cache is not None:
            self._rerender_cached()
        else:
            await self._start_detection()

    def _rerender_cached(self) -> None:
        cache = self._cache
        with TensorArena("rerender") as arena:
            detections = self._pipeline.postprocess(cache.raw, cache.transform, self._threshold, arena)
        self._render_guarded(cache.frame, detections)

    # ------------------------------------------------------------------ #
    # Loop
    # ------------------------------------------------------------------ #
    async def _start_detection(self) -> None:
        if not self._state.detecting or self._pipeline is None or self._source is None:
            return
        await self._stop_loop()

        token = CycleToken()
        self._token = token
        if self._still is not None:
            self._task = asyncio.create_task(self._one_shot(self._still, token))
        else:
            self._task = asyncio.create_task(self._stream(self._source, token))

    async def _stop_loop(self) -> None:
        token, task = self._token, self._task
        self._token = None
        self._task = None
        if token is not None:
            token.cancel()
        if task is not None and task is not asyncio.current_task():
            # Waits for an in-flight inference to resume; the cycle then discards its results.
            try:
                await task
            except Exception as exc:
                logger.debug("Detection loop ended with an error", exc_info=True)
                self._report(exc)

    async def _one_shot(self, frame: Frame, token: CycleToken) -> None:
        await self._run_cycle(frame, token, retain=True)

    async def _stream(self, source: MediaSource, token: CycleToken) -> None:
        interval = self.config.frame_interval
        while not token.cancelled:
            reason = "ended"
            try:
                # Capture reads block for up to one frame period.
                frame = await asyncio.to_thread(source.read)
            except YoloLiveError as exc:
                self._report(exc)
                frame, reason = None, "failed"
            except Exception as exc:
                self._report(AcquisitionError(f"Reading {source.name} failed: {exc}"))
                frame, reason = None, "failed"
            if token.cancelled:
                return
            if frame is None:
                self.post(Closed(source.kind, reason=reason))
                return

            await self._run_cycle(frame, token)
            if token.cancelled:
                return
            await asyncio.sleep(interval)

    async def _run_cycle(self, frame: Frame, token: CycleToken, *, retain: bool = False) -> bool:
        """
        One full cycle. Returns True when the result reached the canvas.
        """

        pipeline = self._pipeline
        with TensorArena("cycle") as arena:
            try:
                prep = pipeline.preprocess(frame.image, arena)
                raw = await pipeline.infer(prep.blob, arena)
            except Exception as exc:
                self.cycles_failed += 1
                logger.error("Detection cycle failed on frame %d: %s", frame.index, exc)
                self._report(exc if isinstance(exc, YoloLiveError) else InferenceError(str(exc)))
                return False

            if token.cancelled:
                self.cycles_discarded += 1
                logger.debug("Discarding cancelled cycle for frame %d", frame.index)
                return False

            if retain:
                self._release_cache()
                cached = TensorArena("cached-output")
                arena.transfer(raw, cached)
                self._cache = _CachedOutput(frame=frame, raw=raw, transform=prep.transform, arena=cached)

            try:
                detections = pipeline.postprocess(raw, prep.transform, self._threshold, arena)
            except Exception as exc:
                self.cycles_failed += 1
                logger.error("Could not decode model output: %s", exc)
                self._report(InferenceError(str(exc)))
                return False

        return self._render_guarded(frame, detections)

    def _render_guarded(self, frame: Frame, detections: List[Detection]) -> bool:
        try:
            self._render(frame, detections)
        except Exception as exc:
            self.cycles_failed += 1
            logger.error("Rendering frame %d failed: %r", frame.index, exc)
            self._report(exc)
            return False
        return True

    def _render(self, frame: Frame, detections: List[Detection]) -> None:
        if self.canvas is not None:
            self.canvas.render(frame.image, detections)
        self.last_detections = detections
        self.cycles_rendered += 1
        self._publish_counts(count_detections(detections))

    def _release_cache(self) -> None:
        cache, self._cache = self._cache, None
        if cache is not None:
            cache.arena.release()

    # ------------------------------------------------------------------ #
    # Shutdown / notifications
    # ------------------------------------------------------------------ #
    async def shutdown(self) -> None:
        await self.close_source(reason="shutdown")
        model, self._model = self._model, None
        self._pipeline = None
        if model is not None:
            model.dispose()

    def _set_state(self, state: ControllerState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        if previous.phase is not state.phase:
            logger.info("State %s -> %s", previous.phase.value, state.phase.value)
        for listener in list(self._state_listeners):
            listener(state)

    def _publish_counts(self, counts: DetectionCounts) -> None:
        self.last_counts = counts
        for listener in list(self._counts_listeners):
            listener(counts)

    def _report(self, exc: Exception) -> None:
        message = str(exc)
        if isinstance(exc, (SourceBusyError, InferenceError)):
            logger.warning("%s", message)
        else:
            logger.error("%s", message)
        for listener in list(self._error_listeners):
            listener(message)

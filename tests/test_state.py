import unittest

from yolo_live.errors import SourceBusyError
from yolo_live.state import (
    ControllerState,
    Phase,
    begin_loading,
    loading_failed,
    loading_finished,
    loading_progress,
    source_closed,
    source_opened,
)
from yolo_live.types import SourceKind


class TestControllerState(unittest.TestCase):
    def test_load_then_detect_then_close(self) -> None:
        s = begin_loading(ControllerState(), "yolo11n")
        self.assertEqual(s.phase, Phase.LOADING)
        s = loading_progress(s, 0.5)
        self.assertEqual(s.progress, 0.5)
        s = loading_finished(s, "yolo11n")
        self.assertEqual(s.phase, Phase.READY)
        self.assertEqual(s.model_name, "yolo11n")
        s = source_opened(s, SourceKind.CAMERA)
        self.assertEqual(s.phase, Phase.DETECTING)
        s = source_closed(s)
        self.assertEqual(s.phase, Phase.IDLE)
        self.assertIsNone(s.source)
        s = source_opened(s, SourceKind.VIDEO)
        self.assertEqual(s.phase, Phase.DETECTING)

    def test_transitions_are_pure(self) -> None:
        s = ControllerState()
        begin_loading(s, "m")
        self.assertEqual(s, ControllerState())

    def test_second_source_rejected(self) -> None:
        s = source_opened(loading_finished(begin_loading(ControllerState(), "m"), "m"), SourceKind.IMAGE)
        with self.assertRaises(SourceBusyError) as ctx:
            source_opened(s, SourceKind.CAMERA)
        self.assertIn("image", str(ctx.exception))

    def test_source_opened_during_load_resumes_after(self) -> None:
        s = source_opened(begin_loading(ControllerState(), "m"), SourceKind.VIDEO)
        self.assertEqual(s.phase, Phase.LOADING)
        s = loading_finished(s, "m")
        self.assertEqual(s.phase, Phase.DETECTING)

    def test_reload_excludes_detecting(self) -> None:
        s = source_opened(loading_finished(begin_loading(ControllerState(), "a"), "a"), SourceKind.CAMERA)
        s = begin_loading(s, "b")
        self.assertEqual(s.phase, Phase.LOADING)
        self.assertEqual(s.source, SourceKind.CAMERA)

    def test_failed_load_keeps_previous_model(self) -> None:
        s = source_opened(loading_finished(begin_loading(ControllerState(), "a"), "a"), SourceKind.IMAGE)
        s = loading_failed(begin_loading(s, "b"))
        self.assertEqual(s.phase, Phase.DETECTING)
        self.assertEqual(s.model_name, "a")
        self.assertEqual(loading_failed(begin_loading(ControllerState(), "x")).phase, Phase.IDLE)

    def test_progress_outside_loading_rejected(self) -> None:
        with self.assertRaises(ValueError):
            loading_progress(ControllerState(), 0.3)
        s = loading_progress(begin_loading(ControllerState(), "m"), 3.0)
        self.assertEqual(s.progress, 1.0)


if __name__ == "__main__":
    unittest.main()

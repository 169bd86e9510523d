import json
import tempfile
import unittest
from pathlib import Path

import numpy as np

from yolo_live.errors import InferenceError, ModelLoadError
from yolo_live.metadata import load_class_names
from yolo_live.model import (
    BUILD_PROGRESS,
    READ_PROGRESS,
    ModelRepository,
    ModelState,
    load_manifest,
    manifest_path,
    normalize_input_shape,
)
from yolo_live.postprocess import TensorLayout


class StubRuntime:
    def __init__(self, input_shape=(1, 3, 64, 64), output_shape=(1, 6, 100)) -> None:
        self.input_shape = input_shape
        self.output_shape = output_shape
        self.blobs = []
        self.closed = False

    def infer(self, blob: np.ndarray) -> np.ndarray:
        self.blobs.append(blob.shape)
        return np.zeros(self.output_shape, dtype=np.float32)

    def close(self) -> None:
        self.closed = True


class BrokenRuntime(StubRuntime):
    def infer(self, blob: np.ndarray) -> np.ndarray:
        raise RuntimeError("device lost")


def _write_model(root: Path, name: str, manifest: dict, files: dict) -> Path:
    d = root / f"{name}_web_model"
    d.mkdir(parents=True)
    (d / "model.json").write_text(json.dumps(manifest), encoding="utf-8")
    for fname, content in files.items():
        (d / fname).write_bytes(content)
    return d


class TestManifest(unittest.TestCase):
    def test_manifest_path_convention(self) -> None:
        self.assertEqual(manifest_path("yolo11n", "/srv/app"), Path("/srv/app/yolo11n_web_model/model.json"))

    def test_load_manifest_with_metadata_names(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            d = _write_model(
                Path(tmp),
                "yolo11n",
                {"graph": "model.onnx", "shards": ["model.onnx.data"], "layout": "class_scores_only"},
                {"model.onnx": b"x", "model.onnx.data": b"y"},
            )
            (d / "metadata.yaml").write_text(
                "description: test\nnames:\n  0: person\n  1: 'traffic light'\nimgsz:\n- 640\n- 640\n",
                encoding="utf-8",
            )
            m = load_manifest("yolo11n", tmp)
        self.assertEqual(m.format, "onnx")
        self.assertEqual(m.layout, TensorLayout.CLASS_SCORES_ONLY)
        self.assertEqual(m.names, {0: "person", 1: "traffic light"})
        self.assertEqual([p.name for p in m.files], ["model.onnx", "model.onnx.data"])

    def test_manifest_errors(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(ModelLoadError):
                load_manifest("missing", tmp)
            _write_model(Path(tmp), "bad", {"graph": "m.onnx", "layout": "sideways"}, {})
            with self.assertRaises(ModelLoadError):
                load_manifest("bad", tmp)
            _write_model(Path(tmp), "extra", {"graph": "m.onnx", "weights": []}, {})
            with self.assertRaises(ModelLoadError):
                load_manifest("extra", tmp)
            _write_model(Path(tmp), "nograph", {"format": "onnx"}, {})
            with self.assertRaises(ModelLoadError):
                load_manifest("nograph", tmp)

    def test_metadata_names_block_ends_at_next_key(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "metadata.yaml"
            path.write_text("names:\n  0: cat\n  1: dog\nbatch: 1\nother:\n  2: nope\n", encoding="utf-8")
            self.assertEqual(load_class_names(path), {0: "cat", 1: "dog"})


class TestModelState(unittest.TestCase):
    def test_normalize_input_shape(self) -> None:
        self.assertEqual(normalize_input_shape((1, 3, 640, 640)), ((1, 640, 640, 3), False))
        self.assertEqual(normalize_input_shape((1, 640, 640, 3)), ((1, 640, 640, 3), True))
        self.assertEqual(normalize_input_shape(("b", 3, "h", "w"), (1, 320, 320, 3)), ((1, 320, 320, 3), False))
        with self.assertRaises(ModelLoadError):
            normalize_input_shape((1, 3, 480, 640))
        with self.assertRaises(ModelLoadError):
            normalize_input_shape((1, 3, "h", "w"))

    def test_from_runtime_resolves_format_once(self) -> None:
        state = ModelState.from_runtime("m", StubRuntime(), class_names={0: "a", 1: "b"})
        self.assertEqual(state.input_size, 64)
        self.assertEqual(state.blob_shape, (1, 3, 64, 64))
        self.assertTrue(state.tensor_format.channels_first)
        self.assertEqual(state.tensor_format.layout, TensorLayout.CLASS_SCORES_ONLY)

    def test_dispose_releases_runtime(self) -> None:
        net = StubRuntime()
        state = ModelState.from_runtime("m", net)
        state.dispose()
        self.assertTrue(net.closed)
        self.assertTrue(state.disposed)
        state.dispose()


class TestModelRepository(unittest.IsolatedAsyncioTestCase):
    async def test_load_reports_progress_and_warms_up(self) -> None:
        net = StubRuntime()
        with tempfile.TemporaryDirectory() as tmp:
            _write_model(
                Path(tmp),
                "m",
                {"graph": "g.onnx", "shards": ["s1.bin", "s2.bin"], "names": ["a", "b"]},
                {"g.onnx": b"0" * 10, "s1.bin": b"1" * 25, "s2.bin": b"2" * 15},
            )
            progress = []
            seen_at_build = []

            def factory(m):
                seen_at_build.extend(progress)
                return net

            repo = ModelRepository(tmp, runtime_factory=factory, chunk_size=10)
            state = await repo.load("m", progress=progress.append)

        self.assertEqual(progress[0], 0.0)
        self.assertEqual(progress[-1], 1.0)
        self.assertEqual(progress, sorted(progress))
        self.assertGreater(len(progress), 3)
        # File reads fill only part of the range; building the runtime reports the rest.
        self.assertAlmostEqual(seen_at_build[-1], READ_PROGRESS)
        self.assertTrue(all(p <= READ_PROGRESS for p in seen_at_build))
        self.assertIn(BUILD_PROGRESS, progress)
        self.assertEqual(net.blobs, [(1, 3, 64, 64)])
        self.assertEqual(state.class_names, {0: "a", 1: "b"})

    async def test_missing_shard_fails_without_runtime(self) -> None:
        created = []
        with tempfile.TemporaryDirectory() as tmp:
            _write_model(Path(tmp), "m", {"graph": "g.onnx", "shards": ["gone.bin"]}, {"g.onnx": b"0"})
            repo = ModelRepository(tmp, runtime_factory=lambda m: created.append(m) or StubRuntime())
            with self.assertRaises(ModelLoadError):
                await repo.load("m")
        self.assertEqual(created, [])

    async def test_runtime_failure_is_model_load_error_and_closes_runtime(self) -> None:
        net = BrokenRuntime()
        with tempfile.TemporaryDirectory() as tmp:
            _write_model(Path(tmp), "m", {"graph": "g.onnx"}, {"g.onnx": b"0"})
            repo = ModelRepository(tmp, runtime_factory=lambda m: net)
            with self.assertRaises(ModelLoadError):
                await repo.load("m")
        self.assertTrue(net.closed)

    async def test_infer_wraps_runtime_errors(self) -> None:
        state = ModelState.from_runtime("m", BrokenRuntime())
        with self.assertRaises(InferenceError):
            await state.infer(np.zeros(state.blob_shape, dtype=np.float32))
        state.dispose()
        with self.assertRaises(InferenceError):
            await state.infer(np.zeros((1, 3, 64, 64), dtype=np.float32))


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import InferenceError, ModelLoadError
from .metadata import coerce_class_names, load_class_names
from .postprocess import TensorFormat, TensorLayout, resolve_tensor_format


PathLike = Union[str, Path]
ProgressCallback = Callable[[float], None]

# Share of the progress range covered by reading files; runtime build and warmup fill the rest.
READ_PROGRESS = 0.8
BUILD_PROGRESS = 0.9

logger = logging.getLogger(__name__)

MANIFEST_NAME = "model.json"
METADATA_NAME = "metadata.yaml"
SUPPORTED_FORMATS = ("onnx", "torchscript")


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", "setup.py", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery; model directories live there by default.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def model_dir(model_name: str, root: Optional[PathLike] = None) -> Path:
    base = Path(root).resolve() if root is not None else find_project_root()
    return base / f"{model_name}_web_model"


def manifest_path(model_name: str, root: Optional[PathLike] = None) -> Path:
    """`<root>/<model_name>_web_model/model.json`"""

    return model_dir(model_name, root) / MANIFEST_NAME


@dataclass(frozen=True)
class ModelManifest:
    name: str
    directory: Path
    format: str
    graph: str
    shards: Tuple[str, ...] = ()
    input_shape: Optional[Tuple[int, int, int, int]] = None
    layout: Optional[TensorLayout] = None
    normalized_boxes: bool = False
    names: Dict[int, str] = field(default_factory=dict)

    @property
    def graph_path(self) -> Path:
        return self.directory / self.graph

    @property
    def files(self) -> Tuple[Path, ...]:
        return (self.graph_path, *(self.directory / s for s in self.shards))


def load_manifest(model_name: str, root: Optional[PathLike] = None) -> ModelManifest:
    path = manifest_path(model_name, root)
    if not path.exists():
        raise ModelLoadError(f"Model manifest not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ModelLoadError(f"Invalid model manifest: {path}") from exc
    if not isinstance(payload, dict):
        raise ModelLoadError("Model manifest must be a JSON object")

    allowed = {"format", "graph", "shards", "input_shape", "layout", "normalized_boxes", "names"}
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ModelLoadError(f"Unknown model manifest keys: {unknown}")

    fmt = payload.get("format", "onnx")
    if fmt not in SUPPORTED_FORMATS:
        raise ModelLoadError(f"Unsupported model format {fmt!r}; expected one of {SUPPORTED_FORMATS}")
    graph = payload.get("graph")
    if not isinstance(graph, str) or not graph:
        raise ModelLoadError("Model manifest needs a 'graph' entry file")
    shards = payload.get("shards", [])
    if not isinstance(shards, list) or not all(isinstance(s, str) for s in shards):
        raise ModelLoadError("'shards' must be a list of file names")

    input_shape = payload.get("input_shape")
    if input_shape is not None:
        if (
            not isinstance(input_shape, list)
            or len(input_shape) != 4
            or not all(isinstance(d, int) and not isinstance(d, bool) and d > 0 for d in input_shape)
        ):
            raise ModelLoadError("'input_shape' must be [batch, height, width, channels]")
        input_shape = tuple(input_shape)

    layout = payload.get("layout")
    if layout is not None:
        try:
            layout = TensorLayout(layout)
        except ValueError as exc:
            raise ModelLoadError(f"Unknown tensor layout {layout!r}") from exc

    directory = path.parent
    try:
        if "names" in payload:
            names = coerce_class_names(payload["names"])
        elif (directory / METADATA_NAME).exists():
            names = load_class_names(directory / METADATA_NAME)
        else:
            names = {}
    except ValueError as exc:
        raise ModelLoadError(str(exc)) from exc

    return ModelManifest(
        name=model_name,
        directory=directory,
        format=fmt,
        graph=graph,
        shards=tuple(shards),
        input_shape=input_shape,
        layout=layout,
        normalized_boxes=bool(payload.get("normalized_boxes", False)),
        names=names,
    )


def _as_int(dim: Any) -> Optional[int]:
    return dim if isinstance(dim, int) and dim > 0 else None


def normalize_input_shape(
    declared: Sequence[Any],
    hint: Optional[Tuple[int, int, int, int]] = None,
) -> Tuple[Tuple[int, int, int, int], bool]:
    """
    Turn a runtime's declared input shape into (batch, height, width, channels).

    Returns the shape plus `channels_last` (True when the runtime wants NHWC).
    Symbolic dimensions are filled from the manifest hint.
    """

    dims = list(declared)
    if len(dims) != 4:
        raise ModelLoadError(f"Expected a 4-D image input, got {tuple(declared)}")

    if _as_int(dims[3]) in (1, 3) and _as_int(dims[1]) not in (1, 3):
        channels_last = True
        h, w, c = dims[1], dims[2], dims[3]
    else:
        channels_last = False
        c, h, w = dims[1], dims[2], dims[3]

    hint = hint or (1, 0, 0, 3)
    shape = (
        _as_int(dims[0]) or hint[0],
        _as_int(h) or hint[1],
        _as_int(w) or hint[2],
        _as_int(c) or hint[3],
    )
    if shape[1] <= 0 or shape[2] <= 0:
        raise ModelLoadError(f"Input size is dynamic ({tuple(declared)}); set input_shape in the manifest")
    if shape[1] != shape[2]:
        raise ModelLoadError(f"Model input must be square, got {shape[1]}x{shape[2]}")
    return shape, channels_last


@dataclass
class ModelState:
    """
    The single live model. Replaced wholesale on model switch; `dispose()` the
    old one before installing the new one.
    """

    name: str
    net: Any
    input_shape: Tuple[int, int, int, int]
    channels_last: bool
    tensor_format: TensorFormat
    class_names: Dict[int, str] = field(default_factory=dict)

    @classmethod
    def from_runtime(
        cls,
        name: str,
        net: Any,
        *,
        layout: Optional[TensorLayout] = None,
        class_names: Optional[Dict[int, str]] = None,
        input_shape_hint: Optional[Tuple[int, int, int, int]] = None,
        normalized_boxes: bool = False,
    ) -> "ModelState":
        shape, channels_last = normalize_input_shape(net.input_shape, input_shape_hint)
        names = dict(class_names or {})
        fmt = resolve_tensor_format(
            net.output_shape,
            input_size=shape[1],
            layout=layout,
            num_classes=len(names) or None,
            normalized_boxes=normalized_boxes,
        )
        return cls(
            name=name,
            net=net,
            input_shape=shape,
            channels_last=channels_last,
            tensor_format=fmt,
            class_names=names,
        )

    @property
    def input_size(self) -> int:
        return self.input_shape[1]

    @property
    def blob_shape(self) -> Tuple[int, int, int, int]:
        b, h, w, c = self.input_shape
        return (b, h, w, c) if self.channels_last else (b, c, h, w)

    @property
    def disposed(self) -> bool:
        return self.net is None

    async def infer(self, blob: np.ndarray) -> np.ndarray:
        """
        Run the runtime on one blob. This is the only suspension point of a cycle.
        """

        net = self.net
        if net is None:
            raise InferenceError(f"Model {self.name!r} was disposed")
        try:
            infer_async = getattr(net, "infer_async", None)
            if infer_async is not None:
                return await infer_async(blob)
            return await asyncio.to_thread(net.infer, blob)
        except InferenceError:
            raise
        except Exception as exc:
            raise InferenceError(f"Inference failed on model {self.name!r}: {exc}") from exc

    def warmup(self) -> None:
        dummy = np.ones(self.blob_shape, dtype=np.float32)
        self.net.infer(dummy)

    def dispose(self) -> None:
        net, self.net = self.net, None
        if net is not None and hasattr(net, "close"):
            net.close()
        logger.info("Disposed model %s", self.name)


def create_runtime(
    manifest: ModelManifest,
    *,
    onnx_providers: Optional[Sequence[str]] = None,
    torch_device: str = "cpu",
) -> Any:
    if manifest.format == "onnx":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        return OnnxRuntimeBackend(manifest.graph_path, OnnxRuntimeBackendConfig(providers=onnx_providers))

    if manifest.format == "torchscript":
        from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

        if manifest.input_shape is None:
            raise ModelLoadError("TorchScript models need input_shape in the manifest")
        b, h, w, c = manifest.input_shape
        return TorchScriptBackend(manifest.graph_path, (b, c, h, w), TorchScriptBackendConfig(device=torch_device))

    raise ModelLoadError(f"Unsupported model format: {manifest.format!r}")


class ModelRepository:
    """
    Resolves `<root>/<name>_web_model/model.json` and builds a ready ModelState.

    Loading reads the graph and every shard in chunks (progress 0 to 0.8 by
    bytes read), constructs the runtime (0.9) and warms it up once (1.0).
    """

    def __init__(
        self,
        root: Optional[PathLike] = None,
        *,
        onnx_providers: Optional[Sequence[str]] = None,
        torch_device: str = "cpu",
        runtime_factory: Optional[Callable[[ModelManifest], Any]] = None,
        chunk_size: int = 1 << 20,
    ) -> None:
        self.root = Path(root).resolve() if root is not None else find_project_root()
        self.chunk_size = chunk_size
        if runtime_factory is None:
            def runtime_factory(m: ModelManifest) -> Any:
                return create_runtime(m, onnx_providers=onnx_providers, torch_device=torch_device)
        self._runtime_factory = runtime_factory

    def manifest(self, model_name: str) -> ModelManifest:
        return load_manifest(model_name, self.root)

    async def _read_artifacts(self, manifest: ModelManifest, progress: Optional[ProgressCallback]) -> None:
        sizes = []
        for path in manifest.files:
            if not path.is_file():
                raise ModelLoadError(f"Model file not found: {path}")
            sizes.append(path.stat().st_size)

        total = sum(sizes)
        done = 0
        for path in manifest.files:
            with open(path, "rb") as f:
                while True:
                    chunk = f.read(self.chunk_size)
                    if not chunk:
                        break
                    done += len(chunk)
                    if progress is not None and total:
                        progress(READ_PROGRESS * min(done / total, 1.0))
                    await asyncio.sleep(0)

    async def load(self, model_name: str, progress: Optional[ProgressCallback] = None) -> ModelState:
        if progress is not None:
            progress(0.0)
        manifest = self.manifest(model_name)
        await self._read_artifacts(manifest, progress)

        def _build(net: Any) -> ModelState:
            try:
                state = ModelState.from_runtime(
                    model_name,
                    net,
                    layout=manifest.layout,
                    class_names=manifest.names,
                    input_shape_hint=manifest.input_shape,
                    normalized_boxes=manifest.normalized_boxes,
                )
                state.warmup()
            except BaseException:
                if hasattr(net, "close"):
                    net.close()
                raise
            return state

        try:
            net = await asyncio.to_thread(self._runtime_factory, manifest)
            if progress is not None:
                progress(BUILD_PROGRESS)
            state = await asyncio.to_thread(_build, net)
        except ModelLoadError:
            raise
        except Exception as exc:
            raise ModelLoadError(f"Could not load model {model_name!r}: {exc}") from exc

        if progress is not None:
            progress(1.0)
        logger.info(
            "Loaded model %s (input %s, layout %s, %d classes)",
            model_name,
            state.input_shape,
            state.tensor_format.layout.value,
            len(state.class_names),
        )
        return state

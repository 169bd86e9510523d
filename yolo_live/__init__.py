"""
Live YOLO detection: letterbox, decode, per-class NMS, remap and a
cancellable asyncio detection loop driving one draw surface.

Pre/post-processing only needs NumPy and OpenCV; inference runtimes
(ONNX Runtime, TorchScript) are imported when a model is loaded.
"""

from .types import Candidates, Detection, Frame, LetterboxTransform, SourceKind
from .arena import TensorArena
from .letterbox import letterbox, to_blob
from .nms import NMSConfig, batched_nms, box_iou, nms
from .postprocess import (
    TensorFormat,
    TensorLayout,
    YoloPostConfig,
    YoloPostprocessor,
    decode,
    remap_boxes,
    resolve_tensor_format,
)
from .metadata import load_class_names
from .model import ModelRepository, ModelState, find_project_root, load_manifest, manifest_path
from .runtime import DetectionPipeline
from .render import Canvas, draw_detections
from .summary import DetectionTable, TableRow, build_table, count_detections
from .config import DetectConfig, clamp_confidence, load_detect_config
from .controller import DetectionController
from .events import Closed, FrameReady, ModelSelected, Opened, Shutdown, ThresholdChanged

__all__ = [
    "Candidates",
    "Detection",
    "Frame",
    "LetterboxTransform",
    "SourceKind",
    "TensorArena",
    "letterbox",
    "to_blob",
    "NMSConfig",
    "batched_nms",
    "box_iou",
    "nms",
    "TensorFormat",
    "TensorLayout",
    "YoloPostConfig",
    "YoloPostprocessor",
    "decode",
    "remap_boxes",
    "resolve_tensor_format",
    "load_class_names",
    "ModelRepository",
    "ModelState",
    "find_project_root",
    "load_manifest",
    "manifest_path",
    "DetectionPipeline",
    "Canvas",
    "draw_detections",
    "DetectionTable",
    "TableRow",
    "build_table",
    "count_detections",
    "DetectConfig",
    "clamp_confidence",
    "load_detect_config",
    "DetectionController",
    "Closed",
    "FrameReady",
    "ModelSelected",
    "Opened",
    "Shutdown",
    "ThresholdChanged",
]

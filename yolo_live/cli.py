from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from .config import DetectConfig, load_detect_config
from .controller import DetectionController
from .events import ModelSelected, Opened, Shutdown
from .logging_setup import configure_logging
from .model import ModelRepository
from .sources import CameraSource, ImageSource, MediaSource, VideoSource
from .state import ControllerState, Phase
from .summary import DetectionCounts, build_table, format_table


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run live YOLO detection on an image, a video file or a webcam.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", default=None, help="Path to an input image.")
    src.add_argument("--video", default=None, help="Path to an input video file.")
    src.add_argument("--webcam", type=int, default=None, help="Webcam index (e.g., 0).")
    parser.add_argument("--config", default=None, help="JSON config file (see DetectConfig).")
    parser.add_argument("--model-name", default=None, help="Model name; loads <root>/<name>_web_model/model.json.")
    parser.add_argument("--models-root", default=None, help="Directory holding the *_web_model folders.")
    parser.add_argument("--conf", type=float, default=None, help="Confidence threshold in [0.01, 0.9].")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS.")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--show", action="store_true", help="Show a window with the rendered canvas.")
    parser.add_argument("--out", default=None, help="Write the last rendered canvas to this image path.")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after N rendered frames (0 = no limit).")
    parser.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, ...).")
    parser.add_argument("--log-file", default=None, help="Optional rotating log file.")
    return parser


def _make_source(args: argparse.Namespace) -> MediaSource:
    if args.image is not None:
        return ImageSource(args.image)
    if args.video is not None:
        return VideoSource(args.video)
    return CameraSource(args.webcam)


async def run_detection(args: argparse.Namespace, cfg: DetectConfig) -> int:
    providers = None
    if args.onnx_providers:
        providers = [p.strip() for p in str(args.onnx_providers).split(",") if p.strip()]

    repository = ModelRepository(cfg.models_root, onnx_providers=providers)
    controller = DetectionController(repository, config=cfg)
    source = _make_source(args)

    done = asyncio.Event()
    errors: List[str] = []
    latest: DetectionCounts = {}
    rendered = 0
    opened = False

    def on_state(state: ControllerState) -> None:
        nonlocal opened
        if state.source is not None:
            opened = True
        elif opened and state.phase is Phase.IDLE:
            done.set()

    def on_counts(counts: DetectionCounts) -> None:
        nonlocal latest, rendered
        if controller.state.source is None:
            return
        latest = counts
        rendered += 1
        if args.show and controller.canvas is not None:
            import cv2  # type: ignore

            cv2.imshow("detections", controller.canvas.image)
            if (cv2.waitKey(1) & 0xFF) == ord("q"):
                done.set()
        if not source.kind.streaming or (args.max_frames and rendered >= args.max_frames):
            done.set()

    def on_error(message: str) -> None:
        errors.append(message)
        if not controller.state.detecting and controller.state.phase is not Phase.LOADING:
            done.set()

    controller.subscribe(on_state=on_state, on_counts=on_counts, on_error=on_error)
    consumer = asyncio.create_task(controller.run())
    controller.post(ModelSelected(cfg.model_name))
    controller.post(Opened(source))

    await done.wait()
    if args.out and controller.canvas is not None and rendered:
        controller.canvas.save(args.out)
    if args.show:
        import cv2  # type: ignore

        if not source.kind.streaming:
            cv2.waitKey(0)
        cv2.destroyAllWindows()

    controller.post(Shutdown())
    await consumer

    print(format_table(build_table(latest, cfg.table_rows)))
    for message in errors:
        print(f"Error: {message}")
    return 0 if rendered else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    cfg = load_detect_config(Path(args.config)) if args.config else DetectConfig()
    cfg = cfg.with_overrides(
        model_name=args.model_name,
        models_root=args.models_root,
        confidence_threshold=args.conf,
        iou_threshold=args.iou,
        log_level=args.log_level,
    )
    if args.max_frames < 0:
        raise ValueError("--max-frames must be >= 0")

    configure_logging(cfg.log_level, args.log_file)
    return asyncio.run(run_detection(args, cfg))

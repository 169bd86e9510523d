"""
Inference runtimes for yolo_live.

Each backend is imported lazily by `yolo_live.model` so pre/post-processing
stays usable without an inference runtime installed. A backend exposes:

- `input_shape` / `output_shape`
- `infer(blob) -> np.ndarray`
- `close()` to release runtime memory
"""

from __future__ import annotations

__all__ = []

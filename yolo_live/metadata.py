from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Union


def load_class_names(metadata_path: Union[str, Path]) -> Dict[int, str]:
    """
    Read the `names:` block of a web-export `metadata.yaml`:

        description: Ultralytics YOLO11n model
        names:
          0: person
          1: bicycle
        imgsz:
        - 640

    Only the `names` mapping is needed, so this avoids a PyYAML dependency.
    """

    names: Dict[int, str] = {}
    in_names = False

    with open(metadata_path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.rstrip("\n")
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            if stripped == "names:":
                in_names = True
                continue
            if not in_names:
                continue
            # An unindented key closes the block.
            if not line[:1].isspace():
                break
            if ":" not in stripped:
                continue
            left, right = stripped.split(":", 1)
            left = left.strip().strip("'").strip('"')
            if not left.isdigit():
                continue
            names[int(left)] = right.strip().strip("'").strip('"')

    return names


def coerce_class_names(payload: Any) -> Dict[int, str]:
    """
    Accept the `names` value of a JSON manifest: either a list or a {"0": "person"} mapping.
    """

    if isinstance(payload, list):
        return {i: str(name) for i, name in enumerate(payload)}
    if isinstance(payload, Mapping):
        out: Dict[int, str] = {}
        for key, value in payload.items():
            try:
                out[int(key)] = str(value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Class id must be an integer, got {key!r}") from exc
        return out
    raise ValueError("names must be a list or an object mapping class id to label")

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Tuple


logger = logging.getLogger(__name__)

Releaser = Callable[[Any], None]


class TensorArena:
    """
    Scoped owner for the buffers allocated during one detection cycle.

    Every blob, raw model output and decode intermediate is registered with
    `track()`. `release()` (or leaving the `with` block) drops all of them and
    calls the backend's release hook where one was given, so buffers managed
    by the inference runtime are freed on every exit path, cancellation included.

    `TensorArena.outstanding()` counts tracked-but-unreleased buffers across all
    arenas; it must return to its baseline once a cycle finishes.
    """

    _outstanding = 0

    def __init__(self, name: str = "cycle") -> None:
        self.name = name
        self._items: List[Tuple[Any, Optional[Releaser]]] = []
        self._closed = False

    @classmethod
    def outstanding(cls) -> int:
        return cls._outstanding

    def __len__(self) -> int:
        return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def track(self, tensor: Any, release: Optional[Releaser] = None) -> Any:
        if self._closed:
            raise RuntimeError(f"Arena {self.name!r} is already released.")
        self._items.append((tensor, release))
        TensorArena._outstanding += 1
        return tensor

    def transfer(self, tensor: Any, other: "TensorArena") -> Any:
        """Move ownership of `tensor` to `other` (e.g. to cache a raw output past the cycle)."""

        for i, (item, release) in enumerate(self._items):
            if item is tensor:
                del self._items[i]
                TensorArena._outstanding -= 1
                return other.track(item, release)
        raise KeyError("tensor is not owned by this arena")

    def release(self) -> None:
        if self._closed:
            return
        items, self._items = self._items, []
        self._closed = True
        for tensor, release in reversed(items):
            TensorArena._outstanding -= 1
            if release is not None:
                release(tensor)
        if items:
            logger.debug("Released %d tensor(s) from arena %r", len(items), self.name)

    def __enter__(self) -> "TensorArena":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

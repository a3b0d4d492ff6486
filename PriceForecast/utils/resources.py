"""Weak-reference bookkeeping for tensors and networks owned by a run."""

from __future__ import annotations

import threading
import weakref
from typing import Any, List, Tuple


class ResourceTracker:
    """Record weak references to objects allocated by a training run.

    The tracker never keeps anything alive. After a run has finished (or was
    cancelled) and the caller dropped its own references, :meth:`alive`
    reports which tracked objects are still reachable, i.e. leaked.
    """

    def __init__(self) -> None:
        self._refs: List[Tuple[str, weakref.ref]] = []
        self._lock = threading.Lock()

    def track(self, obj: Any, label: str) -> Any:
        with self._lock:
            self._refs.append((label, weakref.ref(obj)))
        return obj

    def alive(self) -> List[str]:
        with self._lock:
            return [label for label, ref in self._refs if ref() is not None]

    def __len__(self) -> int:
        return len(self._refs)


__all__ = ["ResourceTracker"]

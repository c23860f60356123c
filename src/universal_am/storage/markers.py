"""Completion markers: the persisted record of which steps have finished."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from pathlib import Path

__all__ = ["DEFAULT_MARKER_NAME", "FileMarkerStore", "MarkerStore", "MemoryMarkerStore"]

DEFAULT_MARKER_NAME = ".done"


class MarkerStore(ABC):
    """Records completion of steps identified by a relative, slash-separated id.

    Step ids are the step's output directory relative to the project root,
    e.g. ``exp/tri3`` or ``data/101/data/train``.
    """

    @abstractmethod
    def is_complete(self, step_id: str) -> bool:
        """Return whether ``step_id`` finished successfully in a previous run."""

    @abstractmethod
    def mark_complete(self, step_id: str) -> None:
        """Record that ``step_id`` finished successfully."""


class FileMarkerStore(MarkerStore):
    """Marker store backed by sentinel files inside each step's output directory.

    Only the presence of the sentinel matters; it is written empty.
    """

    def __init__(self, root: Path, *, marker_name: str = DEFAULT_MARKER_NAME) -> None:
        self.root = Path(root)
        self.marker_name = marker_name

    def marker_path(self, step_id: str) -> Path:
        return self.root / step_id / self.marker_name

    def is_complete(self, step_id: str) -> bool:
        return self.marker_path(step_id).is_file()

    def mark_complete(self, step_id: str) -> None:
        marker = self.marker_path(step_id)
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.touch()


class MemoryMarkerStore(MarkerStore):
    """In-process marker store."""

    def __init__(self, completed: set[str] | None = None) -> None:
        self._completed = set(completed or ())
        self._lock = threading.Lock()

    def is_complete(self, step_id: str) -> bool:
        with self._lock:
            return step_id in self._completed

    def mark_complete(self, step_id: str) -> None:
        with self._lock:
            self._completed.add(step_id)

    @property
    def completed(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._completed)

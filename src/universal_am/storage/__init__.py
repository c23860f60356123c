"""Filesystem layout and persisted pipeline state."""

from __future__ import annotations

from .markers import FileMarkerStore, MarkerStore, MemoryMarkerStore
from .paths import PathsConfig, build_paths

__all__ = [
    "FileMarkerStore",
    "MarkerStore",
    "MemoryMarkerStore",
    "PathsConfig",
    "build_paths",
]

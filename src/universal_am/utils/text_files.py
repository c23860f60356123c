"""Line-oriented reading of the UTF-8 tables and lexicons the toolkit exchanges."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

from universal_am.exceptions import DataError

__all__ = ["read_lines"]


def read_lines(path: Path) -> Iterator[tuple[int, str]]:
    """Yield ``(line_number, line)`` pairs from a UTF-8 text file.

    Lines keep their terminator. Bytes that are not valid UTF-8 raise
    :class:`DataError` naming the file and line.
    """
    with path.open("rb") as handle:
        for line_number, raw in enumerate(handle, start=1):
            try:
                line = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise DataError(
                    f"Invalid UTF-8 at {path}:{line_number} (byte {exc.start}): {raw!r}"
                ) from exc
            yield line_number, line

"""Subprocess boundary with the external speech toolkit and its job dispatcher."""

from __future__ import annotations

import os
import subprocess
from collections import deque
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Union

from universal_am.exceptions import StepFailure
from universal_am.utils.logging import get_logger

__all__ = ["Argument", "ToolkitRunner"]

LOGGER = get_logger(__name__)

Argument = Union[str, int, float, Path]

TAIL_LINES = 20


class ToolkitRunner:
    """Runs toolkit scripts and blocks until they exit.

    The scripts fan work out to the cluster dispatcher themselves (``--cmd``);
    from this side a step is a single process whose exit status covers every
    sub-job it submitted. A non-zero status raises :class:`StepFailure`.
    """

    def __init__(
        self,
        *,
        project_root: Path,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.project_root = Path(project_root)
        self.env = dict(env) if env is not None else None

    def run(
        self,
        script: str | Path,
        args: Sequence[Argument] = (),
        *,
        cwd: Path | None = None,
        log_path: Path | None = None,
    ) -> None:
        """Invoke ``script`` with ``args`` from ``cwd`` (the project root by default)."""
        workdir = Path(cwd) if cwd is not None else self.project_root
        command = [self._script_path(script), *(str(arg) for arg in args)]
        LOGGER.info("Running %s (cwd=%s)", " ".join(command), workdir)

        environment = None
        if self.env is not None:
            environment = {**os.environ, **self.env}

        tail: deque[str] = deque(maxlen=TAIL_LINES)
        try:
            process = subprocess.Popen(  # noqa: S603 - command is constructed from trusted configuration
                command,
                cwd=workdir,
                env=environment,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            raise StepFailure(
                f"Unable to start {command[0]}: {exc}", command=command
            ) from exc

        log_handle = None
        try:
            if log_path is not None:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                log_handle = log_path.open("a", encoding="utf-8")
            assert process.stdout is not None
            for line in process.stdout:
                stripped = line.rstrip("\n")
                tail.append(stripped)
                LOGGER.debug("%s: %s", Path(command[0]).name, stripped)
                if log_handle is not None:
                    log_handle.write(line)
            returncode = process.wait()
        finally:
            if log_handle is not None:
                log_handle.close()
            if process.poll() is None:
                process.kill()
                process.wait()

        if returncode != 0:
            details = "\n".join(tail)
            raise StepFailure(
                f"{command[0]} exited with status {returncode}:\n{details}".rstrip(),
                command=command,
                returncode=returncode,
            )

    def _script_path(self, script: str | Path) -> str:
        text = str(script)
        if os.path.isabs(text) or text.startswith("."):
            return text
        # Toolkit convention: scripts are addressed relative to the working directory.
        return f"./{text}" if "/" in text else text

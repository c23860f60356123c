"""Exception types for universal-am."""

from __future__ import annotations

from collections.abc import Sequence

__all__ = [
    "ConfigurationError",
    "DataError",
    "PipelineError",
    "StateError",
    "StepFailure",
]


class PipelineError(RuntimeError):
    """Base class for every error that aborts a pipeline run.

    ``item`` and ``stage`` are filled in as the error propagates so the top-level
    handler can name where the run failed.
    """

    def __init__(self, message: str, *, item: str | None = None, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.item = item
        self.stage = stage

    def describe(self) -> str:
        location = []
        if self.stage:
            location.append(f"stage '{self.stage}'")
        if self.item:
            location.append(f"item '{self.item}'")
        if not location:
            return self.message
        return f"{' / '.join(location)}: {self.message}"

    def __str__(self) -> str:
        return self.describe()


class ConfigurationError(PipelineError):
    """Raised when configuration is missing, ambiguous or malformed."""


class DataError(PipelineError):
    """Raised for malformed lexicons, duplicate identifiers and merge conflicts."""


class StateError(PipelineError):
    """Raised when an expected upstream artifact or marker is missing."""


class StepFailure(PipelineError):
    """Raised when a delegated toolkit step exits with a non-zero status."""

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] = (),
        returncode: int | None = None,
        item: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message, item=item, stage=stage)
        self.command = list(command)
        self.returncode = returncode

"""Stage-gated, resumable orchestration of the multilingual training recipe."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path

from universal_am.exceptions import ConfigurationError, PipelineError, StateError
from universal_am.pipelines.context import PipelineContext, build_default_context
from universal_am.pipelines.merge import combine_corpus_directories, combine_dictionary_directories
from universal_am.pipelines.training import SequentialTrainer
from universal_am.pipelines.workspace import (
    prefix_item_corpus,
    prepare_item_data,
    setup_workspace,
    standardize_item_lexicon,
)
from universal_am.utils.logging import get_logger

__all__ = [
    "DEFAULT_STAGES",
    "PipelineContext",
    "StageDefinition",
    "StageOutcome",
    "StageRunner",
    "StageStatus",
    "build_default_context",
    "for_each_item",
]

LOGGER = get_logger(__name__)

StageBody = Callable[[PipelineContext], str | None]
ItemAction = Callable[[PipelineContext, str], object]

PREPARE_LANG_SCRIPT = "utils/prepare_lang.sh"


class StageStatus(Enum):
    """What happened to a stage during a run."""

    BELOW_START = auto()
    ALREADY_COMPLETE = auto()
    COMPLETED = auto()


@dataclass(frozen=True, slots=True)
class StageDefinition:
    """A single pipeline stage definition."""

    ordinal: int
    name: str
    runner: StageBody


@dataclass(slots=True)
class StageOutcome:
    stage: StageDefinition
    status: StageStatus
    message: str = ""
    duration_seconds: float = 0.0


class StageRunner:
    """Runs stages in ascending ordinal order, gated by completion markers.

    Stages below ``start_stage`` are assumed complete. A stage whose marker is
    set is skipped without looking at its outputs. The first stage that runs
    requires the marker of the stage immediately before it. Any error aborts
    the run; the failing stage keeps no marker.
    """

    def __init__(
        self,
        context: PipelineContext,
        stages: Iterable[StageDefinition] | None = None,
    ) -> None:
        self._context = context
        selected = stages if stages is not None else DEFAULT_STAGES
        self._stages = sorted(selected, key=lambda stage: stage.ordinal)
        ordinals = [stage.ordinal for stage in self._stages]
        if len(set(ordinals)) != len(ordinals):
            raise ConfigurationError("Stage ordinals must be unique.")

    @property
    def stages(self) -> list[StageDefinition]:
        return list(self._stages)

    def stage_id(self, stage: StageDefinition) -> str:
        return self._context.step_id(self._context.paths.stage_dir(stage.ordinal))

    def is_complete(self, stage: StageDefinition) -> bool:
        return self._context.markers.is_complete(self.stage_id(stage))

    def run(self, start_stage: int = 0) -> list[StageOutcome]:
        outcomes: list[StageOutcome] = []
        previous: StageDefinition | None = None
        upstream_checked = False

        for stage in self._stages:
            if stage.ordinal < start_stage:
                LOGGER.info(
                    "Stage %s (%s) is below start stage %s; skipping",
                    stage.ordinal,
                    stage.name,
                    start_stage,
                )
                outcomes.append(StageOutcome(stage, StageStatus.BELOW_START))
                previous = stage
                continue

            if self.is_complete(stage):
                LOGGER.info("Stage %s (%s) already complete; skipping", stage.ordinal, stage.name)
                outcomes.append(StageOutcome(stage, StageStatus.ALREADY_COMPLETE))
                previous = stage
                continue

            if not upstream_checked:
                upstream_checked = True
                if previous is not None and not self.is_complete(previous):
                    raise StateError(
                        f"Cannot start stage {stage.ordinal}: stage {previous.ordinal} "
                        f"({previous.name}) has not completed.",
                        stage=stage.name,
                    )

            outcomes.append(self._execute(stage))
            previous = stage

        return outcomes

    def _execute(self, stage: StageDefinition) -> StageOutcome:
        LOGGER.info("Starting stage %s (%s)", stage.ordinal, stage.name)
        started = time.perf_counter()
        try:
            message = stage.runner(self._context) or ""
        except PipelineError as exc:
            if exc.stage is None:
                exc.stage = stage.name
            LOGGER.error("Stage %s (%s) failed: %s", stage.ordinal, stage.name, exc)
            raise

        self._context.markers.mark_complete(self.stage_id(stage))
        duration = time.perf_counter() - started
        LOGGER.info("Completed stage %s (%s) in %.1fs", stage.ordinal, stage.name, duration)
        return StageOutcome(stage, StageStatus.COMPLETED, message=message, duration_seconds=duration)


def for_each_item(context: PipelineContext, action: ItemAction) -> None:
    """Apply ``action`` to every item on a bounded thread pool.

    The first failure cancels items that have not started, waits for the
    running ones and is re-raised annotated with its item.
    """
    items = context.settings.items
    workers = max(1, min(context.settings.max_workers, len(items)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="item") as executor:
        futures = {executor.submit(action, context, item): item for item in items}
        for future in as_completed(futures):
            error = future.exception()
            if error is None:
                continue
            for pending in futures:
                pending.cancel()
            item = futures[future]
            if isinstance(error, PipelineError) and error.item is None:
                error.item = item
            LOGGER.error("Item %s failed: %s", item, error)
            raise error


# ---------------------------------------------------------------------- #
# Default stage implementations
# ---------------------------------------------------------------------- #
def _stage_setup_workspaces(context: PipelineContext) -> str:
    for_each_item(context, setup_workspace)
    return f"Set up {len(context.settings.items)} item workspaces."


def _stage_prepare_data(context: PipelineContext) -> str:
    for_each_item(context, prepare_item_data)
    return f"Prepared data for {len(context.settings.items)} items."


def _stage_standardize_lexicons(context: PipelineContext) -> str:
    for_each_item(context, standardize_item_lexicon)
    return f"Standardized {len(context.settings.items)} lexicons."


def _stage_prefix_identifiers(context: PipelineContext) -> str:
    for_each_item(context, prefix_item_corpus)
    return f"Prefixed identifiers of {len(context.settings.items)} corpora."


def _stage_combine(context: PipelineContext) -> str:
    paths = context.paths
    items = context.settings.items
    corpus = combine_corpus_directories(
        {item: paths.item_prefixed_corpus(item) for item in items},
        paths.combined_corpus,
    )
    merged = combine_dictionary_directories(
        {item: paths.item_dictionary(item) for item in items},
        paths.combined_dictionary,
    )

    context.toolkit.run(
        PREPARE_LANG_SCRIPT,
        [
            "--share-silence-phones",
            "true",
            paths.relative(paths.combined_dictionary),
            context.settings.oov_word,
            paths.relative(paths.combined_dictionary / "tmp.lang"),
            paths.relative(paths.lang_dir),
        ],
        log_path=paths.logs_dir / "prepare_lang.log",
    )
    return (
        f"Combined {len(corpus)} utterances and {len(merged.dictionary.nonsilence)} words "
        f"({len(merged.conflicts)} pronunciation conflicts)."
    )


def _stage_train(context: PipelineContext) -> str:
    lang_dir = SequentialTrainer(context).run()
    return f"Training chain complete; final linguistic model {context.paths.relative(lang_dir)}."


def _reestimated_lang(context: PipelineContext, step: str) -> Path:
    lang_dir = context.paths.reestimated_lang(step)
    if not lang_dir.exists():
        raise StateError(f"Re-estimated linguistic model not found: {lang_dir}")
    return lang_dir


def _stage_cleanup(context: PipelineContext) -> str:
    settings = context.settings
    lang_dir = _reestimated_lang(context, settings.cleanup_lang_step)
    context.toolkit.run(
        settings.cleanup_script,
        ["--langdir", context.paths.relative(lang_dir)],
        log_path=context.paths.logs_dir / "cleanup.log",
    )
    return "Cleanup and segmentation complete."


def _stage_chain(context: PipelineContext) -> str:
    settings = context.settings
    lang_dir = _reestimated_lang(context, settings.chain_lang_step)
    args: list[str | int] = ["--langdir", context.paths.relative(lang_dir)]
    if settings.chain_stage is not None:
        args.extend(["--stage", settings.chain_stage])
    context.toolkit.run(
        settings.chain_script,
        args,
        log_path=context.paths.logs_dir / "chain.log",
    )
    return "Neural model training complete."


DEFAULT_STAGES = [
    StageDefinition(0, "Set Up Workspaces", _stage_setup_workspaces),
    StageDefinition(1, "Prepare Item Data", _stage_prepare_data),
    StageDefinition(2, "Standardize Lexicons", _stage_standardize_lexicons),
    StageDefinition(3, "Prefix Identifiers", _stage_prefix_identifiers),
    StageDefinition(4, "Combine Items", _stage_combine),
    StageDefinition(5, "Train GMM Chain", _stage_train),
    StageDefinition(6, "Cleanup & Segmentation", _stage_cleanup),
    StageDefinition(7, "Train Neural Model", _stage_chain),
]

"""Sequential acoustic-model training chain over the combined corpus.

Every step is a directory under ``exp/`` gated by its own completion marker.
A step may align the previous model, train a new one and re-estimate the
linguistic model from the result; later steps consume the most recent
re-estimated model (``data/lang_universalp/<step>``), or the base one.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from universal_am.exceptions import ConfigurationError, StateError
from universal_am.pipelines.context import PipelineContext, TrainingSettings
from universal_am.pipelines.corpus import SubsetResult, materialize_subsets, write_subset_manifest
from universal_am.storage.paths import PathsConfig
from universal_am.utils.logging import get_logger
from universal_am.utils.toolkit import Argument

__all__ = [
    "DEFAULT_CHAIN",
    "REESTIMATE_SCRIPT",
    "SequentialTrainer",
    "TrainingStep",
]

LOGGER = get_logger(__name__)

FULL_CORPUS = "train"
REESTIMATE_SCRIPT = "local/reestimate_langp.sh"


@dataclass(frozen=True, slots=True)
class TrainingStep:
    """One link of the training chain.

    ``alignment`` names the directory the previous model's alignments are
    written to; ``nj`` is the trainer's job count and ``align_nj`` the
    aligner's (``None`` means ``training.train_nj``). ``sized`` steps take
    their leaf and Gaussian counts from ``training.leaves`` and
    ``training.gaussians``.
    """

    name: str
    corpus: str
    trainer: str | None = None
    aligner: str | None = None
    alignment: str | None = None
    align_nj: int | None = None
    nj: int | None = None
    sized: bool = False
    reestimate: bool = False

    @property
    def output(self) -> str:
        if self.trainer is None and self.alignment is not None:
            return self.alignment
        return self.name


DEFAULT_CHAIN: tuple[TrainingStep, ...] = (
    TrainingStep("mono", "train_sub1", trainer="steps/train_mono.sh", nj=8),
    TrainingStep(
        "tri1",
        "train_sub2",
        trainer="steps/train_deltas.sh",
        aligner="steps/align_si.sh",
        alignment="mono_ali_sub2",
        align_nj=12,
        sized=True,
    ),
    TrainingStep(
        "tri2",
        "train_sub3",
        trainer="steps/train_deltas.sh",
        aligner="steps/align_si.sh",
        alignment="tri1_ali_sub3",
        align_nj=24,
        sized=True,
        reestimate=True,
    ),
    TrainingStep(
        "tri3",
        FULL_CORPUS,
        trainer="steps/train_deltas.sh",
        aligner="steps/align_si.sh",
        alignment="tri2_ali",
        sized=True,
        reestimate=True,
    ),
    TrainingStep(
        "tri4",
        FULL_CORPUS,
        trainer="steps/train_lda_mllt.sh",
        aligner="steps/align_si.sh",
        alignment="tri3_ali",
        sized=True,
        reestimate=True,
    ),
    TrainingStep(
        "tri5",
        FULL_CORPUS,
        trainer="steps/train_sat.sh",
        aligner="steps/align_si.sh",
        alignment="tri4_ali",
        sized=True,
        reestimate=True,
    ),
    TrainingStep(
        "tri5_ali",
        FULL_CORPUS,
        aligner="steps/align_fmllr.sh",
        alignment="tri5_ali",
        reestimate=True,
    ),
)


class SequentialTrainer:
    """Runs the subset step and then every training step in order."""

    def __init__(
        self,
        context: PipelineContext,
        chain: Iterable[TrainingStep] | None = None,
        *,
        reestimate_script: str = REESTIMATE_SCRIPT,
    ) -> None:
        self.context = context
        self.chain = tuple(chain if chain is not None else DEFAULT_CHAIN)
        self.reestimate_script = reestimate_script
        names = [step.output for step in self.chain]
        if len(set(names)) != len(names):
            raise ConfigurationError("Training chain contains duplicate step outputs.")

    @property
    def paths(self) -> PathsConfig:
        return self.context.paths

    @property
    def settings(self) -> TrainingSettings:
        return self.context.settings.training

    def run(self) -> Path:
        """Run the chain; returns the linguistic model the last step left behind."""
        self.prepare_subsets()

        lang_dir = self.paths.lang_dir
        previous_model: Path | None = None
        for step in self.chain:
            model_dir = self.paths.model_dir(step.output)
            step_id = self.context.step_id(model_dir)
            if self.context.markers.is_complete(step_id):
                LOGGER.info("Training step %s already complete; skipping", step_id)
            else:
                LOGGER.info("Starting training step %s", step_id)
                self.run_step(step, lang_dir=lang_dir, previous_model=previous_model)
                self.context.markers.mark_complete(step_id)
                LOGGER.info("Training step %s complete", step_id)

            previous_model = model_dir
            if step.reestimate:
                lang_dir = self.paths.reestimated_lang(step.output)
        return lang_dir

    def prepare_subsets(self) -> list[SubsetResult]:
        subsets_dir = self.paths.subsets_dir
        step_id = self.context.step_id(subsets_dir)
        if self.context.markers.is_complete(step_id):
            LOGGER.info("Subsets already prepared (%s); skipping", step_id)
            return []

        full_corpus = self.paths.combined_corpus
        _require(full_corpus, "combined corpus")
        sizes = dict(self.settings.subsets)
        requests = {name: self.paths.subset_dir(name) for name in sizes}
        results = materialize_subsets(full_corpus, requests, sizes)
        write_subset_manifest(subsets_dir, results)
        self.context.markers.mark_complete(step_id)
        return results

    def run_step(self, step: TrainingStep, *, lang_dir: Path, previous_model: Path | None) -> None:
        corpus_dir = self.paths.subset_dir(step.corpus)
        _require(corpus_dir, "training corpus")
        _require(lang_dir, "linguistic model")
        model_dir = self.paths.model_dir(step.output)
        log_path = self.paths.logs_dir / f"{step.output}.log"
        alignment_dir: Path | None = None

        if step.aligner:
            if previous_model is None:
                raise StateError(
                    f"Training step '{step.name}' needs a previous model to align with."
                )
            _require(previous_model, "previous model")
            alignment_dir = self.paths.model_dir(step.alignment or f"{previous_model.name}_ali")
            self._run(
                step.aligner,
                [
                    *self._common_options(step.align_nj or self.settings.train_nj),
                    corpus_dir,
                    lang_dir,
                    previous_model,
                    alignment_dir,
                ],
                log_path=log_path,
            )

        if step.trainer:
            args: list[Argument] = list(self._common_options(step.nj))
            if step.sized:
                args.extend(self._model_size(step.name))
            args.extend([corpus_dir, lang_dir])
            if alignment_dir is not None:
                args.append(alignment_dir)
            args.append(model_dir)
            self._run(step.trainer, args, log_path=log_path)

        if step.reestimate:
            self.reestimate(step, corpus_dir=corpus_dir, log_path=log_path)

    def reestimate(self, step: TrainingStep, *, corpus_dir: Path, log_path: Path | None = None) -> Path:
        """Re-estimate pronunciation and silence probabilities from the step's model.

        Always starts from the base linguistic model and dictionary.
        """
        name = step.output
        output = self.paths.reestimated_lang(name)
        self._run(
            self.reestimate_script,
            [
                "--cmd",
                self.context.settings.train_cmd,
                "--unk",
                self.context.settings.oov_word,
                corpus_dir,
                self.paths.lang_dir,
                self.paths.combined_dictionary,
                self.paths.model_dir(name),
                self.paths.reestimated_dictionary(name),
                self.paths.reestimated_lang_tmp(name),
                output,
            ],
            log_path=log_path,
        )
        return output

    def _common_options(self, nj: int | None) -> list[Argument]:
        options: list[Argument] = ["--boost-silence", self.settings.boost_silence]
        if nj is not None:
            options.extend(["--nj", nj])
        options.extend(["--cmd", self.context.settings.train_cmd])
        return options

    def _model_size(self, name: str) -> list[Argument]:
        try:
            return [self.settings.leaves[name], self.settings.gaussians[name]]
        except KeyError:
            raise ConfigurationError(
                f"Training step '{name}' needs 'training.leaves.{name}' and 'training.gaussians.{name}'."
            ) from None

    def _run(self, script: str, args: Sequence[Argument], *, log_path: Path | None) -> None:
        self.context.toolkit.run(
            script,
            [self._relative(arg) if isinstance(arg, Path) else arg for arg in args],
            log_path=log_path,
        )

    def _relative(self, path: Path) -> str:
        return self.paths.relative(path)


def _require(path: Path, label: str) -> None:
    if not path.exists():
        raise StateError(f"Missing {label}: {path}")

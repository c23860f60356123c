"""Merging per-item corpora and dictionaries into the combined training inputs."""

from __future__ import annotations

import shutil
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from universal_am.exceptions import DataError
from universal_am.pipelines.corpus import Corpus
from universal_am.pipelines.lexicon import Dictionary, Pronunciation
from universal_am.utils.logging import get_logger

__all__ = [
    "CONFLICT_REPORT",
    "MergeResult",
    "PronunciationConflict",
    "combine_corpora",
    "combine_corpus_directories",
    "combine_dictionaries",
    "combine_dictionary_directories",
]

LOGGER = get_logger(__name__)

CONFLICT_REPORT = "pronunciation_conflicts.txt"


@dataclass(slots=True)
class PronunciationConflict:
    """A word pronounced differently by different items; every variant is kept."""

    word: str
    sources: dict[Pronunciation, list[str]] = field(default_factory=dict)

    def describe(self) -> str:
        variants = "; ".join(
            f"{' '.join(pronunciation)} ({', '.join(items)})"
            for pronunciation, items in sorted(self.sources.items())
        )
        return f"{self.word}\t{variants}"


@dataclass(slots=True)
class MergeResult:
    dictionary: Dictionary
    conflicts: list[PronunciationConflict]


def _claim(owners: dict[str, str], keys: Iterable[str], item: str, *, kind: str) -> None:
    for key in keys:
        previous = owners.setdefault(key, item)
        if previous != item:
            raise DataError(
                f"Duplicate {kind} id '{key}' in items '{previous}' and '{item}' after prefixing."
            )


def combine_corpora(corpora: Mapping[str, Corpus]) -> Corpus:
    """Union item corpora; any id shared between two items is an error."""
    if not corpora:
        raise DataError("No corpora to combine.")

    utterance_owner: dict[str, str] = {}
    speaker_owner: dict[str, str] = {}
    recording_owner: dict[str, str] = {}
    combined = Corpus(utt2spk={})

    for item, corpus in corpora.items():
        _claim(utterance_owner, corpus.utterances, item, kind="utterance")
        _claim(speaker_owner, corpus.speakers, item, kind="speaker")
        _claim(recording_owner, corpus.recordings, item, kind="recording")

        combined.utt2spk.update(corpus.utt2spk)
        for target, tables in (
            (combined.utterance_tables, corpus.utterance_tables),
            (combined.speaker_tables, corpus.speaker_tables),
            (combined.recording_tables, corpus.recording_tables),
        ):
            for name, table in tables.items():
                target.setdefault(name, {}).update(table)

    combined.validate(source="<combined corpus>")
    return combined


def combine_dictionaries(dictionaries: Mapping[str, Dictionary]) -> MergeResult:
    """Reconcile item dictionaries into one.

    Silence lexicons must be identical across items. Non-silence lexicons are
    unioned by word and every distinct pronunciation is kept; words that
    different items pronounce differently are returned as conflicts.
    """
    if not dictionaries:
        raise DataError("No dictionaries to combine.")

    items = list(dictionaries)
    reference_item = items[0]
    reference = dictionaries[reference_item]
    for item in items[1:]:
        candidate = dictionaries[item]
        if candidate.silence != reference.silence:
            raise DataError(
                f"Silence lexicon of item '{item}' differs from item '{reference_item}'.",
                item=item,
            )
        if candidate.optional_silence != reference.optional_silence:
            raise DataError(
                f"Optional silence phone of item '{item}' differs from item '{reference_item}'.",
                item=item,
            )

    merged = Dictionary(
        silence=dict(reference.silence),
        nonsilence={},
        optional_silence=reference.optional_silence,
    )
    origins: dict[str, dict[Pronunciation, list[str]]] = {}
    for item in items:
        for word, pronunciations in dictionaries[item].nonsilence.items():
            for pronunciation in pronunciations:
                merged.add(word, pronunciation)
                sources = origins.setdefault(word, {}).setdefault(pronunciation, [])
                if item not in sources:
                    sources.append(item)

    conflicts = []
    for word in sorted(origins):
        sources = origins[word]
        contributing = {item for item_list in sources.values() for item in item_list}
        if len(sources) > 1 and len(contributing) > 1:
            conflicts.append(PronunciationConflict(word=word, sources=dict(sources)))

    return MergeResult(dictionary=merged, conflicts=conflicts)


def combine_corpus_directories(sources: Mapping[str, Path], destination: Path) -> Corpus:
    corpora = {item: Corpus.load(path) for item, path in sources.items()}
    combined = combine_corpora(corpora)
    if destination.exists():
        shutil.rmtree(destination)
    combined.write(destination)
    LOGGER.info(
        "Combined %s corpora into %s (%s utterances, %s speakers)",
        len(corpora),
        destination,
        len(combined),
        len(combined.speakers),
    )
    return combined


def combine_dictionary_directories(sources: Mapping[str, Path], destination: Path) -> MergeResult:
    dictionaries = {item: Dictionary.load(path) for item, path in sources.items()}
    result = combine_dictionaries(dictionaries)
    result.dictionary.write(destination)

    report = destination / CONFLICT_REPORT
    with report.open("w", encoding="utf-8") as handle:
        for conflict in result.conflicts:
            handle.write(f"{conflict.describe()}\n")
    if result.conflicts:
        LOGGER.warning(
            "%s words have different pronunciations across items; all variants kept (see %s)",
            len(result.conflicts),
            report,
        )

    LOGGER.info(
        "Combined %s dictionaries into %s (%s words, %s non-silence phones)",
        len(dictionaries),
        destination,
        len(result.dictionary.nonsilence),
        len(result.dictionary.nonsilence_phones),
    )
    return result

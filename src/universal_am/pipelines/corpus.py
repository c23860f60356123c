"""Kaldi-style corpus directories: loading, writing and size-bounded subsets."""

from __future__ import annotations

import json
import os
import shutil
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path

import numpy as np

from universal_am.exceptions import DataError, StateError
from universal_am.utils.logging import get_logger
from universal_am.utils.text_files import read_lines

__all__ = [
    "RECORDING_TABLES",
    "SPEAKER_TABLES",
    "UTTERANCE_TABLES",
    "Corpus",
    "SubsetResult",
    "materialize_subset",
    "materialize_subsets",
    "select_subset",
    "write_subset_manifest",
]

LOGGER = get_logger(__name__)

UTT2SPK = "utt2spk"
SPK2UTT = "spk2utt"
UTTERANCE_TABLES = ("text", "feats.scp", "segments", "utt2dur", "utt2num_frames")
SPEAKER_TABLES = ("cmvn.scp", "spk2gender")
RECORDING_TABLES = ("wav.scp", "reco2file_and_channel", "reco2dur")
SEGMENTS = "segments"


def _read_table(path: Path) -> dict[str, str]:
    """Read a ``key value...`` table; the value is the remainder of the line."""
    table: dict[str, str] = {}
    for line_number, line in read_lines(path):
        parts = line.strip().split(maxsplit=1)
        if not parts:
            continue
        key = parts[0]
        if key in table:
            raise DataError(f"Duplicate id '{key}' at {path}:{line_number}")
        table[key] = parts[1] if len(parts) > 1 else ""
    return table


def _write_table(path: Path, table: Mapping[str, str]) -> None:
    with path.open("w", encoding="utf-8") as handle:
        for key in sorted(table):
            value = table[key]
            handle.write(f"{key} {value}\n" if value else f"{key}\n")


@dataclass(slots=True)
class Corpus:
    """In-memory view of a data directory.

    ``utt2spk`` is authoritative for utterance and speaker ids; the other tables
    are keyed by utterance, speaker or recording id and carried through
    untouched.
    """

    utt2spk: dict[str, str]
    utterance_tables: dict[str, dict[str, str]] = field(default_factory=dict)
    speaker_tables: dict[str, dict[str, str]] = field(default_factory=dict)
    recording_tables: dict[str, dict[str, str]] = field(default_factory=dict)

    @classmethod
    def load(cls, directory: Path) -> Corpus:
        directory = Path(directory)
        utt2spk_path = directory / UTT2SPK
        if not utt2spk_path.is_file():
            raise StateError(f"Corpus directory {directory} has no {UTT2SPK} file.")

        utt2spk = _read_table(utt2spk_path)
        for utterance, speaker in utt2spk.items():
            if not speaker or " " in speaker:
                raise DataError(
                    f"Utterance '{utterance}' in {utt2spk_path} must map to exactly one speaker."
                )

        def load_tables(names: Iterable[str]) -> dict[str, dict[str, str]]:
            return {
                name: _read_table(directory / name)
                for name in names
                if (directory / name).is_file()
            }

        corpus = cls(
            utt2spk=utt2spk,
            utterance_tables=load_tables(UTTERANCE_TABLES),
            speaker_tables=load_tables(SPEAKER_TABLES),
            recording_tables=load_tables(RECORDING_TABLES),
        )
        corpus.validate(source=str(directory))
        return corpus

    def validate(self, *, source: str = "<corpus>") -> None:
        """Check that every table only references known utterances."""
        utterances = set(self.utt2spk)
        for name, table in self.utterance_tables.items():
            unknown = set(table) - utterances
            if unknown:
                example = sorted(unknown)[0]
                raise DataError(
                    f"{source}/{name} references {len(unknown)} unknown utterance(s), e.g. '{example}'."
                )

    @property
    def utterances(self) -> list[str]:
        return sorted(self.utt2spk)

    @property
    def speakers(self) -> list[str]:
        return sorted(set(self.utt2spk.values()))

    @property
    def recordings(self) -> list[str]:
        recordings: set[str] = set()
        for table in self.recording_tables.values():
            recordings.update(table)
        for value in self.utterance_tables.get(SEGMENTS, {}).values():
            recordings.add(value.split()[0])
        return sorted(recordings)

    def __len__(self) -> int:
        return len(self.utt2spk)

    def spk2utt(self) -> dict[str, list[str]]:
        mapping: dict[str, list[str]] = defaultdict(list)
        for utterance in self.utterances:
            mapping[self.utt2spk[utterance]].append(utterance)
        return dict(mapping)

    def restrict(self, utterances: Iterable[str]) -> Corpus:
        """Return the sub-corpus containing only ``utterances``."""
        keep = set(utterances)
        utt2spk = {utt: spk for utt, spk in self.utt2spk.items() if utt in keep}
        speakers = set(utt2spk.values())
        utterance_tables = {
            name: {utt: value for utt, value in table.items() if utt in keep}
            for name, table in self.utterance_tables.items()
        }
        speaker_tables = {
            name: {spk: value for spk, value in table.items() if spk in speakers}
            for name, table in self.speaker_tables.items()
        }
        segments = utterance_tables.get(SEGMENTS)
        if segments is not None:
            recordings = {value.split()[0] for value in segments.values()}
        else:
            # Without segments, recordings are keyed by utterance id.
            recordings = keep
        recording_tables = {
            name: {reco: value for reco, value in table.items() if reco in recordings}
            for name, table in self.recording_tables.items()
        }
        return Corpus(
            utt2spk=utt2spk,
            utterance_tables=utterance_tables,
            speaker_tables=speaker_tables,
            recording_tables=recording_tables,
        )

    def write(self, directory: Path) -> None:
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        _write_table(directory / UTT2SPK, self.utt2spk)
        _write_table(
            directory / SPK2UTT,
            {speaker: " ".join(utts) for speaker, utts in self.spk2utt().items()},
        )
        for tables in (self.utterance_tables, self.speaker_tables, self.recording_tables):
            for name, table in tables.items():
                _write_table(directory / name, table)


@dataclass(frozen=True, slots=True)
class SubsetResult:
    """Outcome of materializing one named subset."""

    name: str
    path: Path
    requested: int
    size: int
    alias: bool

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["path"] = str(self.path)
        return payload


def select_subset(utterances: Iterable[str], size: int) -> list[str]:
    """Pick ``size`` evenly spaced utterances from the sorted id list.

    The selection depends only on the ids, so repeated runs pick the same
    utterances.
    """
    ordered = sorted(utterances)
    if size <= 0:
        raise ValueError("Subset size must be positive.")
    if size >= len(ordered):
        return ordered
    indices = np.linspace(0, len(ordered) - 1, num=size).round().astype(int)
    return [ordered[index] for index in np.unique(indices)]


def materialize_subset(
    full_dir: Path,
    subset_dir: Path,
    size: int,
    *,
    name: str | None = None,
    corpus: Corpus | None = None,
    pool: Iterable[str] | None = None,
) -> SubsetResult:
    """Create ``subset_dir`` holding at most ``size`` utterances of ``full_dir``.

    When the full corpus has no more than ``size`` utterances the subset is a
    symlink to the full corpus instead of a copy. ``pool`` narrows the
    utterances the selection is drawn from.
    """
    corpus = corpus if corpus is not None else Corpus.load(full_dir)
    label = name or subset_dir.name

    # Leftovers from an interrupted run are rebuilt from scratch.
    if subset_dir.is_symlink():
        subset_dir.unlink()
    elif subset_dir.exists():
        shutil.rmtree(subset_dir)

    if len(corpus) <= size:
        subset_dir.parent.mkdir(parents=True, exist_ok=True)
        target = os.path.relpath(full_dir, subset_dir.parent)
        subset_dir.symlink_to(target, target_is_directory=True)
        LOGGER.info(
            "Corpus has %s utterances (<= %s); %s aliases %s",
            len(corpus),
            size,
            label,
            full_dir,
        )
        return SubsetResult(label, subset_dir, size, len(corpus), alias=True)

    candidates = corpus.utterances if pool is None else pool
    subset = corpus.restrict(select_subset(candidates, size))
    subset.write(subset_dir)
    LOGGER.info("Wrote subset %s with %s utterances", label, len(subset))
    return SubsetResult(label, subset_dir, size, len(subset), alias=False)


def materialize_subsets(
    full_dir: Path, requests: Mapping[str, Path], sizes: Mapping[str, int]
) -> list[SubsetResult]:
    """Materialize several subsets of ``full_dir`` so that smaller ones nest in larger ones.

    ``requests`` maps subset names to their directories and ``sizes`` maps the
    same names to utterance counts. Results are returned in request order.
    """
    missing = set(requests) - set(sizes)
    if missing:
        raise ValueError(f"No size given for subset(s): {', '.join(sorted(missing))}")

    corpus = Corpus.load(full_dir)
    pool: list[str] = corpus.utterances
    results: dict[str, SubsetResult] = {}
    for name in sorted(requests, key=lambda key: (-sizes[key], key)):
        result = materialize_subset(
            full_dir, requests[name], sizes[name], name=name, corpus=corpus, pool=pool
        )
        if not result.alias:
            pool = select_subset(pool, sizes[name])
        results[name] = result
    return [results[name] for name in requests]


def write_subset_manifest(directory: Path, results: Iterable[SubsetResult]) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    manifest = directory / "manifest.json"
    payload = {"subsets": [result.to_dict() for result in results]}
    manifest.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return manifest

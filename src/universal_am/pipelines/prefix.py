"""Item-prefixing of utterance, speaker and recording identifiers."""

from __future__ import annotations

import shutil
from collections.abc import Callable, Mapping
from pathlib import Path

from universal_am.exceptions import ConfigurationError, DataError
from universal_am.pipelines.corpus import SEGMENTS, Corpus
from universal_am.utils.logging import get_logger

__all__ = [
    "DEFAULT_DELIMITER",
    "prefix_corpus",
    "prefix_corpus_directory",
    "prefix_identifier",
    "validate_item_id",
]

LOGGER = get_logger(__name__)

DEFAULT_DELIMITER = "_"


def validate_item_id(item: str, delimiter: str = DEFAULT_DELIMITER) -> None:
    """Reject item ids that would make prefixed ids ambiguous."""
    if not item or any(char.isspace() for char in item):
        raise ConfigurationError(f"Invalid item id {item!r}.", item=item or None)
    if delimiter in item:
        raise ConfigurationError(
            f"Item id {item!r} contains the identifier delimiter {delimiter!r}.", item=item
        )


def prefix_identifier(item: str, identifier: str, delimiter: str = DEFAULT_DELIMITER) -> str:
    """Return ``identifier`` in the namespace of ``item``.

    Identifiers already carrying the item prefix are returned unchanged, so
    applying the prefix twice is the same as applying it once.
    """
    prefix = f"{item}{delimiter}"
    if identifier.startswith(prefix):
        return identifier
    return f"{prefix}{identifier}"


def _rename_keys(
    table: Mapping[str, str], rename: Callable[[str], str], *, label: str
) -> dict[str, str]:
    renamed: dict[str, str] = {}
    for key, value in table.items():
        new_key = rename(key)
        if new_key in renamed:
            raise DataError(f"Prefixing maps two ids in {label} onto '{new_key}'.")
        renamed[new_key] = value
    return renamed


def prefix_corpus(corpus: Corpus, item: str, delimiter: str = DEFAULT_DELIMITER) -> Corpus:
    """Return a copy of ``corpus`` with every id moved into the ``item`` namespace.

    Transcripts, features and audio references are left untouched; only keys
    and the recording reference inside ``segments`` change.
    """
    validate_item_id(item, delimiter)

    def rename(identifier: str) -> str:
        return prefix_identifier(item, identifier, delimiter)

    utt2spk = {
        new_utt: rename(speaker)
        for new_utt, speaker in _rename_keys(corpus.utt2spk, rename, label="utt2spk").items()
    }

    utterance_tables: dict[str, dict[str, str]] = {}
    for name, table in corpus.utterance_tables.items():
        renamed = _rename_keys(table, rename, label=name)
        if name == SEGMENTS:
            renamed = {utt: _prefix_segment(value, rename) for utt, value in renamed.items()}
        utterance_tables[name] = renamed

    speaker_tables = {
        name: _rename_keys(table, rename, label=name)
        for name, table in corpus.speaker_tables.items()
    }
    recording_tables = {
        name: _rename_keys(table, rename, label=name)
        for name, table in corpus.recording_tables.items()
    }

    return Corpus(
        utt2spk=utt2spk,
        utterance_tables=utterance_tables,
        speaker_tables=speaker_tables,
        recording_tables=recording_tables,
    )


def _prefix_segment(value: str, rename: Callable[[str], str]) -> str:
    parts = value.split(maxsplit=1)
    if len(parts) != 2:
        raise DataError(f"Malformed segments entry: {value!r}")
    recording, times = parts
    return f"{rename(recording)} {times}"


def prefix_corpus_directory(
    source: Path, destination: Path, item: str, delimiter: str = DEFAULT_DELIMITER
) -> Corpus:
    """Write the prefixed copy of the corpus at ``source`` to ``destination``.

    An existing ``destination`` is replaced, not updated.
    """
    corpus = Corpus.load(source)
    prefixed = prefix_corpus(corpus, item, delimiter)
    if destination.exists():
        shutil.rmtree(destination)
    prefixed.write(destination)
    LOGGER.info(
        "Prefixed %s utterances / %s speakers of item %s into %s",
        len(prefixed),
        len(prefixed.speakers),
        item,
        destination,
    )
    return prefixed

"""Lexicon standardization and dictionary directories.

Raw item lexicons come out of data preparation as one word per line followed by
tab-separated syllables::

    判	p u: n _3

Tokens starting with ``_`` are tags (tone, length, ...) on the phones of their
syllable. Phones may also carry an inline tag (``A_F``) when the item's tone
table knows the suffix. Tags stay attached to the phone (``u:_3``) so that the
toolkit treats them as extra clustering questions on a shared tree root rather
than as separate phonemes. A tone table may instead map a tag to a bare symbol,
which is then emitted as a phoneme of its own.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from universal_am.exceptions import DataError, StateError
from universal_am.utils.logging import get_logger
from universal_am.utils.text_files import read_lines

__all__ = [
    "Dictionary",
    "PhoneRules",
    "Pronunciation",
    "parse_lexicon_file",
    "parse_raw_lexicon",
    "parse_rule_table",
    "phone_root",
    "phone_tags",
    "standardize_lexicon",
    "standardize_pronunciation",
]

LOGGER = get_logger(__name__)

Pronunciation = tuple[str, ...]

TAG_MARKER = "_"
SYLLABLE_BOUNDARY = "."

LEXICON = "lexicon.txt"
SILENCE_LEXICON = "silence_lexicon.txt"
NONSILENCE_LEXICON = "nonsilence_lexicon.txt"
SILENCE_PHONES = "silence_phones.txt"
OPTIONAL_SILENCE = "optional_silence.txt"
NONSILENCE_PHONES = "nonsilence_phones.txt"
EXTRA_QUESTIONS = "extra_questions.txt"


def phone_root(phone: str) -> str:
    """Return the tree root of ``phone`` (the phone without its tags)."""
    root, _, _ = phone.partition(TAG_MARKER)
    return root or phone


def phone_tags(phone: str) -> list[str]:
    """Return the tags attached to ``phone``, e.g. ``a_1_L`` -> ``['_1', '_L']``."""
    if TAG_MARKER not in phone.lstrip(TAG_MARKER):
        return []
    return [f"{TAG_MARKER}{tag}" for tag in phone.split(TAG_MARKER)[1:] if tag]


def parse_rule_table(path: Path) -> dict[str, tuple[str, ...]]:
    """Read a ``source target [target...]`` rule table; a missing file is an empty table."""
    if not path.is_file():
        return {}
    table: dict[str, tuple[str, ...]] = {}
    for line_number, line in read_lines(path):
        fields = line.split()
        if not fields or fields[0].startswith("#"):
            continue
        if len(fields) < 2:
            raise DataError(f"Rule at {path}:{line_number} has no target: {line.strip()!r}")
        table[fields[0]] = tuple(fields[1:])
    return table


@dataclass(frozen=True, slots=True)
class PhoneRules:
    """Per-item diphthong-splitting and tone-standardization tables."""

    diphthongs: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    tones: Mapping[str, str] | None = None

    @classmethod
    def load(cls, diphthong_path: Path, tone_path: Path) -> PhoneRules:
        diphthongs = parse_rule_table(diphthong_path)
        tones: dict[str, str] | None = None
        if tone_path.is_file():
            tones = {}
            for source, targets in parse_rule_table(tone_path).items():
                if len(targets) != 1:
                    raise DataError(f"Tone rule for {source!r} in {tone_path} must have one target.")
                tones[source] = targets[0]
        return cls(diphthongs=diphthongs, tones=tones)

    def resolve_tag(self, tag: str) -> str:
        """Map a standalone tag through the tone table."""
        if self.tones is None:
            return tag
        try:
            return self.tones[tag]
        except KeyError:
            raise DataError(f"Unresolvable tag {tag!r}: not listed in the tone table.") from None

    def split_inline(self, phone: str) -> tuple[str, list[str]]:
        """Split ``A_F`` into ``('A', ['_F'])`` when the tone table knows ``_F``."""
        if self.tones is None or TAG_MARKER not in phone.lstrip(TAG_MARKER):
            return phone, []
        base, _, suffix = phone.partition(TAG_MARKER)
        tags = [f"{TAG_MARKER}{part}" for part in suffix.split(TAG_MARKER)]
        if base and all(tag in self.tones for tag in tags):
            return base, [self.tones[tag] for tag in tags]
        return phone, []


def _is_tag(token: str) -> bool:
    return token.startswith(TAG_MARKER)


def standardize_pronunciation(syllables: Sequence[Sequence[str]], rules: PhoneRules) -> Pronunciation:
    """Apply diphthong splitting and tone standardization to one pronunciation."""
    phones: list[str] = []
    for syllable in syllables:
        syllable_tags = [rules.resolve_tag(token) for token in syllable if _is_tag(token)]
        members = [token for token in syllable if not _is_tag(token)]
        if not members:
            raise DataError(f"Syllable {' '.join(syllable)!r} has tags but no phones.")

        for member in members:
            base, inline_tags = rules.split_inline(member)
            attached = "".join(tag for tag in (*inline_tags, *syllable_tags) if _is_tag(tag))
            for part in rules.diphthongs.get(base, (base,)):
                phones.append(f"{part}{attached}")
            phones.extend(tag for tag in inline_tags if not _is_tag(tag))
        phones.extend(tag for tag in syllable_tags if not _is_tag(tag))
    return tuple(phones)


def parse_raw_lexicon(path: Path) -> Iterator[tuple[str, list[list[str]]]]:
    """Yield ``(word, syllables)`` from a raw item lexicon."""
    for line_number, line in read_lines(path):
        stripped = line.strip()
        if not stripped:
            continue
        if "\t" in stripped:
            word, *fields = stripped.split("\t")
        else:
            word, *tokens = stripped.split()
            fields = [" ".join(tokens)]
        syllables: list[list[str]] = []
        for field_text in fields:
            current: list[str] = []
            for token in field_text.split():
                if token == SYLLABLE_BOUNDARY:
                    if current:
                        syllables.append(current)
                    current = []
                else:
                    current.append(token)
            if current:
                syllables.append(current)
        if not syllables:
            raise DataError(
                f'Error parsing line {line_number} of {path}: "{stripped}" did not have a pronunciation'
            )
        yield word.strip(), syllables


def parse_lexicon_file(path: Path) -> Iterator[tuple[str, Pronunciation]]:
    """Yield ``(word, pronunciation)`` from a standardized lexicon file."""
    for line_number, line in read_lines(path):
        stripped = line.strip()
        if not stripped:
            continue
        if "\t" in stripped:
            word, _, rest = stripped.partition("\t")
        else:
            word, _, rest = stripped.partition(" ")
        pronunciation = tuple(rest.split())
        if not pronunciation:
            raise DataError(
                f'Error parsing line {line_number} of {path}: "{stripped}" did not have a pronunciation'
            )
        yield word.strip(), pronunciation


@dataclass(slots=True)
class Dictionary:
    """Silence and non-silence lexicons plus the phone sets derived from them."""

    silence: dict[str, Pronunciation]
    nonsilence: dict[str, list[Pronunciation]]
    optional_silence: str

    def __post_init__(self) -> None:
        overlap = set(self.silence) & set(self.nonsilence)
        if overlap:
            raise DataError(
                f"Silence and non-silence lexicons share words: {', '.join(sorted(overlap))}"
            )

    def add(self, word: str, pronunciation: Pronunciation) -> bool:
        """Add a non-silence pronunciation; return ``False`` when it was already known."""
        if word in self.silence:
            raise DataError(f"Word {word!r} is reserved for the silence lexicon.")
        known = self.nonsilence.setdefault(word, [])
        if pronunciation in known:
            return False
        known.append(pronunciation)
        return True

    @property
    def silence_phones(self) -> list[str]:
        phones = {phone for pronunciation in self.silence.values() for phone in pronunciation}
        phones.add(self.optional_silence)
        return sorted(phones)

    @property
    def nonsilence_phones(self) -> list[str]:
        phones = {
            phone
            for pronunciations in self.nonsilence.values()
            for pronunciation in pronunciations
            for phone in pronunciation
        }
        return sorted(phones - set(self.silence_phones))

    def phone_groups(self) -> list[list[str]]:
        """Non-silence phones grouped by tree root, one group per line."""
        groups: dict[str, set[str]] = defaultdict(set)
        for phone in self.nonsilence_phones:
            groups[phone_root(phone)].add(phone)
        return [sorted(groups[root]) for root in sorted(groups)]

    def extra_questions(self) -> list[list[str]]:
        """Clustering questions: the silence phones, then one question per tag."""
        by_tag: dict[str, set[str]] = defaultdict(set)
        for phone in self.nonsilence_phones:
            for tag in phone_tags(phone):
                by_tag[tag].add(phone)
        questions = [self.silence_phones]
        questions.extend(sorted(by_tag[tag]) for tag in sorted(by_tag))
        return questions

    def lexicon_entries(self) -> list[tuple[str, Pronunciation]]:
        entries = list(self.silence.items())
        for word, pronunciations in self.nonsilence.items():
            entries.extend((word, pronunciation) for pronunciation in pronunciations)
        return entries

    def write(self, directory: Path) -> None:
        """Write a complete dictionary directory, sorted for reproducibility."""
        directory.mkdir(parents=True, exist_ok=True)
        silence_entries = list(self.silence.items())
        nonsilence_entries = [
            (word, pronunciation)
            for word, pronunciations in self.nonsilence.items()
            for pronunciation in pronunciations
        ]
        _write_lexicon(directory / SILENCE_LEXICON, silence_entries)
        _write_lexicon(directory / NONSILENCE_LEXICON, nonsilence_entries)
        _write_lexicon(directory / LEXICON, self.lexicon_entries())
        _write_lines(directory / SILENCE_PHONES, self.silence_phones)
        _write_lines(directory / OPTIONAL_SILENCE, [self.optional_silence])
        _write_lines(directory / NONSILENCE_PHONES, [" ".join(group) for group in self.phone_groups()])
        _write_lines(directory / EXTRA_QUESTIONS, [" ".join(question) for question in self.extra_questions()])

    @classmethod
    def load(cls, directory: Path) -> Dictionary:
        for name in (SILENCE_LEXICON, NONSILENCE_LEXICON, OPTIONAL_SILENCE):
            if not (directory / name).is_file():
                raise StateError(f"Dictionary directory {directory} has no {name}.")
        silence: dict[str, Pronunciation] = {}
        for word, pronunciation in parse_lexicon_file(directory / SILENCE_LEXICON):
            silence[word] = pronunciation
        optional_path = directory / OPTIONAL_SILENCE
        optional_silence = optional_path.read_text(encoding="utf-8").strip()
        dictionary = cls(silence=silence, nonsilence={}, optional_silence=optional_silence)
        for word, pronunciation in parse_lexicon_file(directory / NONSILENCE_LEXICON):
            dictionary.add(word, pronunciation)
        return dictionary


def _write_lexicon(path: Path, entries: Iterable[tuple[str, Pronunciation]]) -> None:
    lines = sorted(f"{word}\t{' '.join(pronunciation)}" for word, pronunciation in entries)
    _write_lines(path, lines)


def _write_lines(path: Path, lines: Iterable[str]) -> None:
    with path.open("w", encoding="utf-8") as handle:
        for line in lines:
            handle.write(f"{line}\n")


def standardize_lexicon(
    raw_lexicon: Path,
    rules: PhoneRules,
    *,
    silence: Mapping[str, str],
    optional_silence: str,
) -> Dictionary:
    """Build an item dictionary from its raw lexicon.

    Entries for words in the silence vocabulary are dropped in favour of the
    fixed silence lexicon; every other entry is standardized with ``rules``.
    """
    dictionary = Dictionary(
        silence={word: (phone,) for word, phone in silence.items()},
        nonsilence={},
        optional_silence=optional_silence,
    )
    dropped = 0
    for word, syllables in parse_raw_lexicon(raw_lexicon):
        if word in dictionary.silence:
            dropped += 1
            continue
        try:
            pronunciation = standardize_pronunciation(syllables, rules)
        except DataError as exc:
            raise DataError(f"{raw_lexicon}: word {word!r}: {exc.message}") from exc
        dictionary.add(word, pronunciation)

    LOGGER.info(
        "Standardized %s words from %s (%s silence entries replaced)",
        len(dictionary.nonsilence),
        raw_lexicon,
        dropped,
    )
    return dictionary

"""Tests for lexicon standardization and dictionary directories."""

from __future__ import annotations

from pathlib import Path

import pytest

from universal_am.exceptions import DataError, StateError
from universal_am.pipelines.lexicon import (
    Dictionary,
    PhoneRules,
    parse_raw_lexicon,
    parse_rule_table,
    phone_root,
    phone_tags,
    standardize_lexicon,
    standardize_pronunciation,
)

SILENCE = {"<silence>": "SIL", "<unk>": "<oov>", "<noise>": "<sss>", "<v-noise>": "<vns>"}


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_phone_root_and_tags() -> None:
    assert phone_root("a_1_L") == "a"
    assert phone_tags("a_1_L") == ["_1", "_L"]
    assert phone_tags("SIL") == []


def test_parse_raw_lexicon_reads_syllables(tmp_path: Path) -> None:
    lexicon = write(tmp_path / "lexicon.txt", "判\tp u: n _3\nhello\th @\tl oU\n")

    entries = list(parse_raw_lexicon(lexicon))

    assert entries[0] == ("判", [["p", "u:", "n", "_3"]])
    assert entries[1] == ("hello", [["h", "@"], ["l", "oU"]])


def test_parse_raw_lexicon_whitespace_fallback(tmp_path: Path) -> None:
    lexicon = write(tmp_path / "lexicon.txt", "labas l a . b a s\n")

    assert list(parse_raw_lexicon(lexicon)) == [("labas", [["l", "a"], ["b", "a", "s"]])]


def test_line_without_pronunciation_names_file_and_line(tmp_path: Path) -> None:
    lexicon = write(tmp_path / "lexicon.txt", "ok\to k\nbroken\n")

    with pytest.raises(DataError, match=r"line 2 .*did not have a pronunciation"):
        list(parse_raw_lexicon(lexicon))


def test_invalid_utf8_names_file_and_line(tmp_path: Path) -> None:
    lexicon = tmp_path / "lexicon.txt"
    lexicon.write_bytes(b"ok\to k\nbad\xff\ta b\n")

    with pytest.raises(DataError, match=r"Invalid UTF-8 at .*lexicon.txt:2"):
        list(parse_raw_lexicon(lexicon))


def test_words_are_kept_verbatim(tmp_path: Path) -> None:
    lexicon = write(tmp_path / "lexicon.txt", "\ufb01sh\tf i s\nfish\tf i S\n")

    entries = list(parse_raw_lexicon(lexicon))

    assert entries == [("\ufb01sh", [["f", "i", "s"]]), ("fish", [["f", "i", "S"]])]


def test_syllable_tag_attaches_to_every_phone() -> None:
    rules = PhoneRules(tones={"_3": "_3"})

    assert standardize_pronunciation([["p", "u:", "n", "_3"]], rules) == ("p_3", "u:_3", "n_3")


def test_tone_table_standardizes_tags() -> None:
    rules = PhoneRules(tones={"_3": "_T3", "_F": "_falling"})

    assert standardize_pronunciation([["a", "_3"], ["A_F"]], rules) == ("a_T3", "A_falling")


def test_tag_mapped_to_bare_symbol_becomes_a_phoneme() -> None:
    rules = PhoneRules(tones={"_4": "T4"})

    assert standardize_pronunciation([["m", "a", "_4"]], rules) == ("m", "a", "T4")


def test_diphthongs_are_split_and_keep_tags() -> None:
    rules = PhoneRules(diphthongs={"aI": ("a", "I")}, tones={"_1": "_1"})

    assert standardize_pronunciation([["m", "aI", "_1"]], rules) == ("m_1", "a_1", "I_1")


def test_unknown_tag_with_tone_table_is_an_error() -> None:
    rules = PhoneRules(tones={"_1": "_1"})

    with pytest.raises(DataError, match="Unresolvable tag '_9'"):
        standardize_pronunciation([["a", "_9"]], rules)


def test_without_tone_table_tags_pass_through() -> None:
    rules = PhoneRules()

    assert standardize_pronunciation([["a", "_9"], ["B_x"]], rules) == ("a_9", "B_x")


def test_rule_table_missing_file_is_empty(tmp_path: Path) -> None:
    assert parse_rule_table(tmp_path / "missing") == {}


def test_rule_table_requires_target(tmp_path: Path) -> None:
    table = write(tmp_path / "diphthongs", "aI a I\noU\n")

    with pytest.raises(DataError, match="no target"):
        parse_rule_table(table)


def test_standardize_lexicon_partitions_silence(tmp_path: Path) -> None:
    raw = write(
        tmp_path / "lexicon.txt",
        "<unk>\t<oov>\n<silence>\tSIL\nmama\tm a _1\tm a _2\nmaI\tm aI\n",
    )
    write(tmp_path / "maps" / "diphthongs" / "101", "aI a I\n")
    write(tmp_path / "maps" / "tones" / "101", "_1 _1\n_2 _2\n")
    rules = PhoneRules.load(tmp_path / "maps" / "diphthongs" / "101", tmp_path / "maps" / "tones" / "101")

    dictionary = standardize_lexicon(raw, rules, silence=SILENCE, optional_silence="SIL")

    assert set(dictionary.silence) == set(SILENCE)
    assert dictionary.nonsilence == {
        "mama": [("m_1", "a_1", "m_2", "a_2")],
        "maI": [("m", "a", "I")],
    }


def test_dictionary_derivations() -> None:
    dictionary = Dictionary(
        silence={word: (phone,) for word, phone in SILENCE.items()},
        nonsilence={"mama": [("m_1", "a_1", "m_2", "a_2")], "ma": [("m", "a")]},
        optional_silence="SIL",
    )

    assert dictionary.silence_phones == ["<oov>", "<sss>", "<vns>", "SIL"]
    assert dictionary.phone_groups() == [["a", "a_1", "a_2"], ["m", "m_1", "m_2"]]
    assert dictionary.extra_questions() == [
        ["<oov>", "<sss>", "<vns>", "SIL"],
        ["a_1", "m_1"],
        ["a_2", "m_2"],
    ]


def test_silence_and_nonsilence_must_be_disjoint() -> None:
    with pytest.raises(DataError):
        Dictionary(silence={"<unk>": ("<oov>",)}, nonsilence={"<unk>": [("a",)]}, optional_silence="SIL")


def test_dictionary_directory_round_trip(tmp_path: Path) -> None:
    dictionary = Dictionary(
        silence={word: (phone,) for word, phone in SILENCE.items()},
        nonsilence={"zebra": [("z", "e")], "apple": [("a", "p"), ("a", "p_1")]},
        optional_silence="SIL",
    )

    dictionary.write(tmp_path / "dict")
    loaded = Dictionary.load(tmp_path / "dict")

    assert loaded.nonsilence == {"apple": [("a", "p"), ("a", "p_1")], "zebra": [("z", "e")]}
    lexicon_lines = (tmp_path / "dict" / "lexicon.txt").read_text(encoding="utf-8").splitlines()
    assert lexicon_lines == sorted(lexicon_lines)
    assert (tmp_path / "dict" / "optional_silence.txt").read_text(encoding="utf-8") == "SIL\n"
    assert (tmp_path / "dict" / "nonsilence_phones.txt").read_text(encoding="utf-8") == "a\ne\np p_1\nz\n"


def test_dictionary_load_requires_files(tmp_path: Path) -> None:
    (tmp_path / "dict").mkdir()

    with pytest.raises(StateError):
        Dictionary.load(tmp_path / "dict")

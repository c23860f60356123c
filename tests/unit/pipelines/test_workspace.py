"""Tests for item workspaces and per-item preparation."""

from __future__ import annotations

from pathlib import Path

import pytest
from support import RecordingToolkit, base_config, build_project, write_corpus

from universal_am.exceptions import ConfigurationError, StateError
from universal_am.pipelines.corpus import Corpus
from universal_am.pipelines.lexicon import Dictionary
from universal_am.pipelines.workspace import (
    PREPARE_SCRIPT,
    prefix_item_corpus,
    prepare_item_data,
    setup_workspace,
    standardize_item_lexicon,
)


def fake_prepare_data(argv: list[str], cwd: Path) -> None:
    item = cwd.name
    write_corpus(cwd / "data" / "train", {f"{item}-utt1": f"{item}-spk", f"{item}-utt2": f"{item}-spk"})
    lexicon = cwd / "data" / "local" / "lexicon.txt"
    lexicon.parent.mkdir(parents=True, exist_ok=True)
    lexicon.write_text("<unk>\t<oov>\nmama\tm a _1\tm a _2\n", encoding="utf-8")


@pytest.fixture
def project(tmp_path: Path) -> Path:
    return build_project(tmp_path.resolve())


def test_setup_workspace_links_resources_and_config(make_context, project: Path) -> None:
    context = make_context()

    workspace = setup_workspace(context, "101")

    assert workspace == project / "data" / "101"
    for name in ("local", "utils", "steps", "conf"):
        assert (workspace / name).is_symlink()
        assert (workspace / name).resolve() == project / name
    assert (workspace / "cmd.sh").is_file() and not (workspace / "cmd.sh").is_symlink()
    lang_conf = workspace / "lang.conf"
    assert lang_conf.is_symlink()
    assert lang_conf.resolve() == project / "conf" / "lang" / "101-lang-limitedLP.official.conf"


def test_setup_workspace_is_repeatable(make_context, project: Path) -> None:
    context = make_context()

    setup_workspace(context, "101")
    setup_workspace(context, "101")

    assert (project / "data" / "101" / "lang.conf").is_symlink()


def test_full_tier_binds_full_config(make_context, project: Path) -> None:
    config = base_config()
    config["items"]["tier"] = "full"
    context = make_context(config=config)

    setup_workspace(context, "102")

    resolved = (project / "data" / "102" / "lang.conf").resolve()
    assert resolved.name == "102-lang-fullLP.official.conf"


def test_path_rewrites_use_private_copy(make_context, project: Path) -> None:
    config = base_config()
    config["item_config"]["path_rewrites"] = [
        {"from": "export/babel/data/splits", "to": "export/babel/data/OtherLR-data/splits"}
    ]
    context = make_context(config=config)

    setup_workspace(context, "101")

    lang_conf = project / "data" / "101" / "lang.conf"
    shared = project / "conf" / "lang" / "101-lang-limitedLP.official.conf"
    assert not lang_conf.is_symlink()
    assert "OtherLR-data/splits/101" in lang_conf.read_text(encoding="utf-8")
    assert "OtherLR-data" not in shared.read_text(encoding="utf-8")


def test_missing_item_config_raises(make_context, project: Path) -> None:
    (project / "conf" / "lang" / "102-lang-limitedLP.official.conf").unlink()
    context = make_context()

    with pytest.raises(ConfigurationError) as excinfo:
        setup_workspace(context, "102")

    assert excinfo.value.item == "102"


def test_missing_shared_resource_raises(make_context, project: Path) -> None:
    (project / "steps").rmdir()
    context = make_context()

    with pytest.raises(StateError, match="steps"):
        setup_workspace(context, "101")


def test_prepare_item_data_runs_inside_workspace(make_context, project: Path) -> None:
    toolkit = RecordingToolkit(project, {PREPARE_SCRIPT: fake_prepare_data})
    context = make_context(toolkit=toolkit)
    setup_workspace(context, "101")

    corpus_dir = prepare_item_data(context, "101")
    prepare_item_data(context, "101")

    assert corpus_dir == project / "data" / "101" / "data" / "train"
    assert len(toolkit.calls) == 1
    assert toolkit.calls[0].cwd == project / "data" / "101"
    assert context.markers.is_complete("data/101/data/train")


def test_prepare_item_data_checks_outputs(make_context, project: Path) -> None:
    context = make_context(toolkit=RecordingToolkit(project))
    setup_workspace(context, "101")

    with pytest.raises(StateError, match="did not produce a corpus"):
        prepare_item_data(context, "101")

    assert not context.markers.is_complete("data/101/data/train")


def test_standardize_item_lexicon_writes_dictionary(make_context, project: Path) -> None:
    context = make_context()
    fake_prepare_data([], project / "data" / "101")
    (project / "universal_phone_maps" / "tones" / "101").write_text("_1 _1\n_2 _2\n", encoding="utf-8")

    dictionary = standardize_item_lexicon(context, "101")

    assert dictionary.nonsilence == {"mama": [("m_1", "a_1", "m_2", "a_2")]}
    written = Dictionary.load(project / "data" / "101" / "data" / "dict_universal")
    assert written.silence["<unk>"] == ("<oov>",)
    assert written.nonsilence == dictionary.nonsilence


def test_standardize_requires_raw_lexicon(make_context, project: Path) -> None:
    with pytest.raises(StateError) as excinfo:
        standardize_item_lexicon(make_context(), "101")

    assert excinfo.value.item == "101"


def test_prefix_item_corpus(make_context, project: Path) -> None:
    context = make_context()
    fake_prepare_data([], project / "data" / "102")

    prefix_item_corpus(context, "102")

    prefixed = Corpus.load(project / "data" / "102" / "data" / "train_102")
    assert prefixed.utterances == ["102_102-utt1", "102_102-utt2"]
    assert prefixed.speakers == ["102_102-spk"]


def test_prefix_item_corpus_drops_stale_tables(make_context, project: Path) -> None:
    context = make_context()
    fake_prepare_data([], project / "data" / "102")
    stale = project / "data" / "102" / "data" / "train_102"
    write_corpus(stale, {"102_old": "102_spk"})
    (stale / "segments").write_text("102_old 102_old 0.0 1.0\n", encoding="utf-8")

    prefix_item_corpus(context, "102")

    assert not (stale / "segments").exists()
    assert Corpus.load(stale).utterances == ["102_102-utt1", "102_102-utt2"]

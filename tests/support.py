"""Helpers shared by the unit tests: toolkit stand-ins and on-disk fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

Effect = Callable[[list[str], Path], None]


@dataclass
class RecordedCall:
    script: str
    args: list[str]
    cwd: Path


class RecordingToolkit:
    """Stands in for ``ToolkitRunner``: records invocations and runs scripted side effects."""

    def __init__(self, project_root: Path, effects: Mapping[str, Effect] | None = None) -> None:
        self.project_root = project_root
        self.effects: dict[str, Effect] = dict(effects or {})
        self.calls: list[RecordedCall] = []

    def run(self, script, args=(), *, cwd=None, log_path=None) -> None:  # noqa: ANN001 - test stub
        argv = [str(arg) for arg in args]
        workdir = Path(cwd) if cwd is not None else self.project_root
        self.calls.append(RecordedCall(str(script), argv, workdir))
        effect = self.effects.get(str(script))
        if effect is not None:
            effect(argv, workdir)

    @property
    def scripts(self) -> list[str]:
        return [call.script for call in self.calls]

    def calls_to(self, script: str) -> list[RecordedCall]:
        return [call for call in self.calls if call.script == script]


def write_corpus(
    directory: Path,
    utt2spk: Mapping[str, str],
    *,
    text: Mapping[str, str] | None = None,
) -> Path:
    """Write a minimal data directory keyed by utterance (recording id == utterance id)."""
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "utt2spk").write_text(
        "".join(f"{utt} {spk}\n" for utt, spk in sorted(utt2spk.items())), encoding="utf-8"
    )
    transcripts = text or {utt: f"words of {utt}" for utt in utt2spk}
    (directory / "text").write_text(
        "".join(f"{utt} {line}\n" for utt, line in sorted(transcripts.items())), encoding="utf-8"
    )
    (directory / "wav.scp").write_text(
        "".join(f"{utt} /audio/{utt}.sph\n" for utt in sorted(utt2spk)), encoding="utf-8"
    )
    return directory


def base_config(items: Sequence[str] = ("101", "102")) -> dict[str, Any]:
    return {
        "version": 1,
        "environment": "test",
        "logging": {"level": "INFO", "file": {"enabled": False}},
        "paths": {
            "project_root": ".",
            "data_root": "data",
            "exp_root": "exp",
            "state_root": "state",
            "item_config_dir": "conf/lang",
            "phone_maps_dir": "universal_phone_maps",
            "logs_dir": "logs",
        },
        "workspace": {
            "linked_resources": ["local", "utils", "steps", "conf"],
            "copied_files": ["cmd.sh", "path.sh"],
        },
        "items": {"ids": list(items), "tier": "limited"},
        "identifiers": {"delimiter": "_"},
        "item_config": {
            "rules": {
                "limited": ["{item}-*limitedLP*.conf", "{item}-*LLP*.conf"],
                "full": ["{item}-*fullLP*.conf"],
            },
            "path_rewrites": [],
        },
        "commands": {"train_cmd": "run.pl", "max_workers": 2},
        "lexicon": {
            "silence": {
                "<silence>": "SIL",
                "<unk>": "<oov>",
                "<noise>": "<sss>",
                "<v-noise>": "<vns>",
            },
            "optional_silence": "SIL",
            "oov_word": "<unk>",
        },
        "training": {
            "boost_silence": 1.5,
            "train_nj": 32,
            "subsets": {"train_sub1": 5000, "train_sub2": 10000, "train_sub3": 20000},
            "leaves": {"tri1": 1000, "tri2": 1000, "tri3": 6000, "tri4": 6000, "tri5": 6000},
            "gaussians": {"tri1": 10000, "tri2": 20000, "tri3": 75000, "tri4": 75000, "tri5": 75000},
        },
        "cleanup": {"script": "local/run_cleanup_segmentation.sh", "lang_step": "tri5"},
        "chain": {"script": "local/chain/run_tdnn.sh", "lang_step": "tri5_ali", "stage": 4},
    }


def build_project(root: Path, items: Iterable[str] = ("101", "102")) -> Path:
    """Lay out the shared toolkit resources an item workspace links to."""
    for name in ("local", "utils", "steps"):
        (root / name).mkdir(parents=True, exist_ok=True)
    config_dir = root / "conf" / "lang"
    config_dir.mkdir(parents=True, exist_ok=True)
    for item in items:
        (config_dir / f"{item}-lang-limitedLP.official.conf").write_text(
            f"train_data_list=/export/babel/data/splits/{item}/train.LimitedLP.list\n",
            encoding="utf-8",
        )
        (config_dir / f"{item}-lang-fullLP.official.conf").write_text(
            f"train_data_list=/export/babel/data/splits/{item}/train.FullLP.list\n",
            encoding="utf-8",
        )
    (root / "cmd.sh").write_text("export train_cmd=run.pl\n", encoding="utf-8")
    (root / "path.sh").write_text("export PATH=$PWD/utils:$PATH\n", encoding="utf-8")
    (root / "universal_phone_maps" / "diphthongs").mkdir(parents=True, exist_ok=True)
    (root / "universal_phone_maps" / "tones").mkdir(parents=True, exist_ok=True)
    return root



"""Immutable runtime context shared by every stage of a pipeline run."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from universal_am.config.item_config import ItemConfigRules
from universal_am.config.load import load_config
from universal_am.exceptions import ConfigurationError
from universal_am.pipelines.prefix import DEFAULT_DELIMITER, validate_item_id
from universal_am.storage.markers import FileMarkerStore, MarkerStore
from universal_am.storage.paths import PathsConfig, build_paths
from universal_am.utils.toolkit import ToolkitRunner

__all__ = [
    "PipelineContext",
    "PipelineSettings",
    "TrainingSettings",
    "build_default_context",
]

DEFAULT_LINKED_RESOURCES = ("local", "utils", "steps", "conf")
DEFAULT_COPIED_FILES = ("cmd.sh", "path.sh")


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"Configuration section '{name}' must be a mapping.")
    return value


def _int_mapping(section: Mapping[str, Any], key: str) -> Mapping[str, int]:
    raw = section.get(key) or {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Configuration 'training.{key}' must be a mapping.")
    return MappingProxyType({str(name): int(value) for name, value in raw.items()})


@dataclass(frozen=True, slots=True)
class TrainingSettings:
    """Knobs for the sequential training chain."""

    boost_silence: float = 1.5
    train_nj: int = 32
    subsets: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    leaves: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    gaussians: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> TrainingSettings:
        section = _section(config, "training")
        return cls(
            boost_silence=float(section.get("boost_silence", 1.5)),
            train_nj=int(section.get("train_nj", 32)),
            subsets=_int_mapping(section, "subsets"),
            leaves=_int_mapping(section, "leaves"),
            gaussians=_int_mapping(section, "gaussians"),
        )


@dataclass(frozen=True, slots=True)
class PipelineSettings:
    """Typed view of the configuration consumed by the stages."""

    items: tuple[str, ...]
    tier: str
    delimiter: str = DEFAULT_DELIMITER
    linked_resources: tuple[str, ...] = DEFAULT_LINKED_RESOURCES
    copied_files: tuple[str, ...] = DEFAULT_COPIED_FILES
    train_cmd: str = "run.pl"
    max_workers: int = 1
    silence: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    optional_silence: str = "SIL"
    oov_word: str = "<unk>"
    training: TrainingSettings = field(default_factory=TrainingSettings)
    cleanup_script: str = "local/run_cleanup_segmentation.sh"
    cleanup_lang_step: str = "tri5"
    chain_script: str = "local/chain/run_tdnn.sh"
    chain_lang_step: str = "tri5_ali"
    chain_stage: int | None = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> PipelineSettings:
        items_section = _section(config, "items")
        items = tuple(str(item) for item in items_section.get("ids") or ())
        if not items:
            raise ConfigurationError("Configuration 'items.ids' must list at least one item.")
        if len(set(items)) != len(items):
            raise ConfigurationError("Configuration 'items.ids' contains duplicates.")

        tier = items_section.get("tier")
        if not tier:
            raise ConfigurationError("Configuration 'items.tier' is required.")

        delimiter = str(_section(config, "identifiers").get("delimiter", DEFAULT_DELIMITER))
        for item in items:
            validate_item_id(item, delimiter)

        workspace = _section(config, "workspace")
        commands = _section(config, "commands")
        lexicon = _section(config, "lexicon")
        silence = lexicon.get("silence") or {}
        if not silence:
            raise ConfigurationError("Configuration 'lexicon.silence' must not be empty.")

        cleanup = _section(config, "cleanup")
        chain = _section(config, "chain")
        chain_stage = chain.get("stage")

        return cls(
            items=items,
            tier=str(tier),
            delimiter=delimiter,
            linked_resources=tuple(workspace.get("linked_resources", DEFAULT_LINKED_RESOURCES)),
            copied_files=tuple(workspace.get("copied_files", DEFAULT_COPIED_FILES)),
            train_cmd=str(commands.get("train_cmd", "run.pl")),
            max_workers=max(1, int(commands.get("max_workers", 1))),
            silence=MappingProxyType({str(word): str(phone) for word, phone in silence.items()}),
            optional_silence=str(lexicon.get("optional_silence", "SIL")),
            oov_word=str(lexicon.get("oov_word", "<unk>")),
            training=TrainingSettings.from_config(config),
            cleanup_script=str(cleanup.get("script", "local/run_cleanup_segmentation.sh")),
            cleanup_lang_step=str(cleanup.get("lang_step", "tri5")),
            chain_script=str(chain.get("script", "local/chain/run_tdnn.sh")),
            chain_lang_step=str(chain.get("lang_step", "tri5_ali")),
            chain_stage=int(chain_stage) if chain_stage is not None else None,
        )


@dataclass(frozen=True, slots=True)
class PipelineContext:
    """Runtime context shared across stages; built once before the first stage."""

    config: Mapping[str, Any]
    paths: PathsConfig
    environment: str
    settings: PipelineSettings
    item_rules: ItemConfigRules
    markers: MarkerStore
    toolkit: ToolkitRunner

    def step_id(self, path: Path) -> str:
        """Marker id for the step whose output directory is ``path``."""
        return self.paths.relative(path)


def build_default_context(
    env: str = "dev",
    overrides: Mapping[str, Any] | None = None,
    *,
    config_dir: str | Path | None = None,
    base_dir: Path | None = None,
) -> PipelineContext:
    config = load_config(env, config_dir=config_dir, overrides=overrides)
    paths = build_paths(config, base_dir=base_dir)
    paths.ensure_directories()
    return PipelineContext(
        config=MappingProxyType(config),
        paths=paths,
        environment=env,
        settings=PipelineSettings.from_config(config),
        item_rules=ItemConfigRules.from_config(config),
        markers=FileMarkerStore(paths.project_root),
        toolkit=ToolkitRunner(project_root=paths.project_root),
    )

"""Helpers for deriving canonical filesystem paths from configuration."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from universal_am.exceptions import ConfigurationError

__all__ = ["PathsConfig", "build_paths"]

COMBINED_CORPUS = "train"
COMBINED_DICTIONARY = "dict_universal"
LANG_DIR = "lang_universal"
REESTIMATED_LANG_ROOT = "lang_universalp"
SUBSETS_DIR = "subsets"


def _normalize_path(value: str | Path, *, relative_to: Path | None = None) -> Path:
    """Return an absolute path, interpreting relative paths from ``relative_to``."""
    path = Path(value)
    if not path.is_absolute() and relative_to is not None:
        path = relative_to / path
    return path.expanduser().resolve()


@dataclass(frozen=True, slots=True)
class PathsConfig:
    """Resolved filesystem paths used throughout the project.

    The per-item layout mirrors what the toolkit's data preparation scripts
    expect when run from inside an item workspace::

        data/<item>/                   workspace (linked resources, lang.conf)
        data/<item>/data/train         raw item corpus
        data/<item>/data/local/lexicon.txt
        data/<item>/data/dict_universal
        data/<item>/data/train_<item>  prefixed item corpus
    """

    project_root: Path
    data_root: Path
    exp_root: Path
    state_root: Path
    item_config_dir: Path
    phone_maps_dir: Path
    logs_dir: Path

    def ensure_directories(self) -> None:
        """Create directories that should always exist."""
        for directory in (self.data_root, self.exp_root, self.state_root, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def relative(self, path: Path) -> str:
        """Return ``path`` relative to the project root when possible."""
        try:
            return path.relative_to(self.project_root).as_posix()
        except ValueError:
            return str(path)

    # Per-item layout -----------------------------------------------------
    def item_workspace(self, item: str) -> Path:
        return self.data_root / item

    def item_data_dir(self, item: str) -> Path:
        return self.item_workspace(item) / "data"

    def item_raw_corpus(self, item: str) -> Path:
        return self.item_data_dir(item) / "train"

    def item_raw_lexicon(self, item: str) -> Path:
        return self.item_data_dir(item) / "local" / "lexicon.txt"

    def item_dictionary(self, item: str) -> Path:
        return self.item_data_dir(item) / COMBINED_DICTIONARY

    def item_prefixed_corpus(self, item: str) -> Path:
        return self.item_data_dir(item) / f"train_{item}"

    def diphthong_table(self, item: str) -> Path:
        return self.phone_maps_dir / "diphthongs" / item

    def tone_table(self, item: str) -> Path:
        return self.phone_maps_dir / "tones" / item

    # Combined layout -----------------------------------------------------
    @property
    def combined_corpus(self) -> Path:
        return self.data_root / COMBINED_CORPUS

    @property
    def combined_dictionary(self) -> Path:
        return self.data_root / COMBINED_DICTIONARY

    @property
    def lang_dir(self) -> Path:
        return self.data_root / LANG_DIR

    @property
    def subsets_dir(self) -> Path:
        return self.data_root / SUBSETS_DIR

    def subset_dir(self, name: str) -> Path:
        return self.data_root / name

    def reestimated_dictionary(self, step: str) -> Path:
        return self.combined_dictionary / "dictp" / step

    def reestimated_lang_tmp(self, step: str) -> Path:
        return self.combined_dictionary / "langp" / step

    def reestimated_lang(self, step: str) -> Path:
        return self.data_root / REESTIMATED_LANG_ROOT / step

    def model_dir(self, name: str) -> Path:
        return self.exp_root / name

    def stage_dir(self, ordinal: int) -> Path:
        return self.state_root / f"stage{ordinal}"


def build_paths(config: Mapping[str, object], *, base_dir: Path | None = None) -> PathsConfig:
    """Construct a :class:`PathsConfig` from the parsed configuration.

    ``paths.project_root`` is interpreted relative to ``base_dir`` (the current
    directory when omitted); every other entry relative to the project root.
    """
    paths_section = config.get("paths")
    if not isinstance(paths_section, Mapping):
        raise ConfigurationError("Configuration is missing the 'paths' section.")

    project_root_raw = paths_section.get("project_root", ".")
    project_root = _normalize_path(str(project_root_raw), relative_to=base_dir)

    def resolve(key: str) -> Path:
        raw_value = paths_section.get(key)
        if raw_value is None:
            raise ConfigurationError(f"Configuration 'paths.{key}' is required.")
        return _normalize_path(str(raw_value), relative_to=project_root)

    return PathsConfig(
        project_root=project_root,
        data_root=resolve("data_root"),
        exp_root=resolve("exp_root"),
        state_root=resolve("state_root"),
        item_config_dir=resolve("item_config_dir"),
        phone_maps_dir=resolve("phone_maps_dir"),
        logs_dir=resolve("logs_dir"),
    )

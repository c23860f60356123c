"""Ranked-rule resolution of per-item configuration files."""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from universal_am.exceptions import ConfigurationError

__all__ = [
    "ItemConfigRules",
    "find_item_config",
    "list_config_candidates",
    "match_item_config",
    "rewrite_paths",
]

ITEM_PLACEHOLDER = "{item}"


@dataclass(frozen=True, slots=True)
class ItemConfigRules:
    """Filename patterns per resource tier, plus path rewrites for bound configs."""

    rules: Mapping[str, tuple[str, ...]]
    path_rewrites: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> ItemConfigRules:
        section = config.get("item_config")
        if not isinstance(section, Mapping):
            raise ConfigurationError("Configuration is missing the 'item_config' section.")

        raw_rules = section.get("rules")
        if not isinstance(raw_rules, Mapping) or not raw_rules:
            raise ConfigurationError("Configuration 'item_config.rules' must be a non-empty mapping.")
        rules = {
            str(tier): tuple(str(pattern) for pattern in patterns)
            for tier, patterns in raw_rules.items()
        }

        rewrites: list[tuple[str, str]] = []
        for entry in section.get("path_rewrites") or []:
            if not isinstance(entry, Mapping) or "from" not in entry:
                raise ConfigurationError(f"Malformed path rewrite entry: {entry!r}")
            rewrites.append((str(entry["from"]), str(entry.get("to", ""))))

        return cls(rules=rules, path_rewrites=tuple(rewrites))

    def patterns_for(self, item: str, tier: str) -> list[str]:
        try:
            patterns = self.rules[tier]
        except KeyError:
            known = ", ".join(sorted(self.rules))
            raise ConfigurationError(
                f"Unknown resource tier '{tier}' (known tiers: {known}).", item=item
            ) from None
        return [pattern.replace(ITEM_PLACEHOLDER, item) for pattern in patterns]


def match_item_config(
    item: str,
    tier: str,
    candidates: Iterable[str | Path],
    rules: ItemConfigRules,
) -> Path:
    """Return the configuration file for ``item`` from ``candidates``.

    Rules are tried in their configured order; within a rule, candidates are
    considered in sorted order and matched on their file name. The first hit
    wins. The function does not touch the filesystem.
    """

    ordered = sorted((Path(candidate) for candidate in candidates), key=str)
    patterns = rules.patterns_for(item, tier)
    for pattern in patterns:
        for candidate in ordered:
            if fnmatch.fnmatchcase(candidate.name, pattern):
                return candidate

    tried = ", ".join(patterns)
    raise ConfigurationError(
        f"No configuration file matches item '{item}' for tier '{tier}' (tried: {tried}).",
        item=item,
    )


def list_config_candidates(config_dir: Path) -> list[Path]:
    """Return every ``*.conf`` file below ``config_dir``."""
    if not config_dir.is_dir():
        raise ConfigurationError(f"Item configuration directory not found: {config_dir}")
    return sorted(path for path in config_dir.rglob("*.conf"))


def find_item_config(
    config_dir: Path,
    item: str,
    tier: str,
    rules: ItemConfigRules,
    *,
    candidates: Sequence[Path] | None = None,
) -> Path:
    """Resolve the configuration file for ``item`` below ``config_dir``."""
    pool = list(candidates) if candidates is not None else list_config_candidates(config_dir)
    resolved = match_item_config(item, tier, pool, rules)
    if not resolved.is_file():
        raise ConfigurationError(
            f"Resolved configuration path is not a readable file: {resolved}", item=item
        )
    return resolved.resolve()


def rewrite_paths(text: str, rewrites: Iterable[tuple[str, str]]) -> str:
    """Apply literal ``(old, new)`` substitutions to configuration text."""
    for old, new in rewrites:
        text = text.replace(old, new)
    return text

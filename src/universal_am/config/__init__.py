"""Configuration loading helpers."""

from __future__ import annotations

from .item_config import ItemConfigRules, find_item_config, match_item_config
from .load import ConfigError, load_config

__all__ = [
    "ConfigError",
    "ItemConfigRules",
    "find_item_config",
    "load_config",
    "match_item_config",
]

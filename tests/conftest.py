"""Global pytest fixtures for universal-am."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

import pytest
from support import RecordingToolkit, base_config

from universal_am.config.item_config import ItemConfigRules
from universal_am.pipelines.context import PipelineContext, PipelineSettings
from universal_am.storage.markers import FileMarkerStore, MarkerStore
from universal_am.storage.paths import build_paths


@pytest.fixture
def make_context(tmp_path: Path) -> Callable[..., PipelineContext]:
    """Factory building a ``PipelineContext`` rooted at ``tmp_path`` without YAML files."""

    def factory(
        *,
        config: Mapping[str, Any] | None = None,
        toolkit: Any | None = None,
        markers: MarkerStore | None = None,
    ) -> PipelineContext:
        resolved = dict(config if config is not None else base_config())
        paths = build_paths(resolved, base_dir=tmp_path)
        paths.ensure_directories()
        return PipelineContext(
            config=MappingProxyType(resolved),
            paths=paths,
            environment="test",
            settings=PipelineSettings.from_config(resolved),
            item_rules=ItemConfigRules.from_config(resolved),
            markers=markers if markers is not None else FileMarkerStore(paths.project_root),
            toolkit=toolkit if toolkit is not None else RecordingToolkit(paths.project_root),
        )

    return factory

"""Per-item workspaces and the per-item preparation steps run inside them."""

from __future__ import annotations

import shutil
from pathlib import Path

from universal_am.config.item_config import find_item_config, rewrite_paths
from universal_am.exceptions import StateError
from universal_am.pipelines.context import PipelineContext
from universal_am.pipelines.corpus import Corpus
from universal_am.pipelines.lexicon import Dictionary, PhoneRules, standardize_lexicon
from universal_am.pipelines.prefix import prefix_corpus_directory
from universal_am.utils.logging import get_logger

__all__ = [
    "ITEM_CONFIG_NAME",
    "PREPARE_SCRIPT",
    "bind_item_config",
    "prefix_item_corpus",
    "prepare_item_data",
    "setup_workspace",
    "standardize_item_lexicon",
]

LOGGER = get_logger(__name__)

ITEM_CONFIG_NAME = "lang.conf"
PREPARE_SCRIPT = "./local/prepare_data.sh"


def _replace_link(link: Path, target: Path) -> None:
    if link.is_symlink() or link.is_file():
        link.unlink()
    elif link.exists():
        raise StateError(f"Refusing to replace directory {link} with a link to {target}.")
    link.symlink_to(target, target_is_directory=target.is_dir())


def setup_workspace(context: PipelineContext, item: str) -> Path:
    """Create ``data/<item>`` with links to the shared resources and its bound config.

    Safe to repeat: existing links and copies are replaced.
    """
    paths = context.paths
    settings = context.settings
    workspace = paths.item_workspace(item)
    workspace.mkdir(parents=True, exist_ok=True)

    for name in settings.linked_resources:
        source = paths.project_root / name
        if not source.exists():
            raise StateError(f"Shared resource '{name}' not found at {source}.", item=item)
        _replace_link(workspace / name, source.resolve())

    for name in settings.copied_files:
        source = paths.project_root / name
        if not source.is_file():
            raise StateError(f"Per-run file '{name}' not found at {source}.", item=item)
        destination = workspace / name
        if destination.is_symlink():
            destination.unlink()
        shutil.copy2(source, destination)

    config_path = bind_item_config(context, item)
    LOGGER.info("Workspace for item %s ready at %s (config %s)", item, workspace, config_path)
    return workspace


def bind_item_config(context: PipelineContext, item: str) -> Path:
    """Point ``data/<item>/lang.conf`` at the item's resolved configuration file.

    With path rewrites configured the workspace gets a rewritten private copy,
    leaving the shared file untouched; otherwise it is a symlink.
    """
    paths = context.paths
    rules = context.item_rules
    resolved = find_item_config(paths.item_config_dir, item, context.settings.tier, rules)
    destination = paths.item_workspace(item) / ITEM_CONFIG_NAME

    if not rules.path_rewrites:
        _replace_link(destination, resolved)
        return resolved

    if destination.is_symlink():
        destination.unlink()
    text = resolved.read_text(encoding="utf-8")
    destination.write_text(rewrite_paths(text, rules.path_rewrites), encoding="utf-8")
    shutil.copymode(resolved, destination)
    return resolved


def prepare_item_data(context: PipelineContext, item: str) -> Path:
    """Run the toolkit's data preparation inside the item workspace."""
    paths = context.paths
    workspace = paths.item_workspace(item)
    corpus_dir = paths.item_raw_corpus(item)
    step_id = context.step_id(corpus_dir)
    if context.markers.is_complete(step_id):
        LOGGER.info("Data for item %s already prepared; skipping", item)
        return corpus_dir

    if not (workspace / ITEM_CONFIG_NAME).exists():
        raise StateError(f"Workspace {workspace} has no {ITEM_CONFIG_NAME}.", item=item)

    context.toolkit.run(
        PREPARE_SCRIPT,
        cwd=workspace,
        log_path=paths.logs_dir / f"prepare_data_{item}.log",
    )

    if not (corpus_dir / "utt2spk").is_file():
        raise StateError(f"Data preparation did not produce a corpus at {corpus_dir}.", item=item)
    lexicon = paths.item_raw_lexicon(item)
    if not lexicon.is_file():
        raise StateError(f"Data preparation did not produce a lexicon at {lexicon}.", item=item)

    context.markers.mark_complete(step_id)
    return corpus_dir


def standardize_item_lexicon(context: PipelineContext, item: str) -> Dictionary:
    """Write ``data/<item>/data/dict_universal`` from the item's raw lexicon."""
    paths = context.paths
    settings = context.settings
    raw_lexicon = paths.item_raw_lexicon(item)
    if not raw_lexicon.is_file():
        raise StateError(f"Raw lexicon not found: {raw_lexicon}", item=item)

    rules = PhoneRules.load(paths.diphthong_table(item), paths.tone_table(item))
    dictionary = standardize_lexicon(
        raw_lexicon,
        rules,
        silence=settings.silence,
        optional_silence=settings.optional_silence,
    )
    dictionary.write(paths.item_dictionary(item))
    return dictionary


def prefix_item_corpus(context: PipelineContext, item: str) -> Corpus:
    """Write ``data/<item>/data/train_<item>`` with every id in the item's namespace."""
    paths = context.paths
    return prefix_corpus_directory(
        paths.item_raw_corpus(item),
        paths.item_prefixed_corpus(item),
        item,
        context.settings.delimiter,
    )

"""Command-line entrypoints for universal-am."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import typer

from universal_am.config.item_config import find_item_config
from universal_am.exceptions import ConfigurationError, PipelineError
from universal_am.pipelines.orchestrator import (
    PipelineContext,
    StageRunner,
    StageStatus,
    build_default_context,
)
from universal_am.pipelines.training import DEFAULT_CHAIN
from universal_am.utils.logging import configure_logging

app = typer.Typer(help="Train a multilingual acoustic model across many languages.")

ENV_OPTION = typer.Option("dev", "--env", help="Configuration environment to load (default: dev).")
CONFIG_DIR_OPTION = typer.Option(
    None,
    "--config-dir",
    help="Directory holding <env>.yaml (defaults to the project's configs/).",
)


def _load_context(
    env: str,
    config_dir: Optional[Path],
    overrides: dict[str, Any] | None = None,
) -> PipelineContext:
    try:
        context = build_default_context(env, overrides, config_dir=config_dir)
    except (ConfigurationError, OSError) as exc:
        typer.echo(f"Failed to load configuration: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    configure_logging(context.config.get("logging"), base_dir=context.paths.project_root)
    return context


@app.command()
def run(
    stage: int = typer.Option(
        0,
        "--stage",
        "-s",
        min=0,
        help="First stage to run; earlier stages are assumed done.",
    ),
    env: str = ENV_OPTION,
    config_dir: Optional[Path] = CONFIG_DIR_OPTION,
    max_workers: Optional[int] = typer.Option(
        None,
        "--max-workers",
        min=1,
        help="Items processed concurrently in per-item stages (overrides commands.max_workers).",
    ),
) -> None:
    """Run the pipeline from ``--stage`` onwards, resuming past completed stages."""

    overrides = {"commands": {"max_workers": max_workers}} if max_workers is not None else None
    context = _load_context(env, config_dir, overrides)
    runner = StageRunner(context)

    try:
        outcomes = runner.run(start_stage=stage)
    except PipelineError as exc:
        typer.echo(f"Pipeline failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    except KeyboardInterrupt:  # pragma: no cover - interactive guard
        typer.echo("Interrupted; completed stages keep their markers.", err=True)
        raise typer.Exit(code=130) from None

    for outcome in outcomes:
        if outcome.status is StageStatus.COMPLETED:
            typer.echo(f"[{outcome.stage.ordinal}] {outcome.stage.name}: {outcome.message}")
    typer.echo("Pipeline completed successfully.")


@app.command()
def status(
    env: str = ENV_OPTION,
    config_dir: Optional[Path] = CONFIG_DIR_OPTION,
) -> None:
    """List stage and training-step completion markers."""

    context = _load_context(env, config_dir)
    runner = StageRunner(context)
    for stage in runner.stages:
        state = "done" if runner.is_complete(stage) else "pending"
        typer.echo(f"stage {stage.ordinal:<2} {state:<8} {stage.name}")

    paths = context.paths
    step_dirs = [paths.subsets_dir] + [paths.model_dir(step.output) for step in DEFAULT_CHAIN]
    for directory in step_dirs:
        step_id = context.step_id(directory)
        state = "done" if context.markers.is_complete(step_id) else "pending"
        typer.echo(f"step     {state:<8} {step_id}")


@app.command("resolve-config")
def resolve_config(
    item: str = typer.Argument(..., help="Item (language) identifier."),
    tier: Optional[str] = typer.Option(None, "--tier", help="Resource tier (defaults to items.tier)."),
    env: str = ENV_OPTION,
    config_dir: Optional[Path] = CONFIG_DIR_OPTION,
) -> None:
    """Print the configuration file an item's workspace would be bound to."""

    context = _load_context(env, config_dir)
    try:
        resolved = find_item_config(
            context.paths.item_config_dir,
            item,
            tier or context.settings.tier,
            context.item_rules,
        )
    except ConfigurationError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(str(resolved))


def main() -> None:
    """Entrypoint used by the console script."""
    app()


if __name__ == "__main__":
    main()

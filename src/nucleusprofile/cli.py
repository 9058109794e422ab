"""nucleusprofile CLI -- thin wrapper over ProfilingPipeline."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import click

from nucleusprofile.core.rules import SHAPE_CLASSES, rule_sets_for_shape
from nucleusprofile.engine import (
    ConsoleObserver,
    PipelineConfig,
    ProfilingPipeline,
    ProgressObserver,
    TimingObserver,
    load_config,
    serialize_config,
)
from nucleusprofile.engine.observers import Observer
from nucleusprofile.engine.pipeline import build_stages


def _build_observers(
    config: PipelineConfig,
    verbose: bool,
    total_stages: int,
) -> list[Observer]:
    """Console output, a timing report in the output directory, and progress logging."""
    return [
        ConsoleObserver(verbose=verbose, total_stages=total_stages),
        TimingObserver(output_path=Path(config.output_dir) / "timing.txt"),
        ProgressObserver(log_every=100 if verbose else 0),
    ]


# ---------------------------------------------------------------------------
# CLI definition
# ---------------------------------------------------------------------------


@click.group()
def cli() -> None:
    """nucleusprofile -- landmark detection and segmentation of nuclear outlines."""


@cli.command()
@click.option(
    "--config",
    "-c",
    required=True,
    type=click.Path(exists=True),
    help="Path to pipeline config YAML.",
)
@click.option(
    "--set",
    "overrides",
    multiple=True,
    help="Config override as key=val (e.g. --set segmentation.min_segment_size=12).",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Verbose output.")
def run(
    config: str,
    overrides: tuple[str, ...],
    verbose: bool,
) -> None:
    """Run the profiling pipeline."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    # 1. Parse --set overrides into dict
    cli_overrides: dict[str, Any] = {}
    for item in overrides:
        key, _, value = item.partition("=")
        if not key:
            continue
        cli_overrides[key] = value

    try:
        # 2. Load config and build stages
        pipeline_config = load_config(yaml_path=config, cli_overrides=cli_overrides)
        stages = build_stages(pipeline_config)

        # 3. Create and run pipeline
        pipeline = ProfilingPipeline(
            stages=stages,
            config=pipeline_config,
            observers=_build_observers(pipeline_config, verbose, len(stages)),
        )
        pipeline.run()
    except Exception as exc:
        sys.stderr.write(f"Error: {exc}\n")
        sys.exit(1)


@cli.command("init-config")
@click.option(
    "--output",
    "-o",
    default="nucleusprofile.yaml",
    type=click.Path(),
    help="Output file path (default: nucleusprofile.yaml).",
)
@click.option(
    "--force",
    is_flag=True,
    default=False,
    help="Overwrite existing file.",
)
def init_config(output: str, force: bool) -> None:
    """Generate a default template YAML config file with all pipeline defaults."""
    output_path = Path(output)
    if output_path.exists() and not force:
        raise click.ClickException(
            f"'{output}' already exists. Use --force to overwrite."
        )
    output_path.write_text(serialize_config(PipelineConfig()))
    click.echo(f"Config written to {output}")


@cli.command("shape-classes")
def shape_classes() -> None:
    """List the built-in shape classes and the landmarks each one locates."""
    for name in sorted(SHAPE_CLASSES):
        landmarks = ", ".join(lm.value for lm in rule_sets_for_shape(name).landmarks)
        click.echo(f"{name}: {landmarks}")


def main() -> None:
    """Entry point for the ``nucleusprofile`` console script."""
    cli()

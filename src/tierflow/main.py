"""CLI entrypoint for tierflow."""

import logging
from pathlib import Path

import rich_click as click

from tierflow import __version__
from tierflow.chunking.controllers import ChunkFileCommand, ChunkingCliController
from tierflow.chunking.models import ChunkingMode
from tierflow.chunking.sources import CONTENT_TYPE_BY_SUFFIX
from tierflow.pipeline.controllers import (
    PipelineCliController,
    PipelineInspectCommand,
    PipelineRunCommand,
    PipelineTiersCommand,
)
from tierflow.pipeline.topology import DEFAULT_TIER_IDS

click.rich_click.USE_MARKDOWN = True
CHUNKING_CONTROLLER = ChunkingCliController()
PIPELINE_CONTROLLER = PipelineCliController()

_STRATEGY_CHOICE = click.Choice([mode.value for mode in ChunkingMode])
_CONTENT_TYPE_CHOICE = click.Choice(sorted(set(CONTENT_TYPE_BY_SUFFIX.values())))
_TIER_CHOICE = click.Choice(list(DEFAULT_TIER_IDS))


@click.group()
@click.version_option(version=__version__, prog_name="tierflow")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for pipeline diagnostics.",
)
def tierflow(log_level: str) -> None:
    """Tiered task routing pipeline CLI."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@tierflow.command("chunk")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--type",
    "content_type",
    type=_CONTENT_TYPE_CHOICE,
    default=None,
    help="Content type.",
)
@click.option("--strategy", type=_STRATEGY_CHOICE, default=None, help="Chunking strategy.")
@click.option(
    "--relationships/--no-relationships",
    default=False,
    show_default=True,
    help="Print relationship edge counts per chunk.",
)
@click.option("--search", default=None, help="Search the produced chunks for a phrase.")
def chunk(
    path: Path,
    content_type: str | None,
    strategy: str | None,
    relationships: bool,
    search: str | None,
) -> None:
    """Split one file into chunks and print them.

    Without `--strategy` the default strategy for the content type is used.
    """

    try:
        lines = CHUNKING_CONTROLLER.chunk_file(
            ChunkFileCommand(
                path=path,
                content_type=content_type,
                strategy=strategy,
                show_relationships=relationships,
                search=search,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@tierflow.group()
def pipeline() -> None:
    """Pipeline commands."""


@pipeline.command("run")
@click.argument(
    "paths",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--strategy", type=_STRATEGY_CHOICE, default=None, help="Chunking strategy.")
@click.option(
    "--tier",
    "tiers",
    multiple=True,
    type=_TIER_CHOICE,
    help="Enable only these tiers. Can be repeated.",
)
@click.option("--threaded", is_flag=True, default=False, help="Run each tier on its own thread.")
@click.option(
    "--chunk/--no-chunk",
    default=True,
    show_default=True,
    help="Split files into chunks and route one task per chunk.",
)
@click.option(
    "--persist/--no-persist",
    default=True,
    show_default=True,
    help="Store the run in the SQLite database.",
)
@click.option(
    "--max-ticks",
    type=click.IntRange(min=1),
    default=None,
    help="Stop driving the pipeline after this many scheduling passes.",
)
@click.option(
    "--stage-delay",
    type=click.FloatRange(min=0.0),
    default=0.0,
    show_default=True,
    help="Seconds each pass-through stage sleeps per task.",
)
def pipeline_run(  # noqa: PLR0913
    paths: tuple[Path, ...],
    db_path: Path | None,
    strategy: str | None,
    tiers: tuple[str, ...],
    threaded: bool,
    chunk: bool,
    persist: bool,
    max_ticks: int | None,
    stage_delay: float,
) -> None:
    """Submit files as one batch and drive it through the tiers."""

    try:
        lines = PIPELINE_CONTROLLER.run_batch(
            PipelineRunCommand(
                paths=paths,
                db_path=db_path,
                strategy=strategy,
                tiers=tiers,
                threaded=threaded,
                chunk=chunk,
                persist=persist,
                max_ticks=max_ticks,
                stage_delay_seconds=stage_delay,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@pipeline.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--batch-id", default=None, help="Batch to inspect; lists recent batches if omitted.")
@click.option("--events", "show_events", is_flag=True, default=False, help="Print task events.")
def pipeline_inspect(db_path: Path | None, batch_id: str | None, show_events: bool) -> None:
    """Show a stored batch and its tasks."""

    _emit_lines(
        PIPELINE_CONTROLLER.inspect(
            PipelineInspectCommand(db_path=db_path, batch_id=batch_id, show_events=show_events),
        ),
    )


@pipeline.command("tiers")
@click.option(
    "--tier",
    "tiers",
    multiple=True,
    type=_TIER_CHOICE,
    help="Show only these tiers. Can be repeated.",
)
@click.option(
    "--agents-per-tier",
    type=click.IntRange(min=1),
    default=None,
    help="Override the capacity // 10 agent count.",
)
def pipeline_tiers(tiers: tuple[str, ...], agents_per_tier: int | None) -> None:
    """Print the configured tier topology."""

    try:
        lines = PIPELINE_CONTROLLER.list_tiers(
            PipelineTiersCommand(tiers=tiers, agents_per_tier=agents_per_tier),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    tierflow()

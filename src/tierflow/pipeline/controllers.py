"""Controllers for pipeline CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path

from tierflow.chunking.engine import ChunkingEngine
from tierflow.chunking.sources import file_spec_for, read_text
from tierflow.config import Settings
from tierflow.embedding import build_embedder
from tierflow.pipeline.executors import PassThroughExecutor
from tierflow.pipeline.metrics import (
    render_batch_lines,
    render_chunking_metrics,
    render_pipeline_lines,
    render_run_summary,
)
from tierflow.pipeline.registry import build_registry
from tierflow.pipeline.service import TaskPipeline
from tierflow.pipeline.topology import select_topology
from tierflow.storage.repository import PipelineRepository


@dataclass(slots=True)
class PipelineRunCommand:
    """CLI input for one batch run."""

    paths: tuple[Path, ...]
    db_path: Path | None
    strategy: str | None
    tiers: tuple[str, ...]
    threaded: bool
    chunk: bool
    persist: bool
    max_ticks: int | None
    stage_delay_seconds: float = 0.0


@dataclass(slots=True)
class PipelineInspectCommand:
    """CLI input for persisted batch inspection."""

    db_path: Path | None
    batch_id: str | None
    show_events: bool


@dataclass(slots=True)
class PipelineTiersCommand:
    """CLI input for topology listing."""

    tiers: tuple[str, ...]
    agents_per_tier: int | None


class PipelineCliController:
    """Coordinates batch runs, topology listing and run inspection."""

    def run_batch(self, command: PipelineRunCommand) -> list[str]:
        settings = _settings_for_run(command)
        embedder = build_embedder(
            settings.embedding.model_name,
            dimensions=settings.embedding.dimensions,
        )
        registry = build_registry(
            select_topology(settings.pipeline.tier_ids),
            embedder=embedder,
            agents_per_tier=settings.pipeline.agents_per_tier,
            executor_factory=lambda definition: PassThroughExecutor(
                tier_id=definition.id,
                delay_seconds=command.stage_delay_seconds,
            ),
        )
        engine = ChunkingEngine(settings.chunking, embedder=embedder) if command.chunk else None
        pipeline = TaskPipeline(
            registry,
            settings=settings.pipeline,
            chunking_engine=engine,
            embedder=embedder,
        )
        files = [file_spec_for(path) for path in command.paths]
        batch_id = pipeline.submit_batch(
            files,
            reader=read_text if command.chunk else None,
            strategy=command.strategy,
        )

        if settings.pipeline.threaded:
            pipeline.start()
            try:
                run = pipeline.run_until_idle(max_ticks=command.max_ticks)
            finally:
                pipeline.stop()
        else:
            run = pipeline.run_until_idle(max_ticks=command.max_ticks)

        lines = [f"Batch submitted: batch_id={batch_id} files={len(files)}"]
        lines.append(render_run_summary(run.totals, ticks=run.ticks, idle=run.idle))
        lines.extend(render_pipeline_lines(pipeline.get_pipeline_status()))
        batch_view = pipeline.get_batch_status(batch_id)
        if batch_view is not None:
            lines.extend(render_batch_lines(batch_view))
        if engine is not None:
            lines.append(render_chunking_metrics(engine.metrics))

        if command.persist:
            with _repository(settings) as repository:
                stored = repository.save_run(
                    pipeline.snapshot(),
                    chunks=[
                        chunk
                        for spec in files
                        for chunk in (engine.get_chunks_by_parent(spec.id) if engine else [])
                    ],
                )
            lines.append(f"Run stored: db={settings.db_path} tasks={stored}")
        return lines

    def inspect(self, command: PipelineInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            if command.batch_id is None:
                batches = repository.list_batches()
                if not batches:
                    return ["No stored batches."]
                return [
                    f"{batch.created_at.isoformat()} {batch.batch_id} status={batch.status} "
                    f"files={batch.file_count} chains={batch.chain_count}"
                    for batch in batches
                ]

            batch = repository.get_batch(command.batch_id)
            if batch is None:
                return [f"Batch not found: {command.batch_id}"]
            tasks = repository.list_batch_tasks(command.batch_id)
            events = {
                task.task_id: repository.list_task_events(task.task_id)
                for task in tasks
                if command.show_events
            }

        lines = [
            f"Batch: {batch.batch_id}",
            f"Status: {batch.status}",
            f"Files: {batch.file_count} Chains: {batch.chain_count}",
            f"Estimated processing: {batch.estimated_processing_seconds:.3f}s",
            f"Failed tasks: {', '.join(batch.failed_task_ids) or '-'}",
            f"Tasks: {len(tasks)}",
        ]
        for task in tasks:
            duration = f"{task.duration_ms:.1f}ms" if task.duration_ms is not None else "-"
            lines.append(
                f"  {task.task_id} tier={task.tier_id} status={task.status} "
                f"agent={task.assigned_agent or '-'} retries={task.retry_count} "
                f"duration={duration}",
            )
            for event in events.get(task.task_id, []):
                lines.append(f"    {event.created_at.isoformat()} {event.event_type}")
        return lines

    def list_tiers(self, command: PipelineTiersCommand) -> list[str]:
        settings = Settings.from_env()
        tier_ids = command.tiers or settings.pipeline.tier_ids
        settings = replace(settings, pipeline=replace(settings.pipeline, tier_ids=tier_ids))
        settings.validate()
        agents_per_tier = (
            command.agents_per_tier
            if command.agents_per_tier is not None
            else settings.pipeline.agents_per_tier
        )
        lines = [f"Tiers: {len(tier_ids)}"]
        for definition in select_topology(tier_ids):
            agents = agents_per_tier or definition.default_agent_count
            lines.append(
                f"  L{definition.level:<2} {definition.id:<22} capacity={definition.capacity} "
                f"agents={agents} keywords={','.join(definition.keywords)}",
            )
        return lines


def _settings_for_run(command: PipelineRunCommand) -> Settings:
    settings = Settings.from_env(db_path=command.db_path)
    pipeline_settings = settings.pipeline
    if command.tiers:
        pipeline_settings = replace(pipeline_settings, tier_ids=command.tiers)
    if command.threaded:
        pipeline_settings = replace(pipeline_settings, threaded=True)
    settings = replace(settings, pipeline=pipeline_settings)
    settings.validate()
    return settings


@contextmanager
def _repository(settings: Settings) -> Iterator[PipelineRepository]:
    repository = PipelineRepository(db_path=settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()

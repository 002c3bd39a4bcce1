"""Operator-facing rendering of pipeline, batch and chunking status."""

from __future__ import annotations

from collections import Counter

from tierflow.chunking.models import Chunk, ChunkingMetrics
from tierflow.pipeline.models import BatchStatusView, PipelineStatusView, TierStatus
from tierflow.pipeline.scheduler import TickSummary


def render_pipeline_lines(status: PipelineStatusView) -> list[str]:
    """Render one header line plus one line per tier."""

    lines = [
        (
            "Pipeline: "
            f"health={status.system_health} "
            f"agents={status.total_agents} "
            f"active_tasks={status.total_tasks} "
            f"active_batches={status.active_batches} "
            f"completed_batches={status.completed_batches}"
        ),
    ]
    for tier in status.tiers:
        marker = " [backpressure]" if tier.status == TierStatus.OVERLOADED else ""
        lines.append(
            f"  L{tier.level:<2} {tier.id:<22} status={tier.status.value} "
            f"load={tier.current_load}/{tier.capacity} "
            f"queue={tier.input_queue_size} "
            f"agents={tier.active_agents}/{tier.total_agents}{marker}",
        )
    return lines


def render_batch_lines(view: BatchStatusView) -> list[str]:
    lines = [
        f"Batch {view.batch_id}: status={view.status.value}",
        (
            f"  files={view.files} chains={view.chains} "
            f"resolved={view.resolved_chains} progress={view.progress:.2%}"
        ),
        f"  created={view.created_at.isoformat()} eta={view.estimated_completion.isoformat()}",
    ]
    if view.failed_task_ids:
        lines.append("  failed tasks: " + ", ".join(view.failed_task_ids))
    return lines


def render_run_summary(summary: TickSummary, *, ticks: int, idle: bool) -> str:
    return (
        f"Run: ticks={ticks} idle={'yes' if idle else 'no'} "
        f"assigned={summary.assigned} completed={summary.completed} "
        f"retried={summary.retried} failed={summary.failed} cancelled={summary.cancelled}"
    )


def render_chunk_lines(chunks: list[Chunk], *, show_relationships: bool = False) -> list[str]:
    lines: list[str] = []
    for chunk in chunks:
        line = (
            f"#{chunk.index + 1}/{chunk.total_chunks} [{chunk.start}:{chunk.end}] "
            f"size={chunk.size} complexity={chunk.complexity:.2f} "
            f"strategy={chunk.strategy.value}"
        )
        if chunk.node_path:
            line += f" node={chunk.node_path}"
        lines.append(line)
        for warning in chunk.warnings:
            lines.append(f"  warning: {warning}")
        if show_relationships and chunk.relationships:
            counts = Counter(edge.type.value for edge in chunk.relationships)
            lines.append("  edges: " + _fmt_key_value(dict(counts)))
    return lines


def render_chunking_metrics(metrics: ChunkingMetrics) -> str:
    return (
        "Chunking: "
        f"chunks={metrics.total_chunks} "
        f"avg_size={metrics.average_chunk_size:.0f} "
        f"throughput={metrics.throughput:.1f}/s "
        f"fallbacks={metrics.fallbacks} "
        f"failed_calls={metrics.failed_calls}"
    )


def _fmt_key_value(values: dict[str, int]) -> str:
    return " ".join(f"{key}={values[key]}" for key in sorted(values))

from __future__ import annotations

from datetime import timedelta

import allure
import pytest

from tierflow.chunking.engine import ChunkingEngine
from tierflow.chunking.models import ChunkStatus
from tierflow.config import PipelineSettings
from tierflow.embedding import HashingEmbedder
from tierflow.pipeline.errors import TaskExecutionError, TierConfigurationError, UnknownBatchError
from tierflow.pipeline.executors import ExecutorResult, FunctionExecutor
from tierflow.pipeline.metrics import render_pipeline_lines
from tierflow.pipeline.models import AgentStatus, BatchStatus, TaskStatus, TierStatus
from tierflow.pipeline.registry import TierRegistry
from tierflow.pipeline.service import TaskPipeline

pytestmark = [
    allure.epic("Pipeline"),
    allure.feature("Batch Routing"),
]


def _fail_for(file_id: str, error: Exception | None = None) -> FunctionExecutor:
    def _run(task):
        if task.payload["file"]["id"] != file_id:
            return task.payload
        if error is not None:
            raise error
        return ExecutorResult(status="failed", errors=["disk full"])

    return FunctionExecutor(_run)


def test_batch_completes_only_after_every_chain_exits(make_registry, make_files) -> None:
    pipeline = TaskPipeline(make_registry([("reader", 1, 1), ("writer", 2, 2)]))
    batch_id = pipeline.submit_batch(make_files("a", "b"))

    first = pipeline.tick()
    midway = pipeline.get_batch_status(batch_id)

    assert first.assigned == 2
    assert midway is not None
    assert midway.status == BatchStatus.PROCESSING
    assert midway.resolved_chains == 1
    assert midway.progress == pytest.approx(0.5)

    run = pipeline.run_until_idle()
    final = pipeline.get_batch_status(batch_id)

    assert run.idle is True
    assert final is not None
    assert final.status == BatchStatus.COMPLETED
    assert final.progress == 1.0
    assert final.estimated_completion == pipeline.ledger.get_batch(batch_id).finished_at
    assert pipeline.registry.get_tier("reader").peak_load == 1


def test_single_agent_tier_serializes_its_tasks(make_registry, make_files) -> None:
    pipeline = TaskPipeline(make_registry([("reader", 1, 1), ("writer", 2, 2)]))
    pipeline.submit_batch(make_files("a", "b"))
    pipeline.run_until_idle()

    reader_events = [
        (event.task_id, event.event_type)
        for event in pipeline.snapshot().events
        if event.event_type in {"assigned", "completed"} and event.details.get("tier") == "reader"
    ]

    assert [kind for _, kind in reader_events] == ["assigned", "completed", "assigned", "completed"]
    assert reader_events[0][0] == reader_events[1][0]


def test_stage_results_flow_to_next_tier(make_registry, make_files) -> None:
    pipeline = TaskPipeline(make_registry([("reader", 2, 2), ("parser", 2, 2), ("writer", 2, 2)]))
    batch_id = pipeline.submit_batch(make_files("a"))
    pipeline.run_until_idle()

    (final,) = [task for task in pipeline.ledger.tasks() if task.metadata.target_tier == "writer"]
    chain = pipeline.tracker.ancestor_chain(final.id)

    assert final.processing.result["stages"] == ["reader", "parser", "writer"]
    assert final.processing.result["file"]["id"] == "a"
    assert len(chain) == 3
    assert [pipeline.ledger.get_task(task_id).metadata.target_tier for task_id in chain] == [
        "writer",
        "parser",
        "reader",
    ]
    assert pipeline.ledger.get_task(chain[-1]).metadata.batch_id == batch_id


def test_progress_never_decreases(make_registry, make_files) -> None:
    pipeline = TaskPipeline(make_registry([("reader", 1, 1), ("parser", 1, 1), ("writer", 1, 1)]))
    batch_id = pipeline.submit_batch(make_files("a", "b", "c"))

    observed = [pipeline.tracker.progress(batch_id)]
    while not pipeline.is_idle():
        pipeline.tick()
        observed.append(pipeline.tracker.progress(batch_id))

    assert observed[0] == 0.0
    assert observed == sorted(observed)
    assert observed[-1] == 1.0


def test_estimated_completion_extrapolates_elapsed_time(make_registry, make_files) -> None:
    pipeline = TaskPipeline(make_registry([("reader", 1, 1), ("writer", 2, 2)]))
    batch_id = pipeline.submit_batch(make_files("a", "b"))
    batch = pipeline.ledger.get_batch(batch_id)

    upfront = pipeline.tracker.estimated_completion(batch_id)
    assert upfront == batch.created_at + timedelta(seconds=batch.estimated_processing_seconds)
    assert batch.estimated_processing_seconds == pytest.approx(4096 / (1024 * 1024) * 1.5)

    pipeline.tick()
    eta = pipeline.tracker.estimated_completion(
        batch_id,
        now=batch.created_at + timedelta(seconds=10),
    )

    assert eta == batch.created_at + timedelta(seconds=20)


def test_failed_chain_marks_batch_partially_failed(make_registry, make_files) -> None:
    registry = make_registry(
        [("reader", 2, 2), ("writer", 2, 2)],
        executors={"writer": _fail_for("bad")},
    )
    pipeline = TaskPipeline(registry, settings=PipelineSettings(max_retries=2))
    batch_id = pipeline.submit_batch(make_files("good", "bad"))

    run = pipeline.run_until_idle()
    view = pipeline.get_batch_status(batch_id)

    assert view is not None
    assert view.status == BatchStatus.PARTIALLY_FAILED
    assert view.resolved_chains == 2
    assert view.progress == pytest.approx(0.75)
    (failed_id,) = view.failed_task_ids
    failed = pipeline.ledger.get_task(failed_id)
    assert failed.metadata.target_tier == "writer"
    assert failed.status == TaskStatus.FAILED
    assert failed.metadata.retry_count == 2
    assert "disk full" in failed.processing.error
    assert run.totals.retried == 2
    assert run.totals.failed == 1
    events = [event.event_type for event in pipeline.ledger.events_for(failed_id)]
    assert events.count("failed") == 3
    assert events[-2:] == ["retry_exhausted", "chain_failed"]


def test_non_retryable_error_fails_without_retries(make_registry, make_files) -> None:
    registry = make_registry(
        [("reader", 2, 2)],
        executors={"reader": _fail_for("bad", TaskExecutionError("corrupt", retryable=False))},
    )
    pipeline = TaskPipeline(registry)
    batch_id = pipeline.submit_batch(make_files("bad"))

    run = pipeline.run_until_idle()

    (failed_id,) = pipeline.get_batch_status(batch_id).failed_task_ids
    assert pipeline.ledger.get_task(failed_id).metadata.retry_count == 0
    assert run.totals.retried == 0


def test_unexpected_executor_error_is_retried(make_registry, make_files) -> None:
    registry = make_registry(
        [("reader", 2, 2)],
        executors={"reader": _fail_for("bad", KeyError("missing field"))},
    )
    pipeline = TaskPipeline(registry, settings=PipelineSettings(max_retries=1))
    batch_id = pipeline.submit_batch(make_files("bad"))

    pipeline.run_until_idle()

    (failed_id,) = pipeline.get_batch_status(batch_id).failed_task_ids
    failed = pipeline.ledger.get_task(failed_id)
    assert failed.metadata.retry_count == 1
    assert "KeyError" in failed.processing.error


def test_cancel_batch_leaves_other_batches_alone(make_registry, make_files) -> None:
    pipeline = TaskPipeline(make_registry([("reader", 1, 1), ("writer", 1, 1)]))
    cancelled_id = pipeline.submit_batch(make_files("a1", "a2", "a3"))
    other_id = pipeline.submit_batch(make_files("b1"))

    pipeline.tick()
    assert pipeline.cancel_batch(cancelled_id) == BatchStatus.CANCELLED
    pipeline.run_until_idle()

    assert pipeline.get_batch_status(cancelled_id).status == BatchStatus.CANCELLED
    assert pipeline.get_batch_status(other_id).status == BatchStatus.COMPLETED

    origins = pipeline.ledger.get_batch(cancelled_id).origin_task_ids
    statuses = [pipeline.ledger.get_task(task_id).status for task_id in origins]
    assert statuses == [TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.CANCELLED]
    dependents = {dep for task in pipeline.ledger.tasks() for dep in task.dependencies}
    assert not dependents & set(origins[1:])

    assert pipeline.cancel_batch(cancelled_id) == BatchStatus.CANCELLED
    assert pipeline.cancel_batch(other_id) == BatchStatus.COMPLETED
    with pytest.raises(UnknownBatchError):
        pipeline.cancel_batch("missing")


def test_busy_tier_reports_backpressure(make_registry, make_files) -> None:
    registry = make_registry([("reader", 1, 1)])
    pipeline = TaskPipeline(registry)
    batch_id = pipeline.submit_batch(make_files("a"))
    agent = registry.get_tier("reader").agents[0]
    agent.status = AgentStatus.PROCESSING

    pipeline.tick()
    status = pipeline.get_pipeline_status()

    (tier_view,) = status.tiers
    assert tier_view.status == TierStatus.OVERLOADED
    assert tier_view.input_queue_size == 1
    assert status.system_health == 80
    assert status.active_batches == 1
    assert "[backpressure]" in render_pipeline_lines(status)[1]

    agent.status = AgentStatus.IDLE
    pipeline.run_until_idle()
    status = pipeline.get_pipeline_status()

    assert status.tiers[0].status == TierStatus.ACTIVE
    assert status.system_health == 100
    assert status.completed_batches == 1
    assert pipeline.get_batch_status(batch_id).status == BatchStatus.COMPLETED


def test_chunked_submission_routes_one_chain_per_chunk(make_registry, make_files) -> None:
    engine = ChunkingEngine(embedder=HashingEmbedder(dimensions=64))
    pipeline = TaskPipeline(
        make_registry([("reader", 2, 2), ("writer", 2, 2)]),
        chunking_engine=engine,
    )
    files = make_files("service.log", size=10_000, file_type="log") + make_files("empty")

    batch_id = pipeline.submit_batch(
        files,
        contents={"service.log": "a" * 10_000},
        strategy="fixed_size",
    )

    chunks = engine.get_chunks_by_parent("service.log")
    assert len(chunks) == 3
    assert all(chunk.status == ChunkStatus.PENDING for chunk in chunks)
    assert pipeline.get_batch_status(batch_id).chains == 4

    pipeline.run_until_idle()

    assert all(chunk.status == ChunkStatus.COMPLETED for chunk in chunks)
    origin_chunks = [
        pipeline.ledger.get_task(task_id).chunk_id
        for task_id in pipeline.ledger.get_batch(batch_id).origin_task_ids
    ]
    assert origin_chunks == [chunk.id for chunk in chunks] + [None]


def test_resubmitted_file_gets_fresh_chunks_per_batch(make_registry, make_files) -> None:
    engine = ChunkingEngine(embedder=HashingEmbedder(dimensions=64))
    pipeline = TaskPipeline(make_registry([("reader", 2, 2)]), chunking_engine=engine)
    files = make_files("a.log", size=9_000, file_type="log")
    contents = {"a.log": "a" * 9_000}

    pipeline.submit_batch(files, contents=contents, strategy="fixed_size")
    pipeline.run_until_idle()
    first_chunks = engine.get_chunks_by_parent("a.log")

    second_batch = pipeline.submit_batch(files, contents=contents, strategy="fixed_size")
    second_chunks = engine.get_chunks_by_parent("a.log")
    pipeline.cancel_batch(second_batch)
    pipeline.run_until_idle()

    assert len(first_chunks) == len(second_chunks) == 3
    assert not {chunk.id for chunk in first_chunks} & {chunk.id for chunk in second_chunks}
    assert all(chunk.status == ChunkStatus.COMPLETED for chunk in first_chunks)
    assert all(chunk.status == ChunkStatus.CANCELLED for chunk in second_chunks)


def test_ledger_indexes_tasks_by_batch(make_registry, make_files) -> None:
    pipeline = TaskPipeline(make_registry([("reader", 2, 2), ("writer", 2, 2)]))
    first = pipeline.submit_batch(make_files("a", "b"))
    second = pipeline.submit_batch(make_files("c"))

    pipeline.run_until_idle()

    first_tasks = pipeline.ledger.batch_tasks(first)
    second_tasks = pipeline.ledger.batch_tasks(second)
    assert len(first_tasks) == 4
    assert len(second_tasks) == 2
    assert {task.payload["file"]["id"] for task in second_tasks} == {"c"}
    assert pipeline.ledger.batch_tasks("missing") == []

    writer_task = second_tasks[-1]
    assert writer_task.metadata.target_tier == "writer"
    assert [event.event_type for event in pipeline.ledger.events_for(writer_task.id)] == [
        "enqueued",
        "assigned",
        "completed",
        "chain_exited",
    ]


def test_failed_chunk_chain_marks_chunk_failed(make_registry, make_files) -> None:
    engine = ChunkingEngine(embedder=HashingEmbedder(dimensions=64))
    registry = make_registry(
        [("reader", 2, 2)],
        executors={"reader": _fail_for("broken.log")},
    )
    pipeline = TaskPipeline(
        registry,
        settings=PipelineSettings(max_retries=0),
        chunking_engine=engine,
    )
    pipeline.submit_batch(
        make_files("broken.log", file_type="log"),
        contents={"broken.log": "x" * 10},
    )

    pipeline.run_until_idle()

    (chunk,) = engine.get_chunks_by_parent("broken.log")
    assert chunk.status == ChunkStatus.FAILED


def test_submit_batch_rejects_empty_file_list(make_registry) -> None:
    pipeline = TaskPipeline(make_registry([("reader", 1, 1)]))

    with pytest.raises(ValueError, match="at least one file"):
        pipeline.submit_batch([])


def test_pipeline_requires_tiers_with_agents() -> None:
    with pytest.raises(TierConfigurationError, match="at least one registered tier"):
        TaskPipeline(TierRegistry())

    registry = TierRegistry(embedder=HashingEmbedder(dimensions=16))
    registry.register_tier("reader", 1, 5, ())
    with pytest.raises(TierConfigurationError, match="has no agents"):
        TaskPipeline(registry)


def test_unknown_batch_status_is_none(make_registry) -> None:
    pipeline = TaskPipeline(make_registry([("reader", 1, 1)]))

    assert pipeline.get_batch_status("missing") is None
    with pytest.raises(UnknownBatchError):
        pipeline.tracker.progress("missing")


def test_run_until_idle_honours_tick_limit(make_registry, make_files) -> None:
    pipeline = TaskPipeline(make_registry([("reader", 1, 1)]))
    pipeline.submit_batch(make_files("a", "b", "c"))

    run = pipeline.run_until_idle(max_ticks=1)

    assert run.ticks == 1
    assert run.idle is False
    assert run.totals.completed == 1

"""Run ledger persistence backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from sqlmodel import Session, col, select

from tierflow.chunking.models import Chunk
from tierflow.pipeline.ledger import LedgerSnapshot
from tierflow.pipeline.models import Task
from tierflow.storage.alembic_runner import upgrade_head
from tierflow.storage.common import build_sqlite_engine, ensure_utc
from tierflow.storage.sqlmodel_models import (
    PipelineBatch,
    PipelineTask,
    PipelineTaskEvent,
    SourceChunk,
)


@dataclass(slots=True)
class StoredBatchView:
    """Persisted batch summary."""

    batch_id: str
    status: str
    file_count: int
    chain_count: int
    failed_task_ids: list[str]
    estimated_processing_seconds: float
    created_at: datetime
    finished_at: datetime | None


@dataclass(slots=True)
class StoredTaskView:
    """Persisted task row."""

    task_id: str
    batch_id: str
    tier_id: str
    status: str
    parent_task_id: str | None
    chunk_id: str | None
    assigned_agent: str | None
    retry_count: int
    duration_ms: float | None
    error: str | None
    created_at: datetime


@dataclass(slots=True)
class StoredTaskEventView:
    """Persisted task audit trail entry."""

    task_id: str
    event_type: str
    details: dict[str, object]
    created_at: datetime


class PipelineRepository:
    """Stores finished or in-progress pipeline runs for later inspection."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def save_run(self, snapshot: LedgerSnapshot, *, chunks: Iterable[Chunk] = ()) -> int:
        """Upsert batches, tasks, events and chunk metadata; returns stored task count."""

        batch_of = _resolve_batch_ids(snapshot.tasks)
        chunk_batch = {
            task.chunk_id: batch_of[task.id]
            for task in snapshot.tasks
            if task.chunk_id is not None and task.id in batch_of
        }
        stored_tasks = 0
        with Session(self.engine) as session:
            for batch in snapshot.batches:
                session.merge(
                    PipelineBatch(
                        batch_id=batch.id,
                        status=batch.status.value,
                        file_count=len(batch.files),
                        chain_count=len(batch.origin_task_ids),
                        failed_task_ids_json=json.dumps(batch.failed_task_ids),
                        estimated_processing_seconds=batch.estimated_processing_seconds,
                        created_at=batch.created_at,
                        finished_at=batch.finished_at,
                    ),
                )
            session.flush()

            for task in snapshot.tasks:
                batch_id = batch_of.get(task.id)
                if batch_id is None:
                    continue
                session.merge(_task_row(task, batch_id))
                stored_tasks += 1
            session.flush()

            known_tasks = set(batch_of)
            batch_ids = [batch.id for batch in snapshot.batches]
            existing_events = {
                (row.task_id, row.event_type, ensure_utc(row.created_at))
                for row in session.exec(
                    select(PipelineTaskEvent)
                    .join(PipelineTask, col(PipelineTask.task_id) == col(PipelineTaskEvent.task_id))
                    .where(col(PipelineTask.batch_id).in_(batch_ids)),
                )
            }
            for event in snapshot.events:
                key = (event.task_id, event.event_type, event.created_at)
                if event.task_id not in known_tasks or key in existing_events:
                    continue
                session.add(
                    PipelineTaskEvent(
                        task_id=event.task_id,
                        event_type=event.event_type,
                        details_json=json.dumps(event.details, sort_keys=True, default=str),
                        created_at=event.created_at,
                    ),
                )

            for chunk in chunks:
                batch_id = chunk_batch.get(chunk.id)
                if batch_id is None:
                    continue
                session.merge(
                    SourceChunk(
                        chunk_id=chunk.id,
                        batch_id=batch_id,
                        parent_id=chunk.parent_id,
                        chunk_index=chunk.index,
                        total_chunks=chunk.total_chunks,
                        start_offset=chunk.start,
                        end_offset=chunk.end,
                        checksum=chunk.checksum,
                        complexity=chunk.complexity,
                        strategy=chunk.strategy.value,
                        status=chunk.status.value,
                        warnings_json=json.dumps(chunk.warnings),
                    ),
                )
            session.commit()
        return stored_tasks

    def get_batch(self, batch_id: str) -> StoredBatchView | None:
        with Session(self.engine) as session:
            row = session.get(PipelineBatch, batch_id)
            if row is None:
                return None
            return StoredBatchView(
                batch_id=row.batch_id,
                status=row.status,
                file_count=row.file_count,
                chain_count=row.chain_count,
                failed_task_ids=json.loads(row.failed_task_ids_json),
                estimated_processing_seconds=row.estimated_processing_seconds,
                created_at=ensure_utc(row.created_at),
                finished_at=ensure_utc(row.finished_at) if row.finished_at else None,
            )

    def list_batches(self, *, limit: int = 20) -> list[StoredBatchView]:
        with Session(self.engine) as session:
            batch_ids = session.exec(
                select(PipelineBatch.batch_id)
                .order_by(col(PipelineBatch.created_at).desc())
                .limit(limit),
            ).all()
        views = [self.get_batch(batch_id) for batch_id in batch_ids]
        return [view for view in views if view is not None]

    def list_batch_tasks(self, batch_id: str) -> list[StoredTaskView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(PipelineTask)
                .where(PipelineTask.batch_id == batch_id)
                .order_by(col(PipelineTask.created_at), col(PipelineTask.task_id)),
            ).all()
            return [
                StoredTaskView(
                    task_id=row.task_id,
                    batch_id=row.batch_id,
                    tier_id=row.tier_id,
                    status=row.status,
                    parent_task_id=row.parent_task_id,
                    chunk_id=row.chunk_id,
                    assigned_agent=row.assigned_agent,
                    retry_count=row.retry_count,
                    duration_ms=row.duration_ms,
                    error=row.error,
                    created_at=ensure_utc(row.created_at),
                )
                for row in rows
            ]

    def list_task_events(self, task_id: str) -> list[StoredTaskEventView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(PipelineTaskEvent)
                .where(PipelineTaskEvent.task_id == task_id)
                .order_by(col(PipelineTaskEvent.event_id)),
            ).all()
            return [
                StoredTaskEventView(
                    task_id=row.task_id,
                    event_type=row.event_type,
                    details=json.loads(row.details_json),
                    created_at=ensure_utc(row.created_at),
                )
                for row in rows
            ]

    def list_chunks(self, parent_id: str) -> list[SourceChunk]:
        with Session(self.engine) as session:
            return list(
                session.exec(
                    select(SourceChunk)
                    .where(SourceChunk.parent_id == parent_id)
                    .order_by(col(SourceChunk.chunk_index)),
                ).all(),
            )


def _resolve_batch_ids(tasks: list[Task]) -> dict[str, str]:
    by_id = {task.id: task for task in tasks}
    resolved: dict[str, str] = {}
    for task in tasks:
        chain: list[str] = []
        current: Task | None = task
        batch_id: str | None = None
        while current is not None:
            if current.id in resolved:
                batch_id = resolved[current.id]
                break
            chain.append(current.id)
            if current.metadata.batch_id is not None:
                batch_id = current.metadata.batch_id
                break
            current = by_id.get(current.dependencies[0]) if current.dependencies else None
        if batch_id is not None:
            for task_id in chain:
                resolved[task_id] = batch_id
    return resolved


def _task_row(task: Task, batch_id: str) -> PipelineTask:
    processing = task.processing
    return PipelineTask(
        task_id=task.id,
        batch_id=batch_id,
        tier_id=task.metadata.target_tier,
        source_tier_id=task.metadata.source_tier,
        task_type=task.type,
        status=processing.status.value,
        parent_task_id=task.dependencies[0] if task.dependencies else None,
        chunk_id=task.chunk_id,
        assigned_agent=processing.assigned_agent,
        retry_count=task.metadata.retry_count,
        max_retries=task.metadata.max_retries,
        expected_duration_ms=processing.expected_duration_ms,
        duration_ms=processing.duration_ms,
        error=processing.error,
        created_at=task.metadata.created_at,
        started_at=processing.start_time,
        finished_at=processing.end_time,
    )

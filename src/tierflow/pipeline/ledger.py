"""Shared task and batch bookkeeping."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from tierflow.chunking.models import ChunkStatus
from tierflow.pipeline.models import (
    BatchStatus,
    FileBatch,
    Task,
    TaskEvent,
    TaskMetadata,
    TaskStatus,
)
from tierflow.storage.common import utc_now

logger = logging.getLogger(__name__)

ChunkStatusListener = Callable[[str, ChunkStatus], None]


@dataclass(slots=True)
class LedgerSnapshot:
    """Point-in-time copy of ledger contents for persistence."""

    batches: list[FileBatch]
    tasks: list[Task]
    events: list[TaskEvent]


class TaskLedger:
    """Task, batch and audit-trail store shared by tier scheduling units.

    Tier queues and agents are not stored here; every scheduling unit owns its own.
    All methods take ``lock``, which callers may also hold to group several updates.
    """

    def __init__(self, *, chunk_listener: ChunkStatusListener | None = None) -> None:
        self.lock = threading.RLock()
        self._tasks: dict[str, Task] = {}
        self._active: set[str] = set()
        self._batches: dict[str, FileBatch] = {}
        self._origin_of: dict[str, str] = {}
        self._events: list[TaskEvent] = []
        self._events_by_task: dict[str, list[TaskEvent]] = {}
        self._tasks_by_batch: dict[str, list[str]] = {}
        self._chunk_listener = chunk_listener

    def add_batch(self, batch: FileBatch, origin_tasks: list[Task]) -> None:
        with self.lock:
            self._batches[batch.id] = batch
            for task in origin_tasks:
                batch.origin_task_ids.append(task.id)
                self.add_task(task)

    def add_task(self, task: Task) -> None:
        with self.lock:
            if task.id in self._tasks:
                raise ValueError(f"Task id {task.id} is already registered.")
            self._tasks[task.id] = task
            self._active.add(task.id)
            origin = self.origin_task(task.id)
            if origin is not None and origin.metadata.batch_id is not None:
                self._tasks_by_batch.setdefault(origin.metadata.batch_id, []).append(task.id)
            self.record(
                task.id,
                "enqueued",
                tier=task.metadata.target_tier,
                dependencies=list(task.dependencies),
            )

    def create_successor(self, task: Task, *, target_tier: str) -> Task:
        """New task for ``target_tier`` carrying ``task``'s result as payload."""

        successor = Task(
            id=str(uuid4()),
            type=task.type,
            priority=task.priority,
            payload=task.processing.result,
            metadata=TaskMetadata(
                source_tier=task.metadata.target_tier,
                target_tier=target_tier,
                created_at=utc_now(),
                max_retries=task.metadata.max_retries,
            ),
            dependencies=[task.id],
            chunk_id=task.chunk_id,
        )
        with self.lock:
            self.add_task(successor)
            self.record(task.id, "routed", successor_id=successor.id, tier=target_tier)
        return successor

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def get_batch(self, batch_id: str) -> FileBatch | None:
        return self._batches.get(batch_id)

    def batches(self) -> list[FileBatch]:
        with self.lock:
            return list(self._batches.values())

    def tasks(self) -> list[Task]:
        with self.lock:
            return list(self._tasks.values())

    def batch_tasks(self, batch_id: str) -> list[Task]:
        """Every task whose chain leads back to ``batch_id``, in creation order."""

        with self.lock:
            return [self._tasks[task_id] for task_id in self._tasks_by_batch.get(batch_id, [])]

    def active_count(self) -> int:
        with self.lock:
            return len(self._active)

    def retire(self, task_id: str) -> None:
        with self.lock:
            self._active.discard(task_id)

    def record(self, task_id: str, event_type: str, **details: Any) -> None:
        event = TaskEvent(
            task_id=task_id,
            event_type=event_type,
            created_at=utc_now(),
            details=details,
        )
        with self.lock:
            self._events.append(event)
            self._events_by_task.setdefault(task_id, []).append(event)

    def events_for(self, task_id: str) -> list[TaskEvent]:
        with self.lock:
            return list(self._events_by_task.get(task_id, []))

    def origin_task(self, task_id: str) -> Task | None:
        """Walk first dependencies back to the task that carries a batch id."""

        with self.lock:
            cached = self._origin_of.get(task_id)
            if cached is not None:
                return self._tasks[cached]

            visited: list[str] = []
            current = self._tasks.get(task_id)
            while current is not None and current.metadata.batch_id is None:
                visited.append(current.id)
                if not current.dependencies:
                    return None
                current = self._tasks.get(current.dependencies[0])
            if current is None:
                return None
            for visited_id in (*visited, current.id):
                self._origin_of[visited_id] = current.id
            return current

    def batch_for(self, task_id: str) -> FileBatch | None:
        origin = self.origin_task(task_id)
        if origin is None or origin.metadata.batch_id is None:
            return None
        return self._batches.get(origin.metadata.batch_id)

    def is_cancelled(self, task_id: str) -> bool:
        batch = self.batch_for(task_id)
        return batch is not None and batch.status == BatchStatus.CANCELLED

    def mark_started(self, task: Task) -> None:
        with self.lock:
            batch = self.batch_for(task.id)
            if batch is not None and batch.status == BatchStatus.PENDING:
                batch.status = BatchStatus.PROCESSING
            if task.chunk_id is not None and task.metadata.source_tier is None:
                self._notify_chunk(task.chunk_id, ChunkStatus.PROCESSING)

    def mark_cancelled(self, task: Task, *, reason: str) -> None:
        with self.lock:
            task.processing.status = TaskStatus.CANCELLED
            task.processing.end_time = utc_now()
            self.record(task.id, "cancelled", reason=reason)
            self.retire(task.id)
            if task.chunk_id is not None:
                self._notify_chunk(task.chunk_id, ChunkStatus.CANCELLED)

    def resolve_chain(self, task: Task, *, failed: bool) -> None:
        """Close the chain ending at ``task`` and finalize its batch when all chains closed."""

        with self.lock:
            self.retire(task.id)
            self.record(task.id, "chain_failed" if failed else "chain_exited")
            if task.chunk_id is not None:
                self._notify_chunk(
                    task.chunk_id,
                    ChunkStatus.FAILED if failed else ChunkStatus.COMPLETED,
                )
            origin = self.origin_task(task.id)
            batch = self.batch_for(task.id)
            if origin is None or batch is None:
                return
            if failed:
                batch.failed_task_ids.append(task.id)
            batch.resolved_chains.add(origin.id)
            if batch.is_terminal or len(batch.resolved_chains) < len(batch.origin_task_ids):
                return

            batch.status = (
                BatchStatus.PARTIALLY_FAILED if batch.failed_task_ids else BatchStatus.COMPLETED
            )
            batch.finished_at = utc_now()
            if batch.failed_task_ids:
                logger.warning(
                    "Batch %s finished with %d failed task(s)",
                    batch.id,
                    len(batch.failed_task_ids),
                )
            else:
                logger.info("Batch %s completed (%d chains)", batch.id, len(batch.origin_task_ids))

    def cancel_batch(self, batch_id: str) -> FileBatch | None:
        with self.lock:
            batch = self._batches.get(batch_id)
            if batch is None or batch.is_terminal:
                return batch
            batch.status = BatchStatus.CANCELLED
            batch.finished_at = utc_now()
            logger.info("Batch %s cancelled", batch_id)
            return batch

    def snapshot(self) -> LedgerSnapshot:
        with self.lock:
            return LedgerSnapshot(
                batches=list(self._batches.values()),
                tasks=list(self._tasks.values()),
                events=list(self._events),
            )

    def _notify_chunk(self, chunk_id: str, status: ChunkStatus) -> None:
        if self._chunk_listener is not None:
            self._chunk_listener(chunk_id, status)

"""Batch progress and ETA derived from task dependency chains."""

from __future__ import annotations

from datetime import datetime, timedelta

from tierflow.pipeline.errors import UnknownBatchError
from tierflow.pipeline.ledger import TaskLedger
from tierflow.pipeline.models import BatchStatus, TaskStatus
from tierflow.storage.common import utc_now


class BatchProgressTracker:
    """Read-only view over the ledger.

    Progress counts completed tasks whose chain leads back to the batch, against the
    projected total of one task per tier for every origin task.
    """

    def __init__(self, ledger: TaskLedger, *, tier_count: int) -> None:
        self._ledger = ledger
        self._tier_count = tier_count

    def ancestor_chain(self, task_id: str) -> list[str]:
        """Task ids from ``task_id`` back to its origin task, both included."""

        chain: list[str] = []
        with self._ledger.lock:
            current = self._ledger.get_task(task_id)
            while current is not None:
                chain.append(current.id)
                if current.metadata.batch_id is not None or not current.dependencies:
                    break
                current = self._ledger.get_task(current.dependencies[0])
        return chain

    def progress(self, batch_id: str) -> float:
        with self._ledger.lock:
            batch = self._ledger.get_batch(batch_id)
            if batch is None:
                raise UnknownBatchError(batch_id)
            if batch.status == BatchStatus.COMPLETED:
                return 1.0
            total = len(batch.origin_task_ids) * self._tier_count
            if total == 0:
                return 0.0
            completed = sum(
                1
                for task in self._ledger.batch_tasks(batch_id)
                if task.status == TaskStatus.COMPLETED
            )
        return min(1.0, completed / total)

    def estimated_completion(self, batch_id: str, *, now: datetime | None = None) -> datetime:
        """``createdAt + elapsed / progress``, or the upfront estimate before any progress."""

        with self._ledger.lock:
            batch = self._ledger.get_batch(batch_id)
            if batch is None:
                raise UnknownBatchError(batch_id)
            if batch.finished_at is not None:
                return batch.finished_at
            progress = self.progress(batch_id)
        if progress <= 0:
            return batch.created_at + timedelta(seconds=batch.estimated_processing_seconds)
        elapsed = (now or utc_now()) - batch.created_at
        return batch.created_at + elapsed / progress

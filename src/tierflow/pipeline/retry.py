"""Bounded retry policy for failed tasks."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import NamedTuple

from tierflow.pipeline.errors import RetryExhaustedError, TaskExecutionError
from tierflow.pipeline.ledger import TaskLedger
from tierflow.pipeline.models import Task, TaskStatus

logger = logging.getLogger(__name__)


class RetryOutcome(NamedTuple):
    retried: bool
    failed: bool


class RetryManager:
    """Re-queues failed tasks until ``max_retries`` is spent, then fails them terminally."""

    def __init__(self, ledger: TaskLedger) -> None:
        self._ledger = ledger

    def on_task_failure(
        self,
        task: Task,
        error: TaskExecutionError,
        *,
        requeue: Callable[[Task], None],
    ) -> RetryOutcome:
        metadata = task.metadata
        if error.retryable and metadata.retry_count < metadata.max_retries:
            metadata.retry_count += 1
            task.processing.status = TaskStatus.PENDING
            task.processing.error = str(error)
            task.processing.assigned_agent = None
            self._ledger.record(
                task.id,
                "retry_scheduled",
                retry_count=metadata.retry_count,
                max_retries=metadata.max_retries,
                error=str(error),
            )
            logger.warning(
                "Task %s failed in %s, retry %d/%d: %s",
                task.id,
                metadata.target_tier,
                metadata.retry_count,
                metadata.max_retries,
                error,
            )
            requeue(task)
            return RetryOutcome(retried=True, failed=False)

        exhausted = RetryExhaustedError(task.id, metadata.retry_count + 1, str(error))
        task.processing.status = TaskStatus.FAILED
        task.processing.error = str(exhausted)
        self._ledger.record(
            task.id,
            "retry_exhausted",
            retry_count=metadata.retry_count,
            retryable=error.retryable,
            error=str(error),
        )
        logger.warning("Task %s failed terminally in %s: %s", task.id, metadata.target_tier, error)
        return RetryOutcome(retried=False, failed=True)

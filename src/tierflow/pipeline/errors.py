"""Pipeline error taxonomy."""

from __future__ import annotations


class TierConfigurationError(ValueError):
    """Invalid tier or agent setup, raised at registration time."""


class TaskExecutionError(RuntimeError):
    """Per-stage executor failure."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class RetryExhaustedError(RuntimeError):
    """Terminal failure recorded on a task that will not be retried again."""

    def __init__(self, task_id: str, attempts: int, cause: str) -> None:
        super().__init__(f"Task {task_id} failed after {attempts} attempt(s): {cause}")
        self.task_id = task_id
        self.attempts = attempts
        self.cause = cause


class UnknownBatchError(KeyError):
    """Operation addressed a batch id the pipeline never issued."""

"""Per-stage executor interface and built-in executors."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Protocol

if TYPE_CHECKING:
    from tierflow.pipeline.models import Task


@dataclass(slots=True)
class ExecutorResult:
    """Stage outcome; ``data`` is passed to the next tier without interpretation."""

    status: Literal["completed", "failed"]
    data: Any = None
    errors: list[str] = field(default_factory=list)
    retryable: bool = True

    @property
    def ok(self) -> bool:
        return self.status == "completed"


class StageExecutor(Protocol):
    """Protocol implemented by per-tier stage logic."""

    def execute(self, task: Task) -> ExecutorResult:
        """Run the stage for one task and return its outcome."""


@dataclass(slots=True)
class PassThroughExecutor:
    """Forwards the payload and appends the tier id to its ``stages`` trail."""

    tier_id: str
    delay_seconds: float = 0.0

    def execute(self, task: Task) -> ExecutorResult:
        if self.delay_seconds > 0:
            time.sleep(self.delay_seconds)
        payload = task.payload if isinstance(task.payload, dict) else {"value": task.payload}
        stages = [*payload.get("stages", []), self.tier_id]
        return ExecutorResult(status="completed", data={**payload, "stages": stages})


@dataclass(slots=True)
class FunctionExecutor:
    """Adapts a plain callable; its return value becomes the result data."""

    func: Callable[[Task], Any]

    def execute(self, task: Task) -> ExecutorResult:
        value = self.func(task)
        if isinstance(value, ExecutorResult):
            return value
        return ExecutorResult(status="completed", data=value)
